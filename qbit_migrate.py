#!/usr/bin/env python3
# qBittorrent Migrate
#
# Moves a qBittorrent session from a Windows install to a Linux one: copies the
# .torrent/.fastresume pairs into the Linux BT_backup and points each torrent's
# save path at wherever its data lives on the Linux filesystem.

__version__ = "1.2.0"

# Standard Lib
import argparse
import dataclasses
import logging
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import argcomplete
from rich.console import Console
from rich.logging import RichHandler

# Project Modules
from config_manager import ConfigValidator, get_list, load_config, update_config
from manifest import ManifestError, build_manifest
from path_matcher import SelectionOutcome, find_correct_torrent_path
from path_search import DEFAULT_EXCLUDED_PATHS, find_paths
from resume_manager import (
    SavePathGroup, load_resume_entries, group_by_save_path, migrate_entry, scan_backup_dir
)
from system_manager import find_bt_backup, is_qbittorrent_running, setup_logging
from ui import confirm, display_candidates, display_path_map, prompt_user_input
from utils import MigrationError

# --- Constants ---
DEFAULT_PARALLEL_JOBS = 4

# Resolution methods
METHOD_UNIQUE = "unique"
METHOD_MATCHED = "matched"
METHOD_MANUAL = "manual"
METHOD_NOT_FOUND = "not found"
METHOD_NO_MATCH = "no match"
METHOD_INVALID_TORRENT = "invalid torrent"


@dataclass(frozen=True)
class PathResolution:
    """Where one save-path group's data was found on Linux, and how."""
    group: SavePathGroup
    linux_path: Optional[str]
    method: str
    outcome: Optional[SelectionOutcome] = None
    candidates: Tuple[str, ...] = ()
    total_size: int = 0

    @property
    def resolved(self) -> bool:
        return self.linux_path is not None


def _group_size(group: SavePathGroup) -> int:
    total = 0
    for entry in group.entries:
        try:
            total += build_manifest(entry.torrent).total_size
        except ManifestError:
            continue
    return total


def resolve_group(
    group: SavePathGroup,
    search_roots: Sequence[str],
    timeout: float,
    excluded: Sequence[str],
    min_confidence: float = 0.0,
) -> PathResolution:
    """Finds the Linux location of one save-path group.

    A single search hit is used as-is. With several hits, the group's
    representative torrent is reconciled against them and the best-supported
    one is chosen. A match below `min_confidence` counts as no match.
    This function never prompts, so groups can be resolved concurrently.
    """
    total_size = _group_size(group)
    candidates = tuple(find_paths(group.normalized_path, search_roots, timeout, excluded))
    base = dict(group=group, candidates=candidates, total_size=total_size)

    if not candidates:
        logging.warning(f"No Linux path found for '{group.windows_path}'.")
        return PathResolution(linux_path=None, method=METHOD_NOT_FOUND, **base)
    if len(candidates) == 1:
        return PathResolution(linux_path=candidates[0], method=METHOD_UNIQUE, **base)

    logging.info(f"{len(candidates)} candidate paths for '{group.windows_path}'. Checking torrent contents...")
    try:
        outcome = find_correct_torrent_path(group.representative.torrent, candidates)
    except ManifestError as e:
        logging.error(f"Cannot read the file list of '{group.representative.torrent_file.name}': {e}")
        return PathResolution(linux_path=None, method=METHOD_INVALID_TORRENT, **base)

    if not outcome.matched:
        logging.warning(f"None of the candidates for '{group.windows_path}' hold the torrent's files.")
        return PathResolution(linux_path=None, method=METHOD_NO_MATCH, outcome=outcome, **base)
    if outcome.confidence < min_confidence:
        logging.warning(
            f"Best match for '{group.windows_path}' is '{outcome.base_path}' with confidence "
            f"{outcome.confidence:.2f}, below the minimum of {min_confidence:.2f}."
        )
        return PathResolution(linux_path=None, method=METHOD_NO_MATCH, outcome=outcome, **base)

    logging.info(f"Selected '{outcome.base_path}' for '{group.windows_path}' (confidence {outcome.confidence:.2f}).")
    return PathResolution(linux_path=outcome.base_path, method=METHOD_MATCHED, outcome=outcome, **base)


class QbitMigrator:
    def __init__(self, args: argparse.Namespace, config, console: Optional[Console] = None):
        self.args = args
        self.config = config
        self.console = console
        self.windows_dir: Optional[Path] = None
        self.bt_backup: Optional[Path] = None

    def _ask_windows_dir(self) -> Path:
        configured = self.args.windows_dir or self.config.get('PATHS', 'windows_qbit_dir', fallback='').strip()
        while not configured:
            configured = prompt_user_input("Enter the path to your qBittorrent Windows directory", console=self.console)
        return Path(configured).expanduser()

    def _locate_bt_backup(self) -> Path:
        configured = self.args.bt_backup or self.config.get('PATHS', 'linux_bt_backup', fallback='').strip()
        if configured:
            path = Path(configured).expanduser()
            if not path.is_dir():
                raise MigrationError(f"BT_backup directory not found: {path}")
            return path
        found = find_bt_backup()
        if found is None:
            raise MigrationError(
                "No BT_backup directory found. Please ensure qBittorrent is installed and has been run at least once."
            )
        return found

    def pre_flight_checks(self) -> None:
        """Resolves both directories and refuses to run against a live client.

        Raises:
            MigrationError: If a precondition is not met.
        """
        self.windows_dir = self._ask_windows_dir()
        self.bt_backup = self._locate_bt_backup()
        logging.info(f"Found Linux BT_backup: {self.bt_backup}")

        if is_qbittorrent_running():
            raise MigrationError("qBittorrent is running. Close it before running the migration.")
        if not self.windows_dir.is_dir():
            raise MigrationError(f"Directory not found: {self.windows_dir}")

    def load_groups(self) -> Dict[str, SavePathGroup]:
        resume_files, torrent_files = scan_backup_dir(self.windows_dir)
        if not resume_files:
            raise MigrationError(f"No torrents found in '{self.windows_dir}'.")
        logging.info(f"Found {len(resume_files)} fastresume and {len(torrent_files)} torrent file(s).")
        groups = group_by_save_path(load_resume_entries(self.windows_dir))
        if not groups:
            raise MigrationError(f"None of the resume files in '{self.windows_dir}' could be read.")
        return groups

    def resolve_all(self, groups: Dict[str, SavePathGroup]) -> List[PathResolution]:
        """Resolves every group in parallel, returning results in group key order."""
        roots = get_list(self.config, 'PATHS', 'search_roots')
        timeout = self.config.getfloat('SEARCH', 'timeout_seconds')
        excluded = list(DEFAULT_EXCLUDED_PATHS) + get_list(self.config, 'SEARCH', 'extra_exclusions')
        min_confidence = self.config.getfloat('MATCHING', 'min_confidence')
        parallel_jobs = self.args.parallel_jobs or self.config.getint('SETTINGS', 'parallel_jobs')

        results: Dict[str, PathResolution] = {}
        with ThreadPoolExecutor(max_workers=max(1, parallel_jobs)) as executor:
            futures = {
                executor.submit(resolve_group, group, roots, timeout, excluded, min_confidence): key
                for key, group in groups.items()
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    results[key] = future.result()
                except Exception as e:
                    logging.error(f"Unexpected error resolving '{groups[key].windows_path}': {e}", exc_info=True)
                    results[key] = PathResolution(group=groups[key], linux_path=None, method=METHOD_NO_MATCH)
        return [results[key] for key in groups]

    def prompt_for_unresolved(self, resolutions: List[PathResolution]) -> List[PathResolution]:
        """Asks the user for a path for each unresolved group. Empty input skips the group."""
        updated = []
        for resolution in resolutions:
            if resolution.resolved or self.args.yes:
                updated.append(resolution)
                continue
            if resolution.outcome is not None:
                display_candidates(resolution.outcome, resolution.group.windows_path, console=self.console)
            while True:
                answer = prompt_user_input(
                    f"Enter the Linux path for '{resolution.group.windows_path}' (leave empty to skip)",
                    console=self.console,
                )
                if not answer:
                    updated.append(resolution)
                    break
                if Path(answer).expanduser().is_dir():
                    updated.append(dataclasses.replace(
                        resolution, linux_path=str(Path(answer).expanduser()), method=METHOD_MANUAL
                    ))
                    break
                logging.warning(f"'{answer}' is not a directory.")
        return updated

    def migrate(self, resolutions: List[PathResolution]) -> Tuple[int, int]:
        """Writes every resolved torrent into the Linux BT_backup.

        Returns:
            A tuple of (migrated, failed) torrent counts. Skipped torrents
            count as neither.
        """
        migrated = failed = 0
        for resolution in resolutions:
            if not resolution.resolved:
                logging.warning(
                    f"Skipping {len(resolution.group.entries)} torrent(s) saved in "
                    f"'{resolution.group.windows_path}': no Linux path."
                )
                continue
            for entry in resolution.group.entries:
                if migrate_entry(entry, resolution.linux_path, self.bt_backup, self.args.dry_run):
                    migrated += 1
                else:
                    failed += 1
        return migrated, failed

    def run(self) -> int:
        """Main execution logic."""
        self.pre_flight_checks()
        groups = self.load_groups()
        resolutions = self.prompt_for_unresolved(self.resolve_all(groups))

        display_path_map(resolutions, console=self.console)
        to_migrate = sum(len(r.group.entries) for r in resolutions if r.resolved)
        logging.info(f"{to_migrate} torrent(s) will be migrated.")
        if to_migrate == 0:
            logging.warning("Nothing to migrate.")
            return 1

        if not self.args.yes and not confirm("Begin migration?", console=self.console):
            logging.warning("Migration cancelled.")
            return 0

        migrated, failed = self.migrate(resolutions)
        logging.info(f"Migration complete. Migrated {migrated} torrent(s), {failed} failed.")
        return 1 if failed else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """The main entry point for the application.

    Parses arguments, sets up logging, loads and validates the configuration
    and runs the migration. Fatal problems are logged and turned into a
    non-zero exit code.

    Returns:
        0 on success, 1 on error.
    """
    script_dir = Path(__file__).resolve().parent
    parser = argparse.ArgumentParser(
        description="Migrate qBittorrent torrents from Windows to Linux, relocating their save paths.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('--config', default='config.ini', help='Path to the configuration file.')
    parser.add_argument('--windows-dir', help='Windows qBittorrent BT_backup directory. Prompted for if not set.')
    parser.add_argument('--bt-backup', help='Linux BT_backup directory. Searched for if not set.')
    parser.add_argument('--dry-run', action='store_true', help='Resolve paths but do not write any files.')
    parser.add_argument('-y', '--yes', action='store_true', help='Do not prompt; skip unresolved paths and confirmations.')
    parser.add_argument('--parallel-jobs', type=int, default=None, metavar='N', help='Number of save paths searched in parallel.')
    parser.add_argument('--log-dir', default='logs', help='Directory for log files.')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging.')
    parser.add_argument('--check-config', action='store_true', help='Validate the configuration file and exit.')
    parser.add_argument('--version', action='store_true', help="Show program's version and config file path, then exit.")
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)

    if args.version:
        print(f"{Path(sys.argv[0]).name} {__version__}")
        print(f"Configuration file: {args.config}")
        return 0

    setup_logging(Path(args.log_dir), args.dry_run, args.debug)
    rich_handler = RichHandler(
        level=logging.DEBUG if args.debug else logging.INFO,
        show_path=False, rich_tracebacks=True, markup=True, console=Console(stderr=True),
    )
    rich_handler.setFormatter(logging.Formatter('%(message)s'))
    logging.getLogger().addHandler(rich_handler)

    template_path = script_dir / 'config.ini.template'
    if template_path.is_file():
        update_config(args.config, str(template_path))
    config = load_config(args.config)
    logging.info(f"Using configuration file: {args.config}")

    if not ConfigValidator(config).validate():
        logging.error("[bold red]FAILURE:[/] Configuration file has errors.")
        return 1
    if args.check_config:
        logging.info("[bold green]SUCCESS:[/] Configuration file appears to be valid.")
        return 0

    try:
        return QbitMigrator(args, config).run()
    except MigrationError as e:
        logging.error(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Process interrupted by user. Shutting down.")
        return 1
    except Exception as e:
        logging.error(f"An unexpected error occurred in main: {e}", exc_info=True)
        return 1
    finally:
        logging.info("--- qBittorrent migration finished ---")


if __name__ == "__main__":
    sys.exit(main())
