"""Host-level helpers: logging setup, qBittorrent process detection and
locating the Linux qBittorrent `BT_backup` directory.
"""
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import List, Optional

from utils import Timeouts

QBITTORRENT_PROCESS_NAMES = ('qbittorrent-nox', 'qbittorrent')
QBITTORRENT_CONFIG_NAME = 'qBittorrent.conf'
BT_BACKUP_DIR_NAME = 'BT_backup'
BT_BACKUP_SUFFIXES = ('.torrent', '.fastresume', '.resume')


def setup_logging(log_dir: Path, dry_run: bool, debug: bool) -> Path:
    """Configures the root logger for file-based logging.

    A timestamped log file is created in `log_dir`. Console logging (the
    RichHandler) is attached separately by `main`.

    Args:
        log_dir: Directory for the log files. Created if missing.
        dry_run: If True, adds a warning to the log.
        debug: If True, sets the logging level to DEBUG, otherwise INFO.

    Returns:
        The path of the log file.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    log_file_path = log_dir / f"qbit_migrate_{timestamp}.log"

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = logging.FileHandler(log_file_path, mode='w', encoding='utf-8')
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(file_handler)

    logging.info("--- qBittorrent migration started (logging to file) ---")
    if dry_run:
        logging.warning("!!! DRY RUN MODE ENABLED. NO FILES WILL BE WRITTEN. !!!")
    return log_file_path


def is_qbittorrent_running() -> bool:
    """Checks whether a qBittorrent process is running, using `pidof`.

    A missing `pidof` binary or a failing call is treated as "not running".
    """
    try:
        result = subprocess.run(
            ['pidof', *QBITTORRENT_PROCESS_NAMES],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=Timeouts.PIDOF,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logging.debug(f"Could not run pidof: {e}")
        return False
    return result.returncode == 0 and bool(result.stdout.strip())


def _has_backup_files(directory: str) -> bool:
    try:
        return any(name.endswith(BT_BACKUP_SUFFIXES) for name in os.listdir(directory))
    except OSError:
        return False


def find_bt_backup(home: Optional[Path] = None) -> Optional[Path]:
    """Locates the qBittorrent `BT_backup` directory below the user's home.

    Candidates are checked in walk order. The first one whose parent holds
    `qBittorrent.conf`, or which itself contains `.torrent`, `.fastresume` or
    `.resume` files, is returned.

    Args:
        home: Directory to search. Defaults to the current user's home.

    Returns:
        The path to `BT_backup`, or None if no suitable directory was found.
    """
    home = home or Path.home()
    candidates: List[str] = []
    for dirpath, dirnames, _ in os.walk(home, followlinks=False):
        dirnames.sort()
        if BT_BACKUP_DIR_NAME in dirnames:
            candidates.append(os.path.join(dirpath, BT_BACKUP_DIR_NAME))
    logging.debug(f"Found {len(candidates)} BT_backup candidate(s) below '{home}': {candidates}")

    for candidate in candidates:
        if os.path.isfile(os.path.join(os.path.dirname(candidate), QBITTORRENT_CONFIG_NAME)):
            return Path(candidate)
        if _has_backup_files(candidate):
            return Path(candidate)
    return None
