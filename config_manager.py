"""Manages loading, updating, and validating the application's configuration.

The tool works without a configuration file; `config.ini` only overrides the
built-in defaults. This module can:
- Create a new configuration file from the template, or add options that the
  template gained since the user's copy was made, preserving user values.
- Load the configuration into a `ConfigParser` layered over the defaults.
- Validate option values and report errors and warnings.
"""
import configparser
import logging
import shutil
import sys
import time
from pathlib import Path
from typing import Dict, List

import configupdater

from utils import Timeouts

DEFAULT_CONFIG: Dict[str, Dict[str, str]] = {
    'PATHS': {
        'windows_qbit_dir': '',
        'linux_bt_backup': '',
        'search_roots': '/',
    },
    'SEARCH': {
        'timeout_seconds': str(Timeouts.PATH_SEARCH),
        'extra_exclusions': '',
    },
    'MATCHING': {
        'min_confidence': '0.0',
    },
    'SETTINGS': {
        'parallel_jobs': '4',
    },
}


def _option_comments(section: configupdater.Section) -> Dict[str, List[str]]:
    """Maps each option of a template section to the comment lines directly above it."""
    comments: Dict[str, List[str]] = {}
    pending: List[str] = []
    for block in section.iter_blocks():
        if isinstance(block, configupdater.Comment):
            pending.extend(line.strip() for line in str(block).splitlines() if line.strip())
        elif isinstance(block, configupdater.Option):
            comments[block.key] = pending
            pending = []
        else:
            pending = []
    return comments


def update_config(config_path: str, template_path: str) -> None:
    """Updates an existing config.ini from a template, preserving user values.

    New sections and options from the template are added to the user's file
    with their comments. When the file changes, a timestamped backup of the
    original is written to a `backup` subdirectory. If no configuration file
    exists, one is created from the template.

    Raises:
        SystemExit: If the template is missing or the file cannot be written.
    """
    config_file = Path(config_path)
    template_file = Path(template_path)
    logging.info("STATE: Checking for configuration updates...")

    if not template_file.is_file():
        logging.error(f"FATAL: Config template '{template_path}' not found.")
        sys.exit(1)

    if not config_file.is_file():
        logging.warning(f"Configuration file not found at '{config_path}'. Creating one from the template.")
        try:
            shutil.copy2(template_file, config_file)
        except OSError as e:
            logging.error(f"FATAL: Could not create config file: {e}")
            sys.exit(1)
        return

    try:
        updater = configupdater.ConfigUpdater()
        updater.read(config_file, encoding='utf-8')
        template_updater = configupdater.ConfigUpdater()
        template_updater.read(template_file, encoding='utf-8')

        changes_made = False
        for section_name in template_updater.sections():
            template_section = template_updater[section_name]
            if not updater.has_section(section_name):
                updater.add_section(section_name)
                logging.info(f"CONFIG: Added new section to config: [{section_name}]")
            user_section = updater[section_name]
            comments = _option_comments(template_section)
            for key, opt in template_section.items():
                if user_section.has_option(key):
                    continue
                user_section.set(key, opt.value)
                for line in comments.get(key, []):
                    user_section[key].add_before.comment(line)
                changes_made = True
                logging.info(f"CONFIG: Added new option in [{section_name}]: {key}")

        if changes_made:
            backup_dir = config_file.parent / 'backup'
            backup_dir.mkdir(exist_ok=True)
            backup_path = backup_dir / f"{config_file.stem}.bak_{time.strftime('%Y%m%d-%H%M%S')}"
            shutil.copy2(config_file, backup_path)
            logging.info(f"CONFIG: Backed up existing configuration to '{backup_path}'")
            with config_file.open('w', encoding='utf-8') as f:
                updater.write(f)
            logging.info("CONFIG: Configuration file has been updated with new options.")
        else:
            logging.info("CONFIG: Configuration file is already up-to-date.")
    except Exception as e:
        logging.error(f"FATAL: An error occurred during config update: {e}", exc_info=True)
        sys.exit(1)


def load_config(config_path: str = "config.ini") -> configparser.ConfigParser:
    """Loads the configuration, layered over `DEFAULT_CONFIG`.

    A missing file is not an error; the defaults are used as-is.
    """
    config = configparser.ConfigParser()
    config.read_dict(DEFAULT_CONFIG)
    config_file = Path(config_path)
    if config_file.is_file():
        config.read(config_file, encoding='utf-8')
    else:
        logging.warning(f"Configuration file '{config_path}' not found. Using built-in defaults.")
    return config


def get_list(config: configparser.ConfigParser, section: str, option: str) -> List[str]:
    """Reads a comma- or newline-separated option as a list of non-empty strings."""
    raw = config.get(section, option, fallback='')
    return [item.strip() for item in raw.replace('\n', ',').split(',') if item.strip()]


class ConfigValidator:
    """Validates the values of the application's configuration.

    Attributes:
        config: The configuration object to validate.
        errors: Critical problems. The configuration is invalid if any exist.
        warnings: Non-critical problems that do not invalidate it.
    """

    NUMERIC_RANGES = {
        ('SEARCH', 'timeout_seconds'): (float, 1, 3600),
        ('SETTINGS', 'parallel_jobs'): (int, 1, 32),
    }

    def __init__(self, config: configparser.ConfigParser):
        self.config = config
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self) -> bool:
        """Runs all checks and prints the resulting errors or warnings.

        Returns:
            `True` if no errors were found.
        """
        self._check_numeric_values()
        self._check_min_confidence()
        self._check_paths()

        if self.errors:
            print("Configuration errors found:", file=sys.stderr)
            for error in self.errors:
                print(f" ❌ {error}", file=sys.stderr)
            return False

        if self.warnings:
            print("Configuration warnings:", file=sys.stderr)
            for warning in self.warnings:
                print(f" ⚠️ {warning}", file=sys.stderr)
        return True

    def _check_numeric_values(self) -> None:
        """Checks that numeric options parse the way they are read and fall within a sensible range."""
        for (section, option), (kind, min_val, max_val) in self.NUMERIC_RANGES.items():
            if not self.config.has_option(section, option):
                continue
            try:
                if kind is float:
                    value = self.config.getfloat(section, option)
                else:
                    value = self.config.getint(section, option)
            except ValueError:
                expected = "a number" if kind is float else "an integer"
                self.errors.append(f"Option '{option}' in [{section}] must be {expected}")
                continue
            if not (min_val <= value <= max_val):
                self.warnings.append(f"{option}={value} is outside recommended range [{min_val}-{max_val}]")

    def _check_min_confidence(self) -> None:
        if not self.config.has_option('MATCHING', 'min_confidence'):
            return
        try:
            value = self.config.getfloat('MATCHING', 'min_confidence')
        except ValueError:
            self.errors.append("Option 'min_confidence' in [MATCHING] must be a number")
            return
        if not (0.0 <= value <= 1.0):
            self.errors.append(f"min_confidence={value} must be between 0 and 1")

    def _check_paths(self) -> None:
        """Checks that search roots are absolute and existing."""
        roots = get_list(self.config, 'PATHS', 'search_roots')
        if not roots:
            self.errors.append("Option 'search_roots' in [PATHS] must list at least one directory")
        for root in roots:
            if not Path(root).is_absolute():
                self.errors.append(f"Search root '{root}' is not an absolute path")
            elif not Path(root).is_dir():
                self.warnings.append(f"Search root '{root}' does not exist")

        bt_backup = self.config.get('PATHS', 'linux_bt_backup', fallback='').strip()
        if bt_backup and not Path(bt_backup).is_dir():
            self.warnings.append(f"linux_bt_backup '{bt_backup}' is not a directory")
