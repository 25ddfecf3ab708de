import logging
import subprocess
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from system_manager import find_bt_backup, is_qbittorrent_running, setup_logging


class TestIsQbittorrentRunning(unittest.TestCase):
    @patch('system_manager.subprocess.run')
    def test_running_when_pidof_finds_pids(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="1234\n")
        self.assertTrue(is_qbittorrent_running())
        args, _ = mock_run.call_args
        self.assertEqual(args[0], ['pidof', 'qbittorrent-nox', 'qbittorrent'])

    @patch('system_manager.subprocess.run')
    def test_not_running_when_pidof_fails(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="")
        self.assertFalse(is_qbittorrent_running())

    @patch('system_manager.subprocess.run', side_effect=FileNotFoundError("pidof"))
    def test_missing_pidof_means_not_running(self, mock_run):
        self.assertFalse(is_qbittorrent_running())

    @patch('system_manager.subprocess.run', side_effect=subprocess.TimeoutExpired('pidof', 10))
    def test_pidof_timeout_means_not_running(self, mock_run):
        self.assertFalse(is_qbittorrent_running())


def test_find_bt_backup_prefers_dir_next_to_config(tmp_path):
    (tmp_path / "old" / "BT_backup").mkdir(parents=True)
    qbit_dir = tmp_path / ".local" / "share" / "qBittorrent"
    (qbit_dir / "BT_backup").mkdir(parents=True)
    (qbit_dir / "qBittorrent.conf").write_text("[Preferences]\n")

    assert find_bt_backup(tmp_path) == qbit_dir / "BT_backup"


def test_find_bt_backup_falls_back_to_dir_with_torrents(tmp_path):
    (tmp_path / "a" / "BT_backup").mkdir(parents=True)
    backup = tmp_path / "b" / "BT_backup"
    backup.mkdir(parents=True)
    (backup / "abc.fastresume").write_bytes(b"de")

    assert find_bt_backup(tmp_path) == backup


def test_find_bt_backup_none_found(tmp_path):
    (tmp_path / "BT_backup").mkdir()
    assert find_bt_backup(tmp_path) is None


def test_setup_logging_creates_log_file(tmp_path, restore_root_logger):
    log_file = setup_logging(tmp_path / "logs", dry_run=True, debug=True)

    assert log_file.parent == tmp_path / "logs"
    assert logging.getLogger().level == logging.DEBUG
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "DRY RUN" in Path(log_file).read_text(encoding='utf-8')
