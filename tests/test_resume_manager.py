from unittest.mock import patch

import bencodepy
import pytest

from resume_manager import (
    ResumeEntry, group_by_save_path, load_resume_entries, migrate_entry,
    normalize_windows_path, rewrite_save_path, save_path_key, scan_backup_dir,
)
from tests.mocks.mock_backup import MockBackupDir, multi_file_torrent, single_file_torrent


@pytest.mark.parametrize("windows_path, expected", [
    ("D:\\Media\\Movies", "Media/Movies"),
    ("D:\\Media\\Movies\\\\", "Media/Movies"),
    ("d:/Media/Movies/", "Media/Movies"),
    ("Media\\Movies", "Media/Movies"),
])
def test_normalize_windows_path(windows_path, expected):
    assert normalize_windows_path(windows_path) == expected


@pytest.mark.parametrize("windows_path, expected", [
    ("D:\\Media\\Movies", "D:/Media/Movies"),
    ("d:\\Media\\Movies\\", "D:/Media/Movies"),
    ("E:\\Media\\Movies", "E:/Media/Movies"),
    ("D:\\a-b", "D:/a-b"),
    ("D:\\a\\b", "D:/a/b"),
    ("Media\\Movies", "Media/Movies"),
])
def test_save_path_key(windows_path, expected):
    assert save_path_key(windows_path) == expected


def test_rewrite_save_path_updates_length_prefix():
    content = bencodepy.encode({b'qBt-savePath': b'D:\\Media', b'save_path': b'D:\\Media'})

    rewritten, count = rewrite_save_path(content, "D:\\Media", "/mnt/data/Media")

    assert count == 2
    decoded = bencodepy.decode(rewritten)
    assert decoded[b'save_path'] == b'/mnt/data/Media'
    assert decoded[b'qBt-savePath'] == b'/mnt/data/Media'


def test_rewrite_save_path_uses_byte_lengths():
    old = "D:\\Filmes\\Ação"
    content = bencodepy.encode({b'save_path': old.encode('utf-8')})

    rewritten, count = rewrite_save_path(content, old, "/srv/Ação")

    assert count == 1
    assert bencodepy.decode(rewritten)[b'save_path'] == "/srv/Ação".encode('utf-8')


def test_rewrite_save_path_leaves_unrelated_bytes_alone():
    content = bencodepy.encode({b'save_path': b'C:\\x', b'name': b'C:\\xy'})
    rewritten, count = rewrite_save_path(content, "C:\\x", "/x")
    assert count == 1
    assert bencodepy.decode(rewritten)[b'name'] == b'C:\\xy'


def test_load_resume_entries_skips_broken_pairs(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("aaa", single_file_torrent("movie.mkv", 10), "D:\\Movies")
    (backup.path / "bbb.fastresume").write_bytes(b"not bencode")
    (backup.path / "bbb.torrent").write_bytes(bencodepy.encode(single_file_torrent("x", 1)))
    (backup.path / "ccc.fastresume").write_bytes(bencodepy.encode({b'save_path': b'D:\\x'}))

    entries = load_resume_entries(backup.path)

    assert [e.info_hash for e in entries] == ["aaa"]
    assert entries[0].save_path == "D:\\Movies"
    assert entries[0].torrent[b'info'][b'name'] == b'movie.mkv'


def test_scan_backup_dir(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("bbb", single_file_torrent("b", 1), "D:\\x")
    backup.add("aaa", single_file_torrent("a", 1), "D:\\x")
    resume_files, torrent_files = scan_backup_dir(backup.path)
    assert [p.name for p in resume_files] == ["aaa.fastresume", "bbb.fastresume"]
    assert [p.name for p in torrent_files] == ["aaa.torrent", "bbb.torrent"]


def test_group_by_save_path(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("ccc", single_file_torrent("c", 1), "E:\\Music")
    backup.add("bbb", single_file_torrent("b", 1), "D:\\Movies")
    backup.add("aaa", single_file_torrent("a", 1), "D:\\Movies")

    groups = group_by_save_path(load_resume_entries(backup.path))

    assert list(groups) == ["D:/Movies", "E:/Music"]
    movies = groups["D:/Movies"]
    assert movies.normalized_path == "Movies"
    assert [e.info_hash for e in movies.entries] == ["aaa", "bbb"]
    assert movies.representative.info_hash == "aaa"


def test_group_by_save_path_keeps_similar_folders_apart(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("aaa", single_file_torrent("a", 1), "D:\\a-b")
    backup.add("bbb", single_file_torrent("b", 1), "D:\\a\\b")
    backup.add("ccc", single_file_torrent("c", 1), "d:\\a\\b\\")

    groups = group_by_save_path(load_resume_entries(backup.path))

    assert list(groups) == ["D:/a-b", "D:/a/b"]
    assert groups["D:/a-b"].normalized_path == "a-b"
    assert [e.info_hash for e in groups["D:/a-b"].entries] == ["aaa"]
    assert groups["D:/a/b"].normalized_path == "a/b"
    assert [e.info_hash for e in groups["D:/a/b"].entries] == ["bbb", "ccc"]


def test_migrate_entry_writes_rewritten_pair(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    torrent_file, resume_file = backup.add("aaa", multi_file_torrent("Album", [("a", 1)]), "D:\\Music")
    entry = load_resume_entries(backup.path)[0]
    bt_backup = tmp_path / "BT_backup"
    bt_backup.mkdir()

    assert migrate_entry(entry, "/srv/Music", bt_backup)

    assert (bt_backup / "aaa.torrent").read_bytes() == torrent_file.read_bytes()
    resume = bencodepy.decode((bt_backup / "aaa.fastresume").read_bytes())
    assert resume[b'save_path'] == b'/srv/Music'
    assert resume[b'qBt-savePath'] == b'/srv/Music'
    # The Windows source is left untouched
    assert bencodepy.decode(resume_file.read_bytes())[b'save_path'] == b'D:\\Music'


def test_migrate_entry_dry_run_writes_nothing(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("aaa", single_file_torrent("a", 1), "D:\\Music")
    entry = load_resume_entries(backup.path)[0]
    bt_backup = tmp_path / "BT_backup"
    bt_backup.mkdir()

    assert migrate_entry(entry, "/srv/Music", bt_backup, dry_run=True)
    assert list(bt_backup.iterdir()) == []


def test_migrate_entry_reports_io_failure(tmp_path):
    entry = ResumeEntry(
        resume_file=tmp_path / "missing.fastresume",
        torrent_file=tmp_path / "missing.torrent",
        save_path="D:\\x",
        torrent={},
    )
    assert migrate_entry(entry, "/x", tmp_path) is False


def test_migrate_entry_removes_resume_file_when_torrent_copy_fails(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("aaa", single_file_torrent("a", 1), "D:\\Music")
    entry = load_resume_entries(backup.path)[0]
    bt_backup = tmp_path / "BT_backup"
    bt_backup.mkdir()

    with patch('resume_manager.shutil.copy2', side_effect=OSError("disk full")):
        assert migrate_entry(entry, "/srv/Music", bt_backup) is False

    assert list(bt_backup.iterdir()) == []


def test_migrate_entry_does_not_copy_torrent_when_resume_write_fails(tmp_path):
    backup = MockBackupDir(tmp_path / "win")
    backup.add("aaa", single_file_torrent("a", 1), "D:\\Music")
    entry = load_resume_entries(backup.path)[0]
    bt_backup = tmp_path / "BT_backup"
    # A directory where the resume file should go makes the write fail
    (bt_backup / "aaa.fastresume").mkdir(parents=True)

    assert migrate_entry(entry, "/srv/Music", bt_backup) is False
    assert not (bt_backup / "aaa.torrent").exists()
