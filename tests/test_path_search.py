from unittest.mock import patch

import pytest

import path_search
from path_search import find_paths
from tests.mocks.mock_backup import make_files


@pytest.fixture
def search_tree(tmp_path):
    (tmp_path / "mnt" / "disk1" / "Media" / "Movies").mkdir(parents=True)
    (tmp_path / "home" / "user" / "Media" / "Movies").mkdir(parents=True)
    (tmp_path / "home" / "user" / "Media" / "Music").mkdir(parents=True)
    (tmp_path / "home" / "user" / ".cache" / "Media" / "Movies").mkdir(parents=True)
    (tmp_path / "srv" / "node_modules" / "Media" / "Movies").mkdir(parents=True)
    (tmp_path / "var" / "lib" / "Media" / "Movies").mkdir(parents=True)
    return tmp_path


def test_finds_all_matching_suffixes(search_tree):
    results = find_paths("Media/Movies", roots=[str(search_tree)], timeout=30)
    assert results == sorted([
        str(search_tree / "home" / "user" / "Media" / "Movies"),
        str(search_tree / "mnt" / "disk1" / "Media" / "Movies"),
    ])


def test_excluded_directories_are_pruned(search_tree):
    results = find_paths("Media/Movies", roots=[str(search_tree)], timeout=30)
    assert not any(".cache" in r or "node_modules" in r for r in results)
    assert str(search_tree / "var" / "lib" / "Media" / "Movies") not in results


def test_extra_exclusions(search_tree):
    excluded = list(path_search.DEFAULT_EXCLUDED_PATHS) + ["mnt/disk1"]
    results = find_paths("Media/Movies", roots=[str(search_tree)], timeout=30, excluded=excluded)
    assert results == [str(search_tree / "home" / "user" / "Media" / "Movies")]


def test_matches_are_not_descended_into(tmp_path):
    (tmp_path / "Downloads" / "Downloads").mkdir(parents=True)
    results = find_paths("Downloads", roots=[str(tmp_path)], timeout=30)
    assert results == [str(tmp_path / "Downloads")]


def test_matches_files_too(tmp_path):
    make_files(tmp_path / "a", {"movie.mkv": 1})
    assert find_paths("movie.mkv", roots=[str(tmp_path)], timeout=30) == [str(tmp_path / "a" / "movie.mkv")]


def test_empty_relative_path_returns_nothing(tmp_path):
    assert find_paths("", roots=[str(tmp_path)]) == []


def test_missing_root_is_skipped(tmp_path):
    (tmp_path / "Media").mkdir()
    results = find_paths("Media", roots=[str(tmp_path / "missing"), str(tmp_path)], timeout=30)
    assert results == [str(tmp_path / "Media")]


def test_timeout_returns_empty_list(search_tree):
    # A negative budget puts the deadline in the past before the walk starts
    with patch('path_search.logging') as mock_logging:
        results = find_paths("Media/Movies", roots=[str(search_tree)], timeout=-1)
    assert results == []
    assert "timed out" in mock_logging.error.call_args[0][0]
