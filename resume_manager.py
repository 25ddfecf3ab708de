"""Reads a Windows qBittorrent `BT_backup` directory and writes migrated copies.

qBittorrent keeps each torrent as a pair of files named after its info-hash:
the original `.torrent` and a libtorrent `.fastresume` holding the save path
and download state. This module decodes those pairs, groups them by the save
path recorded on Windows, and writes the pairs into the Linux `BT_backup`
with the save path replaced.

The save path is replaced directly in the bencoded bytes rather than by
decoding and re-encoding the resume data. The bencoded form of a string is
`<byte length>:<bytes>`, so the old token is swapped for a new one carrying
the new length. Every other byte of the resume file is preserved.
"""
import logging
import os
import re
import shutil
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import bencodepy

RESUME_SUFFIX = '.fastresume'
TORRENT_SUFFIX = '.torrent'
SAVE_PATH_KEYS = (b'save_path', b'qBt-savePath')

_DRIVE_PREFIX = re.compile(r'^[A-Za-z]:[\\/]')
_TRAILING_SEPARATORS = re.compile(r'[\\/]+$')


@dataclass(frozen=True)
class ResumeEntry:
    """A decoded `.fastresume`/`.torrent` pair from the Windows backup."""
    resume_file: Path
    torrent_file: Path
    save_path: str
    torrent: Mapping[bytes, Any]

    @property
    def info_hash(self) -> str:
        return self.resume_file.stem


@dataclass(frozen=True)
class SavePathGroup:
    """All torrents that shared one save path on Windows.

    The path search and reconciliation run once per group; `representative`
    is the torrent whose manifest is used when several candidates are found.
    """
    key: str
    windows_path: str
    normalized_path: str
    entries: Tuple[ResumeEntry, ...]

    @property
    def representative(self) -> ResumeEntry:
        return self.entries[0]


def normalize_windows_path(save_path: str) -> str:
    """Turns a Windows save path into a drive-less, '/'-separated relative path.

    Example:
        'D:\\Media\\Movies\\' -> 'Media/Movies'
    """
    path = _DRIVE_PREFIX.sub('', save_path)
    path = _TRAILING_SEPARATORS.sub('', path)
    return path.replace('\\', '/')


def save_path_key(save_path: str) -> str:
    """Builds the identifier used to group torrents by save path.

    The drive letter is kept and upper-cased, separators become '/' and
    trailing separators are dropped, so two save paths share a key only when
    they name the same folder.

    Example:
        'd:\\Media\\Movies\\' -> 'D:/Media/Movies'
    """
    drive = _DRIVE_PREFIX.match(save_path)
    relative = normalize_windows_path(save_path)
    if drive:
        return f"{save_path[0].upper()}:/{relative}"
    return relative


def scan_backup_dir(backup_dir: Path) -> Tuple[List[Path], List[Path]]:
    """Lists the `.fastresume` and `.torrent` files of a backup directory, sorted by name."""
    resume_files = sorted(p for p in backup_dir.iterdir() if p.is_file() and p.name.endswith(RESUME_SUFFIX))
    torrent_files = sorted(p for p in backup_dir.iterdir() if p.is_file() and p.name.endswith(TORRENT_SUFFIX))
    return resume_files, torrent_files


def decode_file(path: Path) -> Dict[bytes, Any]:
    """Decodes a bencoded file.

    Raises:
        OSError: If the file cannot be read.
        bencodepy.BencodeDecodeError: If the content is not valid bencode.
        ValueError: If the top-level value is not a dictionary.
    """
    decoded = bencodepy.decode(path.read_bytes())
    if not isinstance(decoded, dict):
        raise ValueError(f"'{path.name}' does not contain a bencoded dictionary")
    return decoded


def _read_save_path(resume_data: Mapping[bytes, Any]) -> Optional[str]:
    for key in SAVE_PATH_KEYS:
        value = resume_data.get(key)
        if isinstance(value, bytes) and value:
            return value.decode('utf-8', 'surrogateescape')
    return None


def load_resume_entries(backup_dir: Path) -> List[ResumeEntry]:
    """Decodes every `.fastresume` in `backup_dir` together with its `.torrent`.

    Pairs that are incomplete or fail to decode are logged and skipped.

    Returns:
        The entries in resume file name order.
    """
    resume_files, _ = scan_backup_dir(backup_dir)
    entries = []
    for resume_file in resume_files:
        torrent_file = resume_file.with_suffix(TORRENT_SUFFIX)
        if not torrent_file.is_file():
            logging.warning(f"No matching .torrent for '{resume_file.name}'. Skipping.")
            continue
        try:
            resume_data = decode_file(resume_file)
            torrent_data = decode_file(torrent_file)
        except (OSError, ValueError, bencodepy.BencodeDecodeError) as e:
            logging.error(f"Error decoding '{resume_file.name}': {e}")
            continue

        save_path = _read_save_path(resume_data)
        if save_path is None:
            logging.error(f"'{resume_file.name}' has no save path. Skipping.")
            continue
        entries.append(ResumeEntry(
            resume_file=resume_file,
            torrent_file=torrent_file,
            save_path=save_path,
            torrent=torrent_data,
        ))
    logging.info(f"Loaded {len(entries)} of {len(resume_files)} resume file(s) from '{backup_dir}'.")
    return entries


def group_by_save_path(entries: List[ResumeEntry]) -> Dict[str, SavePathGroup]:
    """Groups entries by their Windows save path, ordered by group key."""
    buckets: Dict[str, List[ResumeEntry]] = defaultdict(list)
    for entry in entries:
        buckets[save_path_key(entry.save_path)].append(entry)

    groups = {}
    for key in sorted(buckets):
        members = tuple(sorted(buckets[key], key=lambda e: e.resume_file.name))
        windows_path = members[0].save_path
        groups[key] = SavePathGroup(
            key=key,
            windows_path=windows_path,
            normalized_path=normalize_windows_path(windows_path),
            entries=members,
        )
    return groups


def _bencoded_string(value: bytes) -> bytes:
    return str(len(value)).encode('ascii') + b':' + value


def rewrite_save_path(content: bytes, old_path: str, new_path: str) -> Tuple[bytes, int]:
    """Replaces every bencoded occurrence of `old_path` with `new_path`.

    Args:
        content: The raw `.fastresume` bytes.
        old_path: The Windows save path as decoded from the file.
        new_path: The Linux save path.

    Returns:
        The rewritten bytes and the number of replacements made.
    """
    old_token = _bencoded_string(old_path.encode('utf-8', 'surrogateescape'))
    new_token = _bencoded_string(os.fsencode(new_path))
    count = content.count(old_token)
    return content.replace(old_token, new_token), count


def migrate_entry(entry: ResumeEntry, linux_path: str, bt_backup: Path, dry_run: bool = False) -> bool:
    """Copies one torrent into the Linux `BT_backup` with its save path rewritten.

    Returns:
        True if the pair was written (or would have been, in dry-run mode).
        On failure any file already written for the pair is removed.
    """
    torrent_dest = bt_backup / entry.torrent_file.name
    resume_dest = bt_backup / entry.resume_file.name
    written: List[Path] = []
    try:
        content, count = rewrite_save_path(entry.resume_file.read_bytes(), entry.save_path, linux_path)
        if count == 0:
            logging.warning(f"Save path '{entry.save_path}' not found verbatim in '{entry.resume_file.name}'.")
        if dry_run:
            logging.info(f"[DRY RUN] Would write '{resume_dest}' ({count} replacement(s)) and copy '{entry.torrent_file.name}'.")
            return True
        logging.info(f"Writing fastresume file to: {resume_dest}")
        written.append(resume_dest)
        resume_dest.write_bytes(content)
        written.append(torrent_dest)
        shutil.copy2(entry.torrent_file, torrent_dest)
        return True
    except OSError as e:
        logging.error(f"Error migrating '{entry.info_hash}': {e}")
        for path in written:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logging.warning(f"Could not remove partial file '{path}': {cleanup_error}")
        return False
