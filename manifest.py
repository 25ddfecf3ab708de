"""Builds the expected-file manifest of a torrent from its decoded metadata.

The decoded descriptor is the `info`-bearing dictionary produced by the bencode
decoder. Keys may be `bytes` (raw `bencodepy.decode` output) or `str` (hand-built
descriptors, tests). Byte values are decoded with the filesystem encoding so the
resulting paths can be handed straight to `os.stat`.
"""
import enum
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple


class ManifestError(ValueError):
    """Raised when a torrent descriptor lacks the fields needed for a manifest."""
    pass


class ManifestMode(enum.Enum):
    SINGLE_FILE = "single_file"
    MULTI_FILE = "multi_file"


@dataclass(frozen=True)
class ManifestEntry:
    """One file the torrent expects on disk, relative to the torrent root."""
    relative_path: str
    expected_size: int


@dataclass(frozen=True)
class TorrentManifest:
    """The ordered list of files (and sizes) declared by a torrent."""
    name: str
    mode: ManifestMode
    entries: Tuple[ManifestEntry, ...]

    def __post_init__(self):
        if not self.entries:
            raise ManifestError(f"Torrent '{self.name}' declares no files.")
        if self.mode is ManifestMode.SINGLE_FILE:
            if len(self.entries) != 1 or self.entries[0].relative_path != self.name:
                raise ManifestError(
                    f"Single-file torrent '{self.name}' must have exactly one entry named after the torrent."
                )

    @property
    def is_single_file(self) -> bool:
        return self.mode is ManifestMode.SINGLE_FILE

    @property
    def total_size(self) -> int:
        return sum(entry.expected_size for entry in self.entries)


_MISSING = object()


def _get_field(mapping: Mapping, key: str, default: Any = _MISSING) -> Any:
    """Looks up `key` as a str first, then as bytes."""
    if key in mapping:
        return mapping[key]
    raw_key = key.encode('utf-8')
    if raw_key in mapping:
        return mapping[raw_key]
    if default is _MISSING:
        raise KeyError(key)
    return default


def _to_text(value: Any, field_name: str) -> str:
    if isinstance(value, bytes):
        return os.fsdecode(value)
    if isinstance(value, str):
        return value
    raise ManifestError(f"Field '{field_name}' must be a string, got {type(value).__name__}.")


def _to_size(value: Any, field_name: str) -> int:
    # bool is an int subclass; it never appears in valid bencode
    if isinstance(value, bool) or not isinstance(value, int):
        raise ManifestError(f"Field '{field_name}' must be an integer, got {value!r}.")
    if value < 0:
        raise ManifestError(f"Field '{field_name}' must not be negative, got {value}.")
    return value


def build_manifest(torrent_data: Mapping) -> TorrentManifest:
    """Builds a `TorrentManifest` from a decoded torrent descriptor.

    Multi-file torrents (those with an `info.files` list) produce one entry per
    file, with the path segments joined by '/'. Single-file torrents produce a
    single entry named after `info.name` whose size is `info.length` (0 when
    absent).

    Args:
        torrent_data: The decoded torrent dictionary.

    Returns:
        The immutable manifest.

    Raises:
        ManifestError: If `info` or `info.name` is missing, or a file entry is
            malformed.
    """
    if not isinstance(torrent_data, Mapping):
        raise ManifestError("Torrent descriptor must be a dictionary.")
    try:
        info = _get_field(torrent_data, 'info')
    except KeyError:
        raise ManifestError("Torrent descriptor has no 'info' dictionary.") from None
    if not isinstance(info, Mapping):
        raise ManifestError("Torrent 'info' must be a dictionary.")

    try:
        name = _to_text(_get_field(info, 'name'), 'info.name')
    except KeyError:
        raise ManifestError("Torrent 'info' has no 'name'.") from None
    if not name:
        raise ManifestError("Torrent 'info.name' is empty.")

    files: Optional[Any] = _get_field(info, 'files', None)
    if files is None:
        length = _to_size(_get_field(info, 'length', 0), 'info.length')
        return TorrentManifest(
            name=name,
            mode=ManifestMode.SINGLE_FILE,
            entries=(ManifestEntry(relative_path=name, expected_size=length),),
        )

    if not isinstance(files, (list, tuple)):
        raise ManifestError("Torrent 'info.files' must be a list.")

    entries = []
    for index, file_info in enumerate(files):
        if not isinstance(file_info, Mapping):
            raise ManifestError(f"Entry {index} of 'info.files' is not a dictionary.")
        try:
            segments = _get_field(file_info, 'path')
            length = _get_field(file_info, 'length')
        except KeyError as e:
            raise ManifestError(f"Entry {index} of 'info.files' has no '{e.args[0]}'.") from None
        if not isinstance(segments, (list, tuple)) or not segments:
            raise ManifestError(f"Entry {index} of 'info.files' has an empty or invalid path.")
        relative_path = '/'.join(_to_text(segment, f'info.files[{index}].path') for segment in segments)
        entries.append(ManifestEntry(
            relative_path=relative_path,
            expected_size=_to_size(length, f'info.files[{index}].length'),
        ))

    return TorrentManifest(name=name, mode=ManifestMode.MULTI_FILE, entries=tuple(entries))
