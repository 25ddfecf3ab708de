"""Searches the filesystem for directories matching a relative save path.

A Windows save path such as `D:\\Media\\Movies` is normalized to `Media/Movies`
and then looked for anywhere below the search roots: every path whose trailing
components are `Media/Movies` is a candidate. System, cache and development
directories are pruned, symlinks are not followed, and the walk gives up after
a time budget.
"""
import logging
import os
import time
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from utils import Timeouts

DEFAULT_EXCLUDED_PATHS: Tuple[str, ...] = (
    'proc', 'sys', 'dev', 'run', 'var/lib', 'snap',
    # Temporary and cache
    'tmp', 'var/tmp', 'var/cache', 'var/log', '.cache',
    # Development
    'node_modules', '.git', 'build', 'dist', '__pycache__', 'venv', 'vendor',
    # Recovery/system
    'lost+found', 'var/crash',
)


class PathSearchTimeout(Exception):
    """Raised when the filesystem walk exceeds its time budget."""
    pass


def _split(path: str) -> Tuple[str, ...]:
    return tuple(part for part in path.replace('\\', '/').split('/') if part)


def _compile_exclusions(excluded: Iterable[str]) -> FrozenSet[Tuple[str, ...]]:
    return frozenset(parts for parts in (_split(e) for e in excluded) if parts)


def _ends_with(parts: Tuple[str, ...], suffix: Tuple[str, ...]) -> bool:
    return len(parts) >= len(suffix) and parts[len(parts) - len(suffix):] == suffix


def _is_excluded(parts: Tuple[str, ...], exclusions: FrozenSet[Tuple[str, ...]]) -> bool:
    return any(_ends_with(parts, exclusion) for exclusion in exclusions)


def _walk_for_matches(root: str, target: Tuple[str, ...], exclusions: FrozenSet[Tuple[str, ...]],
                      deadline: float) -> List[str]:
    matches = []
    for dirpath, dirnames, filenames in os.walk(root, topdown=True, followlinks=False):
        if time.monotonic() > deadline:
            raise PathSearchTimeout(f"Search below '{root}' exceeded its time budget")

        dir_parts = _split(dirpath)
        kept = []
        for name in sorted(dirnames):
            parts = dir_parts + (name,)
            if _is_excluded(parts, exclusions):
                continue
            if name == target[-1] and _ends_with(parts, target):
                # Matches are not descended into
                matches.append(os.path.join(dirpath, name))
                continue
            kept.append(name)
        dirnames[:] = kept

        if target[-1] in filenames and _ends_with(dir_parts + (target[-1],), target):
            matches.append(os.path.join(dirpath, target[-1]))
    return matches


def find_paths(relative_path: str, roots: Sequence[str] = ('/',), timeout: Optional[float] = None,
               excluded: Iterable[str] = DEFAULT_EXCLUDED_PATHS) -> List[str]:
    """Finds every location below `roots` that ends with `relative_path`.

    Args:
        relative_path: The normalized save path to look for (e.g. 'Media/Movies').
        roots: Directories to search from.
        timeout: Seconds before the search is abandoned. Defaults to
            `Timeouts.PATH_SEARCH`.
        excluded: Directory names or '/'-separated path suffixes to prune.

    Returns:
        The sorted list of matching paths. An empty list is returned when the
        path is empty or the search times out.
    """
    target = _split(relative_path)
    if not target:
        logging.warning(f"Cannot search for an empty relative path ('{relative_path}').")
        return []

    exclusions = _compile_exclusions(excluded)
    budget = Timeouts.PATH_SEARCH if timeout is None else timeout
    deadline = time.monotonic() + budget
    logging.debug(f"Searching for '{'/'.join(target)}' below {list(roots)} (timeout {budget}s)")

    found = set()
    try:
        for root in roots:
            if not os.path.isdir(root):
                logging.warning(f"Search root '{root}' is not a directory. Skipping.")
                continue
            found.update(_walk_for_matches(root, target, exclusions, deadline))
    except PathSearchTimeout:
        logging.error(f"Search for '{relative_path}' timed out after {budget}s.")
        return []

    results = sorted(found)
    logging.info(f"Found {len(results)} candidate path(s) for '{relative_path}'.")
    return results
