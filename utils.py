import os
from typing import Union


class Timeouts:
    PATH_SEARCH = int(os.getenv('QM_SEARCH_TIMEOUT', '150'))
    PIDOF = int(os.getenv('QM_PIDOF_TIMEOUT', '10'))


class MigrationError(Exception):
    """Raised when a precondition of the migration is not met.

    Examples are a missing Linux `BT_backup` directory, a running qBittorrent
    instance, or an empty Windows backup directory. `main()` turns it into a
    non-zero exit code.
    """
    pass


def format_size(size_bytes: Union[int, float]) -> str:
    """Formats a byte count as a human-readable string (e.g. '1.50 GiB')."""
    size = float(size_bytes)
    for unit in ('B', 'KiB', 'MiB', 'GiB', 'TiB'):
        if abs(size) < 1024.0 or unit == 'TiB':
            if unit == 'B':
                return f"{int(size)} B"
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} TiB"
