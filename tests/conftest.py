import logging

import pytest


@pytest.fixture
def restore_root_logger():
    """Undoes the handler and level changes made by `setup_logging`/`main`."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
