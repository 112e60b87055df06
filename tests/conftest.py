import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_root_logging():
    # setup_logging() binds a handler to the (captured) stdout of the test that called it
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
