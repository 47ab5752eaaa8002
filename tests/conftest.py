import logging

import pytest


@pytest.fixture(autouse=True)
def drop_cli_log_handlers():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler.get_name() == "station-cli":
            root.removeHandler(handler)
    root.setLevel(level)
