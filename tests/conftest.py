import logging

import pytest

from propdb import db as _db_mod


@pytest.fixture(autouse=True)
def _release_active_db():
    """Close any database a test left active so the next one can initialize."""
    yield
    leftover = _db_mod.active_db()
    if leftover is not None and leftover._token is not None:
        logging.getLogger("tests").warning("Closing database left open by test")
        leftover.close(leftover._token)


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"
