"""
Shared fixtures: a file-backed "local" and "remote" SQLite database per test.
"""

import pytest

from enrollsync.core.database import init_db
from sync_helpers import make_engine


@pytest.fixture
async def local_engine(tmp_path):
    engine = make_engine(tmp_path / "local.db")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def remote_engine(tmp_path):
    engine = make_engine(tmp_path / "remote.db")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def empty_remote_engine(tmp_path):
    """Remote database with no tables at all."""
    engine = make_engine(tmp_path / "empty_remote.db")
    yield engine
    await engine.dispose()
