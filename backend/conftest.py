import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("IPAM_MAX_JITTER_MS", "0")
os.environ.setdefault("IPAM_LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from ipam_core.inventory import BlockInfo
from ipam_core.main import app, get_inventory
from ipam_core.sql_inventory import SQLInventory


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def inventory(engine):
    return SQLInventory(engine)


@pytest.fixture
def space(inventory):
    inventory.create_space("Prod")
    return "Prod"


@pytest.fixture
def client(inventory):
    app.dependency_overrides[get_inventory] = lambda: inventory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_block():
    """Build a BlockInfo without touching the inventory."""
    def _make(start, prefix_length, width=32, terminal=False, name="parent", block_id=1, level=0):
        return BlockInfo(
            id=block_id,
            space_id=1,
            name=name,
            width=width,
            start=start,
            prefix_length=prefix_length,
            terminal=terminal,
            level=level,
        )
    return _make
