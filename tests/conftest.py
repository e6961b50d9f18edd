# tests/conftest.py
import pytest
from sqlalchemy.orm import sessionmaker

from matchsync.db import Base, make_engine
from matchsync.models import Document  # noqa: F401
from matchsync.store import MemoryDocumentStore, SqlDocumentStore


class FixedClock:
    def __init__(self, start=1_700_000_000_000):
        self.value = start

    def __call__(self):
        return self.value


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def sql_store(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'documents.db'}")
    Base.metadata.create_all(bind=engine)
    yield SqlDocumentStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


@pytest.fixture
def jeonse_buyer():
    return {
        "name": "김민수",
        "typePrefs": ["전세"],
        "budgetMin": 5000,
        "budgetMax": 10000,
        "areaPrefsPy": [25],
    }


@pytest.fixture
def jeonse_listing():
    return {"type": "전세", "deposit": 8000, "area_py": 25, "status": "진행중"}
