import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app


@pytest.fixture
def db():
    database = mongomock.MongoClient()["vrboDB"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client_with():
    """Build a client over any stand-in database object."""
    def make(fake_db, raise_server_exceptions=True):
        app.dependency_overrides[get_db] = lambda: fake_db
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)

    yield make
    app.dependency_overrides.clear()
