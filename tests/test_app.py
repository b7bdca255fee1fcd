import mongomock
from fastapi.testclient import TestClient
from pymongo.errors import AutoReconnect

from database import USERS, ensure_indexes
from main import app
from tests.fakes import SwapDb


class DownCollection:
    name = USERS

    def find(self, *args, **kwargs):
        raise AutoReconnect("no primary")


class BuggyCollection:
    name = USERS

    def find(self, *args, **kwargs):
        raise RuntimeError("boom")


def test_root(client):
    res = client.get("/")
    assert res.status_code == 200
    assert res.text == "Vrbo server is running"


def test_security_headers(client):
    res = client.get("/")
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "SAMEORIGIN"


def test_store_failure_is_500(client_with, db):
    client = client_with(SwapDb(db, **{USERS: DownCollection()}))

    res = client.get("/users")

    assert res.status_code == 500
    assert res.json() == {"error": "Error fetching users"}


def test_unexpected_error_gets_generic_500(client_with, db):
    client = client_with(SwapDb(db, **{USERS: BuggyCollection()}), raise_server_exceptions=False)

    res = client.get("/all-users")

    assert res.status_code == 500
    assert res.json() == {"message": "Something went wrong!"}


def test_no_database_is_500():
    res = TestClient(app).get("/all-users")
    assert res.status_code == 500
    assert res.json() == {"error": "Database not available"}


def test_diagnostics_without_database():
    res = TestClient(app).get("/test")
    assert res.status_code == 200
    assert res.json()["connection_status"] == "Not Connected"


def test_diagnostics_with_database(monkeypatch):
    database = mongomock.MongoClient()["vrboDB"]
    database.users.insert_one({"email": "a@b.com"})
    monkeypatch.setattr(app.state, "db", database, raising=False)

    body = TestClient(app).get("/test").json()

    assert body["connection_status"] == "Connected"
    assert body["database_name"] == "vrboDB"
    assert "users" in body["collections"]


def test_unique_indexes_on_natural_keys():
    database = mongomock.MongoClient()["vrboDB"]
    ensure_indexes(database)

    assert any(ix["key"] == [("email", 1)] and ix.get("unique") for ix in database.users.index_information().values())
    booking_keys = [ix["key"] for ix in database.bookings.index_information().values() if ix.get("unique")]
    assert [("email", 1), ("resortId", 1)] in booking_keys
