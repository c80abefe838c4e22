"""Shared fixtures: in-memory MongoDB, a fake image store and logged-in users."""
import os
import threading

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import Database
from errors import UpstreamFailure
from main import app, get_database, get_uploader
from schemas import MediaHandle

PASSWORD = "secret1"


class FakeUploader:
    """Stands in for Cloudinary; files named in ``fail_on`` fail upstream."""

    def __init__(self):
        self.fail_on = set()
        self.uploaded = []
        self.destroyed = []
        self._lock = threading.Lock()

    def upload(self, f):
        if f.filename in self.fail_on:
            raise UpstreamFailure()
        handle = MediaHandle(
            url=f"https://res.example.com/cityguardian/complaints/{f.filename}",
            media_id=f"cityguardian/complaints/{f.filename}",
            width=1200,
            height=800,
            format=f.content_type.split("/")[-1],
            byte_size=len(f.data),
        )
        with self._lock:
            self.uploaded.append(handle)
        return handle

    def destroy(self, media_id):
        with self._lock:
            self.destroyed.append(media_id)


@pytest.fixture
def database():
    return Database("mongodb://unused", "cityguardian_test", client=mongomock.MongoClient())


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def client(database, uploader):
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_uploader] = lambda: uploader
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register_user(client):
    def _register(email, role=None, name="Test User", password=PASSWORD):
        body = {
            "name": name,
            "email": email,
            "password": password,
            "phone": "555-1000",
            "address": "1 Main St",
            "city": "Springfield",
        }
        if role:
            body["role"] = role
        return client.post("/api/auth/register", json=body)
    return _register


@pytest.fixture
def login(client):
    """Log in and return bearer headers; the session cookie is dropped so tests stay explicit."""
    def _login(email, password=PASSWORD):
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        client.cookies.clear()
        return {"Authorization": f"Bearer {resp.json()['token']}"}
    return _login


@pytest.fixture
def citizen(register_user, login):
    register_user("citizen@example.com")
    return login("citizen@example.com")


@pytest.fixture
def employee(register_user, login):
    register_user("employee@example.com", role="employee")
    return login("employee@example.com")


@pytest.fixture
def admin(register_user, login):
    register_user("admin@example.com", role="admin")
    return login("admin@example.com")
