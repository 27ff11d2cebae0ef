import os

os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PORT"] = "8080"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["BASE_URL"] = "http://testserver"
os.environ["ENV"] = "dev"

from concurrent.futures import Executor, Future
from datetime import timedelta

import geoip2.errors
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from volaticus.db.base import Base
from volaticus.db.session import _enable_sqlite_foreign_keys, get_db, init_db
from volaticus.main import app
from volaticus.services.analytics import ClickRecorder
from volaticus.services.geoip import GeoIPResolver
from volaticus.services.upload_service import UploadService
from volaticus.services.url_service import URLService
from volaticus.services.user_service import create_access_token, register_user
from volaticus.storage.local import LocalStorage

MB = 1024 * 1024
PASSWORD = "Sup3r-secret!"

# In-memory SQLite database shared by every session in a test
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
event.listen(engine, "connect", _enable_sqlite_foreign_keys)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


class InlineExecutor(Executor):
    """Runs submitted work immediately so background effects are visible to assertions."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class FakeGeoReader:
    """Stands in for geoip2.database.Reader with a fixed answer per IP."""

    def __init__(self, records):
        self.records = records
        self.closed = False

    def city(self, ip):
        if ip not in self.records:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not found")
        return self.records[ip]

    def close(self):
        self.closed = True


class FakeRedis:
    """Dict-backed stand-in for the Redis calls the services make."""

    def __init__(self):
        self.store = {}

    def setex(self, key, ttl, value):
        self.store[key] = value

    def get(self, key):
        return self.store.get(key)

    def exists(self, key):
        return int(key in self.store)

    def delete(self, key):
        self.store.pop(key, None)


@pytest.fixture
def db_session():
    """Creates a fresh database for each test."""
    init_db(engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"))


@pytest.fixture
def recorder():
    return ClickRecorder(TestingSessionLocal, executor=InlineExecutor())


@pytest.fixture
def upload_service(storage):
    return UploadService(
        storage,
        max_size=10 * MB,
        quota=100 * MB,
        ttl=timedelta(hours=24),
        base_url="http://testserver",
    )


@pytest.fixture
def url_service(recorder):
    return URLService(GeoIPResolver(), recorder, "http://testserver")


def make_user(db, username="alice"):
    return register_user(db, f"{username}@example.com", username, PASSWORD)


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def user(db_session):
    return make_user(db_session, "alice")


@pytest.fixture
def other_user(db_session):
    return make_user(db_session, "bob")


@pytest.fixture
def client(db_session, upload_service, url_service):
    """Creates a test client with overridden database dependency and in-test services."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.upload_service = upload_service
    app.state.url_service = url_service
    yield TestClient(app)
    app.dependency_overrides.clear()
