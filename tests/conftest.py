from datetime import datetime, timedelta

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

import api.files.models  # noqa: F401  registers the files table
from api.files.repository import SQLMetadataStore
from api.files.services import FileService
from core.config import get_settings
from core.deps import get_file_service
from core.security import LinkSigner
from core.storage import LocalBlobStore
from main import app

TEST_ADMIN_TOKEN = "test-admin-token"
TEST_HMAC_KEY = "test-hmac-key"
TEST_TTL = timedelta(hours=1)
TEST_MAX_SIZE = 1024


class FakeClock:
    """Clock returning a fixed naive UTC time that tests move forward"""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class MockS3Body:
    """Stand-in for botocore's StreamingBody"""

    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0
        self.closed = False

    def read(self, amt: int | None = None) -> bytes:
        if amt is None:
            amt = len(self._data) - self._offset
        chunk = self._data[self._offset:self._offset + amt]
        self._offset += len(chunk)
        return chunk

    def close(self):
        self.closed = True


class MockS3Client:
    """Mock S3 client for testing"""

    def __init__(self):
        self.buckets = {}  # {bucket_name: {key: bytes}}
        self.error_mode = None  # For simulating errors

    def _raise_if_error(self, operation: str):
        if self.error_mode:
            raise ClientError(
                {"Error": {"Code": self.error_mode, "Message": self.error_mode}},
                operation,
            )

    @staticmethod
    def _not_found(code: str, operation: str):
        return ClientError({"Error": {"Code": code, "Message": "Not Found"}}, operation)

    def head_bucket(self, Bucket: str):
        self._raise_if_error("HeadBucket")
        if Bucket not in self.buckets:
            raise self._not_found("404", "HeadBucket")
        return {}

    def create_bucket(self, Bucket: str, **kwargs):
        self.buckets.setdefault(Bucket, {})
        return {}

    def put_object(self, Bucket: str, Key: str, Body):
        self._raise_if_error("PutObject")
        data = Body.read() if hasattr(Body, "read") else Body
        self.buckets.setdefault(Bucket, {})[Key] = data
        return {}

    def get_object(self, Bucket: str, Key: str):
        self._raise_if_error("GetObject")
        objects = self.buckets.get(Bucket, {})
        if Key not in objects:
            raise self._not_found("NoSuchKey", "GetObject")
        return {"Body": MockS3Body(objects[Key]), "ContentLength": len(objects[Key])}

    def head_object(self, Bucket: str, Key: str):
        self._raise_if_error("HeadObject")
        if Key not in self.buckets.get(Bucket, {}):
            raise self._not_found("404", "HeadObject")
        return {"ContentLength": len(self.buckets[Bucket][Key])}

    def delete_object(self, Bucket: str, Key: str):
        self._raise_if_error("DeleteObject")
        self.buckets.get(Bucket, {}).pop(Key, None)
        return {}

    def simulate_error(self, error_type: str):
        """
        Configure client to raise specific errors

        Args:
            error_type: Error code, e.g. "AccessDenied"
        """
        self.error_mode = error_type


@pytest.fixture(autouse=True)
def settings_env(monkeypatch, tmp_path):
    """Point settings at test secrets, an in-memory database and tmp storage"""
    monkeypatch.setenv("FILES_STASH_ADMIN_TOKEN", TEST_ADMIN_TOKEN)
    monkeypatch.setenv("FILES_STASH_HMAC_KEY", TEST_HMAC_KEY)
    monkeypatch.setenv("SQLALCHEMY_DATABASE_URI", "sqlite://")
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("ENV_SECRETS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="blob_store")
def blob_store_fixture(tmp_path):
    return LocalBlobStore(tmp_path / "blobs", max_size=TEST_MAX_SIZE)


@pytest.fixture(name="signer")
def signer_fixture():
    return LinkSigner(TEST_HMAC_KEY)


@pytest.fixture(name="metadata_store")
def metadata_store_fixture(session: Session):
    return SQLMetadataStore(session)


@pytest.fixture(name="file_service")
def file_service_fixture(blob_store, metadata_store, signer, clock):
    return FileService(
        blob_store=blob_store,
        metadata_store=metadata_store,
        signer=signer,
        ttl=TEST_TTL,
        clock=clock,
    )


@pytest.fixture(name="mock_s3_client")
def mock_s3_client_fixture():
    """Provide a mock S3 client for testing"""
    return MockS3Client()


@pytest.fixture(name="client")
def client_fixture(file_service: FileService):
    def get_file_service_override():
        return file_service

    app.dependency_overrides[get_file_service] = get_file_service_override

    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="admin_headers")
def admin_headers_fixture():
    return {"Authorization": f"Bearer {TEST_ADMIN_TOKEN}"}
