import pytest

from v2v.app import create_app
from v2v.file_store import FileStore
from v2v.jobs import JobStore
from v2v.runway import RunwayClient

from fakes import FakeCollection, FakeSession, VirtualClock


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def runway(session):
    return RunwayClient(api_key="test-key", base_url="https://runway.test/v1", version="2024-12-01",
                        timeout=5, session=session)


@pytest.fixture
def job_store():
    return JobStore(FakeCollection())


@pytest.fixture
def file_store():
    return FileStore(ttl_seconds=3600)


@pytest.fixture
def app(runway, job_store, file_store):
    return create_app(
        runway=runway,
        job_store=job_store,
        file_store=file_store,
        watch_tasks=False,
        settings={
            "TESTING": True,
            "RATELIMIT_ENABLED": False,
            "PUBLIC_BASE_URL": "https://relay.test",
            "MAX_UPLOAD_BYTES": 1024,
        },
    )


@pytest.fixture
def client(app):
    return app.test_client()
