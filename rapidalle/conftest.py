# rapidalle/conftest.py
import os

import pytest

# Must be set before rapidalle.main is imported anywhere
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

from rapidalle.core.cache import FlatCache
from rapidalle.core.database import create_all_tables, dispose_engine, init_engine
from rapidalle.core.metrics import METRICS
from rapidalle.core.services import Services
from rapidalle.features.generation.gate import GenerationGate
from rapidalle.features.ratelimit.limiter import FixedWindowRateLimiter
from rapidalle.tests.mocks import FakeCaptionClient, FakeRunner

TEST_RATE_LIMIT = 3


@pytest.fixture(scope="function", autouse=True)
def sqlite_db(tmp_path_factory):
    """Fresh SQLite database per test."""
    db_dir = tmp_path_factory.mktemp("db")
    url = f"sqlite:///{db_dir}/test.db"
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def cache(tmp_path):
    return FlatCache(cache_dir=str(tmp_path / "cache"), cache_id="test-cache", persist_interval_seconds=0)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def services(cache, fake_runner):
    limiter = FixedWindowRateLimiter(cache, max_requests=TEST_RATE_LIMIT, window_seconds=3600)
    gate = GenerationGate(limiter, cache, fake_runner, cost=1)
    return Services(
        cache=cache,
        limiter=limiter,
        runner=fake_runner,
        gate=gate,
        caption_client_factory=FakeCaptionClient,
    )


@pytest.fixture
def client(services):
    """TestClient with services swapped for in-memory fakes."""
    from fastapi.testclient import TestClient

    from rapidalle.core.services import get_services
    from rapidalle.main import app

    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
