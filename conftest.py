from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import redis
from fastapi.testclient import TestClient
from jobrec.config import Settings
from jobrec.job_search import SearchOutcome
from jobrec.main import create_app
from jobrec.models import JobListing


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the cache makes."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.store: dict[str, tuple[str, float]] = {}
        self.closed = 0

    def get(self, key: str) -> str | None:
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            del self.store[key]
            return None
        return value

    def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        self.store[key] = (value, self.clock() + ttl_seconds)
        return True

    def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0

    def close(self) -> None:
        self.closed += 1


class UnavailableRedis:
    def get(self, key: str) -> str | None:
        raise redis.ConnectionError("connection refused")

    def setex(self, key: str, ttl_seconds: int, value: str) -> bool:
        raise redis.ConnectionError("connection refused")

    def delete(self, key: str) -> int:
        raise redis.ConnectionError("connection refused")

    def close(self) -> None:
        return None


class StubJobSearch:
    def __init__(self, listings_by_keyword: dict[str | None, list[JobListing]] | None = None) -> None:
        self.listings_by_keyword = listings_by_keyword or {}
        self.calls: list[tuple[float, float, str | None]] = []
        self.provider_failed = False

    def search_with_outcome(
        self,
        latitude: float,
        longitude: float,
        keyword: str | None = None,
    ) -> SearchOutcome:
        self.calls.append((latitude, longitude, keyword))
        if self.provider_failed:
            return SearchOutcome(provider_failed=True)
        listings = self.listings_by_keyword.get(keyword, [])
        return SearchOutcome(listings=[listing.model_copy(deep=True) for listing in listings])


def make_listing(listing_id: str, title: str, keywords: set[str] | None = None) -> JobListing:
    return JobListing(
        id=listing_id,
        title=title,
        company_name="Acme Corp",
        location="Mountain View, CA",
        via="via LinkedIn",
        description=f"{title} building backend services",
        job_highlights=["Python", "Distributed systems"],
        url=f"https://jobs.example.com/{listing_id}",
        keywords=keywords or set(),
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(fake_clock: FakeClock) -> FakeRedis:
    return FakeRedis(fake_clock)


@pytest.fixture
def unavailable_redis() -> UnavailableRedis:
    return UnavailableRedis()


@pytest.fixture
def listing_factory():
    return make_listing


@pytest.fixture
def stub_job_search() -> StubJobSearch:
    return StubJobSearch(
        {
            None: [
                make_listing("job_001", "Software Engineer", {"python", "backend"}),
                make_listing("job_002", "Data Engineer", {"sql", "python"}),
            ],
            "python": [
                make_listing("job_002", "Data Engineer", {"sql", "python"}),
                make_listing("job_003", "Python Developer", {"python", "django"}),
            ],
            "backend": [
                make_listing("job_001", "Software Engineer", {"python", "backend"}),
                make_listing("job_004", "Backend Engineer", {"backend", "go"}),
            ],
        }
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(database_path=str(tmp_path / "jobrec.sqlite3"))


@pytest.fixture
def client(
    settings: Settings,
    fake_redis: FakeRedis,
    stub_job_search: StubJobSearch,
) -> Iterator[TestClient]:
    app = create_app(
        settings,
        cache_client_factory=lambda: fake_redis,
        job_search_client=stub_job_search,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def logged_in_client(client: TestClient) -> TestClient:
    register = client.post(
        "/register",
        json={
            "user_id": "john_doe",
            "password": "secret123",
            "first_name": "John",
            "last_name": "Doe",
        },
    )
    assert register.status_code == 200
    login = client.post("/login", json={"user_id": "john_doe", "password": "secret123"})
    assert login.status_code == 200
    return client
