from __future__ import annotations

from pathlib import Path

import pytest
from jobrec.errors import StorageError
from jobrec.models import RegistrationOutcome
from jobrec.repository import JobRecRepository

pytestmark = pytest.mark.unit


@pytest.fixture
def repository(tmp_path: Path):
    repo = JobRecRepository(str(tmp_path / "jobrec.sqlite3"))
    repo.connect()
    repo.create_schema()
    repo.add_user("john_doe", "secret123", "John", "Doe")
    try:
        yield repo
    finally:
        repo.close()


def test_add_user_distinguishes_existing_user(repository: JobRecRepository) -> None:
    assert repository.add_user("jane_doe", "secret123", "Jane", "Doe") is RegistrationOutcome.CREATED
    assert (
        repository.add_user("jane_doe", "another1", "Jane", "Doe")
        is RegistrationOutcome.ALREADY_EXISTS
    )


def test_passwords_are_stored_hashed(repository: JobRecRepository) -> None:
    row = repository.connection.execute(
        "SELECT password FROM users WHERE user_id = ?",
        ("john_doe",),
    ).fetchone()

    assert row["password"].startswith("scrypt$")
    assert "secret123" not in row["password"]
    assert repository.verify_login("john_doe", "secret123")
    assert not repository.verify_login("john_doe", "wrong-password")
    assert not repository.verify_login("nobody", "secret123")


def test_full_name_is_empty_for_unknown_user(repository: JobRecRepository) -> None:
    assert repository.get_full_name("john_doe") == "John Doe"
    assert repository.get_full_name("nobody") == ""


def test_set_favorite_is_idempotent(repository: JobRecRepository, listing_factory) -> None:
    listing = listing_factory("job_001", "Software Engineer", {"python", "backend"})

    repository.set_favorite("john_doe", listing)
    repository.set_favorite("john_doe", listing)

    assert repository.get_favorite_ids("john_doe") == {"job_001"}
    count = repository.connection.execute(
        "SELECT COUNT(1) AS c FROM history WHERE user_id = ?",
        ("john_doe",),
    ).fetchone()["c"]
    assert count == 1
    assert repository.get_keywords("job_001") == {"python", "backend"}


def test_save_listing_ignores_duplicates(repository: JobRecRepository, listing_factory) -> None:
    repository.save_listing(listing_factory("job_001", "Software Engineer", {"python"}))
    repository.save_listing(listing_factory("job_001", "Renamed Title", {"python", "sql"}))

    item = repository.connection.execute(
        "SELECT title FROM items WHERE item_id = ?",
        ("job_001",),
    ).fetchone()
    assert item["title"] == "Software Engineer"
    assert repository.get_keywords("job_001") == {"python", "sql"}
    assert repository.get_favorite_ids("john_doe") == set()


def test_unset_favorite_keeps_listing(repository: JobRecRepository, listing_factory) -> None:
    repository.set_favorite("john_doe", listing_factory("job_001", "Software Engineer"))

    repository.unset_favorite("john_doe", "job_001")
    repository.unset_favorite("john_doe", "job_001")

    assert repository.get_favorite_ids("john_doe") == set()
    item = repository.connection.execute(
        "SELECT title FROM items WHERE item_id = ?",
        ("job_001",),
    ).fetchone()
    assert item["title"] == "Software Engineer"


def test_favorite_listings_are_newest_first(repository: JobRecRepository, listing_factory) -> None:
    repository.set_favorite("john_doe", listing_factory("job_001", "Software Engineer", {"python"}))
    repository.set_favorite("john_doe", listing_factory("job_002", "Data Engineer", {"sql"}))
    repository.connection.execute(
        "UPDATE history SET last_favor_time = ? WHERE item_id = ?",
        ("2000-01-01T00:00:00+00:00", "job_001"),
    )
    repository.connection.commit()

    favorites = repository.get_favorite_listings("john_doe")

    assert [listing.id for listing in favorites] == ["job_002", "job_001"]
    assert all(listing.favorite for listing in favorites)
    assert favorites[0].keywords == {"sql"}
    assert favorites[1].url == "https://jobs.example.com/job_001"


def test_sessions_resolve_until_deleted(repository: JobRecRepository) -> None:
    token = repository.create_session("john_doe", 3600)

    assert repository.resolve_session(token) == "john_doe"
    assert repository.resolve_session("sess_unknown") is None
    stored = repository.connection.execute("SELECT session_hash FROM sessions").fetchone()
    assert stored["session_hash"] != token

    assert repository.delete_session(token)
    assert repository.resolve_session(token) is None
    assert not repository.delete_session(token)


def test_expired_sessions_do_not_resolve(repository: JobRecRepository) -> None:
    token = repository.create_session("john_doe", 3600)
    repository.connection.execute(
        "UPDATE sessions SET expires_at = ?",
        ("2000-01-01T00:00:00+00:00",),
    )
    repository.connection.commit()

    assert repository.resolve_session(token) is None


def test_record_search_counts_rows(repository: JobRecRepository) -> None:
    repository.record_search(
        user_id="john_doe",
        keyword="python",
        latitude=37.38,
        longitude=-122.08,
        results_count=2,
        response_time_ms=15,
    )

    assert repository.count_search_history("john_doe") == 1
    assert repository.count_search_history("nobody") == 0


def test_storage_failures_raise_storage_error(repository: JobRecRepository) -> None:
    repository.connection.execute("DROP TABLE history")

    with pytest.raises(StorageError) as excinfo:
        repository.get_favorite_ids("john_doe")

    assert excinfo.value.status_code == 500
    assert "history" not in excinfo.value.user_message


def test_connect_failure_raises_storage_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    repository = JobRecRepository(str(blocker / "jobrec.sqlite3"))

    with pytest.raises(StorageError):
        repository.connect()


def test_connection_required_before_use(tmp_path: Path) -> None:
    repository = JobRecRepository(str(tmp_path / "jobrec.sqlite3"))

    with pytest.raises(RuntimeError):
        repository.get_full_name("john_doe")
