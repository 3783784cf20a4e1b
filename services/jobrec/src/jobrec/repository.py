from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

from common.utils import now_utc_iso

from jobrec.errors import StorageError
from jobrec.models import JobListing, RegistrationOutcome
from jobrec.security import hash_password, hash_token, new_session_token, verify_password

LOGGER = logging.getLogger("jobrec.repository")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    password TEXT NOT NULL,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
    item_id TEXT PRIMARY KEY,
    title TEXT,
    company_name TEXT,
    location TEXT,
    via TEXT,
    description TEXT,
    url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS keywords (
    item_id TEXT NOT NULL REFERENCES items(item_id) ON DELETE CASCADE,
    keyword TEXT NOT NULL,
    relevance_score REAL,
    PRIMARY KEY (item_id, keyword)
);

CREATE TABLE IF NOT EXISTS history (
    user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    item_id TEXT NOT NULL REFERENCES items(item_id) ON DELETE CASCADE,
    last_favor_time TEXT NOT NULL,
    PRIMARY KEY (user_id, item_id)
);

CREATE INDEX IF NOT EXISTS idx_history_user_time ON history(user_id, last_favor_time);

CREATE TABLE IF NOT EXISTS sessions (
    session_hash TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    search_query TEXT,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    results_count INTEGER NOT NULL DEFAULT 0,
    response_time_ms INTEGER,
    search_time TEXT NOT NULL
);
"""


class JobRecRepository:
    def __init__(self, database_path: str, *, logger: logging.Logger | None = None) -> None:
        self.database_path = Path(database_path)
        self.logger = logger or LOGGER
        self._connection: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(
                self.database_path,
                timeout=5.0,
                check_same_thread=False,
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
        except (OSError, sqlite3.Error) as exc:
            self._connection = None
            self.logger.error(json.dumps({"event": "db_connect_failed", "error": str(exc)}))
            raise StorageError(f"connect failed: {exc}") from exc

    def create_schema(self) -> None:
        with self._guard("create_schema"):
            self.connection.executescript(SCHEMA)
            self.connection.commit()

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except sqlite3.Error as exc:
            self.logger.error(json.dumps({"event": "db_close_failed", "error": str(exc)}))
        finally:
            self._connection = None

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            if self._connection is not None:
                self._connection.rollback()
            self.logger.error(
                json.dumps({"event": "db_operation_failed", "operation": operation, "error": str(exc)})
            )
            raise StorageError(f"{operation} failed: {exc}") from exc

    def verify_login(self, user_id: str, password: str) -> bool:
        with self._guard("verify_login"):
            row = self.connection.execute(
                "SELECT password FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return False
        return verify_password(password, row["password"])

    def add_user(
        self,
        user_id: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> RegistrationOutcome:
        digest = hash_password(password)
        with self._guard("add_user"):
            cursor = self.connection.execute(
                """
                INSERT INTO users (user_id, password, first_name, last_name, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, digest, first_name, last_name, now_utc_iso()),
            )
            self.connection.commit()
        if cursor.rowcount == 1:
            return RegistrationOutcome.CREATED
        return RegistrationOutcome.ALREADY_EXISTS

    def get_full_name(self, user_id: str) -> str:
        with self._guard("get_full_name"):
            row = self.connection.execute(
                "SELECT first_name, last_name FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return ""
        return f"{row['first_name']} {row['last_name']}"

    def save_listing(self, listing: JobListing) -> None:
        with self._guard("save_listing"):
            self._insert_listing(listing)
            self.connection.commit()

    def _insert_listing(self, listing: JobListing) -> None:
        self.connection.execute(
            """
            INSERT INTO items (
                item_id,
                title,
                company_name,
                location,
                via,
                description,
                url,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(item_id) DO NOTHING
            """,
            (
                listing.id,
                listing.title,
                listing.company_name,
                listing.location,
                listing.via,
                listing.description,
                listing.url,
                now_utc_iso(),
            ),
        )
        self.connection.executemany(
            """
            INSERT INTO keywords (item_id, keyword, relevance_score)
            VALUES (?, ?, NULL)
            ON CONFLICT(item_id, keyword) DO NOTHING
            """,
            [(listing.id, keyword) for keyword in sorted(listing.keywords)],
        )

    def set_favorite(self, user_id: str, listing: JobListing) -> None:
        with self._guard("set_favorite"):
            self._insert_listing(listing)
            self.connection.execute(
                """
                INSERT INTO history (user_id, item_id, last_favor_time)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id, item_id) DO NOTHING
                """,
                (user_id, listing.id, now_utc_iso()),
            )
            self.connection.commit()

    def unset_favorite(self, user_id: str, listing_id: str) -> None:
        with self._guard("unset_favorite"):
            self.connection.execute(
                "DELETE FROM history WHERE user_id = ? AND item_id = ?",
                (user_id, listing_id),
            )
            self.connection.commit()

    def get_favorite_ids(self, user_id: str) -> set[str]:
        with self._guard("get_favorite_ids"):
            rows = self.connection.execute(
                "SELECT item_id FROM history WHERE user_id = ?",
                (user_id,),
            ).fetchall()
        return {row["item_id"] for row in rows}

    def get_keywords(self, listing_id: str) -> set[str]:
        with self._guard("get_keywords"):
            rows = self.connection.execute(
                "SELECT keyword FROM keywords WHERE item_id = ?",
                (listing_id,),
            ).fetchall()
        return {row["keyword"] for row in rows}

    def get_favorite_listings(self, user_id: str) -> list[JobListing]:
        with self._guard("get_favorite_listings"):
            rows = self.connection.execute(
                """
                SELECT
                    i.item_id,
                    i.title,
                    i.company_name,
                    i.location,
                    i.via,
                    i.description,
                    i.url
                FROM history h
                JOIN items i ON i.item_id = h.item_id
                WHERE h.user_id = ?
                ORDER BY h.last_favor_time DESC, i.item_id
                """,
                (user_id,),
            ).fetchall()
            keyword_rows = self.connection.execute(
                """
                SELECT k.item_id, k.keyword
                FROM keywords k
                JOIN history h ON h.item_id = k.item_id
                WHERE h.user_id = ?
                """,
                (user_id,),
            ).fetchall()

        keywords_by_item: dict[str, set[str]] = {}
        for row in keyword_rows:
            keywords_by_item.setdefault(row["item_id"], set()).add(row["keyword"])

        return [
            JobListing(
                id=row["item_id"],
                title=row["title"],
                company_name=row["company_name"],
                location=row["location"],
                via=row["via"],
                description=row["description"],
                url=row["url"],
                keywords=keywords_by_item.get(row["item_id"], set()),
                favorite=True,
            )
            for row in rows
        ]

    def create_session(self, user_id: str, ttl_seconds: int) -> str:
        token = new_session_token()
        now = datetime.now(UTC)
        expires_at = now + timedelta(seconds=ttl_seconds)
        with self._guard("create_session"):
            self.connection.execute(
                "DELETE FROM sessions WHERE expires_at <= ?",
                (now.isoformat(),),
            )
            self.connection.execute(
                """
                INSERT INTO sessions (session_hash, user_id, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (hash_token(token), user_id, now.isoformat(), expires_at.isoformat()),
            )
            self.connection.commit()
        return token

    def resolve_session(self, token: str) -> str | None:
        with self._guard("resolve_session"):
            row = self.connection.execute(
                """
                SELECT user_id
                FROM sessions
                WHERE session_hash = ? AND expires_at > ?
                """,
                (hash_token(token), now_utc_iso()),
            ).fetchone()
        if row is None:
            return None
        return row["user_id"]

    def delete_session(self, token: str) -> bool:
        with self._guard("delete_session"):
            cursor = self.connection.execute(
                "DELETE FROM sessions WHERE session_hash = ?",
                (hash_token(token),),
            )
            self.connection.commit()
        return cursor.rowcount > 0

    def record_search(
        self,
        *,
        user_id: str | None,
        keyword: str | None,
        latitude: float,
        longitude: float,
        results_count: int,
        response_time_ms: int,
    ) -> int:
        with self._guard("record_search"):
            cursor = self.connection.execute(
                """
                INSERT INTO search_history (
                    user_id,
                    search_query,
                    latitude,
                    longitude,
                    results_count,
                    response_time_ms,
                    search_time
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    keyword,
                    latitude,
                    longitude,
                    results_count,
                    response_time_ms,
                    now_utc_iso(),
                ),
            )
            self.connection.commit()
        return int(cursor.lastrowid)

    def count_search_history(self, user_id: str) -> int:
        with self._guard("count_search_history"):
            row = self.connection.execute(
                "SELECT COUNT(1) AS c FROM search_history WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return int(row["c"])
