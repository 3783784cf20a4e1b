from __future__ import annotations

from datetime import UTC, datetime


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())
