from __future__ import annotations

import json
import logging
from typing import Any

import redis

LOGGER = logging.getLogger("jobrec.cache")

SEARCH_KEY_TEMPLATE = "search:lat={lat}&lon={lon}&keyword={keyword}"
FAVORITE_KEY_TEMPLATE = "history:user_id={user_id}"
# Never a valid keyword.
NO_KEYWORD = "*"
COORDINATE_PRECISION = 4


def build_search_key(latitude: float, longitude: float, keyword: str | None) -> str:
    return SEARCH_KEY_TEMPLATE.format(
        lat=f"{latitude:.{COORDINATE_PRECISION}f}",
        lon=f"{longitude:.{COORDINATE_PRECISION}f}",
        keyword=keyword if keyword else NO_KEYWORD,
    )


def build_favorite_key(user_id: str) -> str:
    return FAVORITE_KEY_TEMPLATE.format(user_id=user_id)


class ResultCache:
    def __init__(
        self,
        client: Any,
        *,
        ttl_seconds: int = 10,
        favorites_ttl_seconds: int = 10,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.favorites_ttl_seconds = favorites_ttl_seconds
        self.logger = logger or LOGGER

    def get(self, latitude: float, longitude: float, keyword: str | None) -> str | None:
        key = build_search_key(latitude, longitude, keyword)
        value = self._get(key)
        self.logger.debug(
            json.dumps({"event": "cache_lookup", "key": key, "hit": value is not None})
        )
        return value

    def set(self, latitude: float, longitude: float, keyword: str | None, blob: str) -> None:
        self._set(build_search_key(latitude, longitude, keyword), blob, self.ttl_seconds)

    def get_favorites(self, user_id: str) -> str | None:
        return self._get(build_favorite_key(user_id))

    def set_favorites(self, user_id: str, blob: str) -> None:
        self._set(build_favorite_key(user_id), blob, self.favorites_ttl_seconds)

    def delete_favorites(self, user_id: str) -> None:
        key = build_favorite_key(user_id)
        try:
            self.client.delete(key)
        except redis.RedisError as exc:
            self._log_failure("delete", key, exc)

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as exc:
            self._log_failure("close", None, exc)

    def _get(self, key: str) -> str | None:
        try:
            value = self.client.get(key)
        except redis.RedisError as exc:
            self._log_failure("get", key, exc)
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.setex(key, ttl_seconds, value)
        except redis.RedisError as exc:
            self._log_failure("set", key, exc)

    def _log_failure(self, operation: str, key: str | None, exc: Exception) -> None:
        self.logger.warning(
            json.dumps(
                {"event": "cache_unavailable", "operation": operation, "key": key, "error": str(exc)}
            )
        )
