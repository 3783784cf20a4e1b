from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from jobrec.errors import ConfigurationError

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobrec", "jobrec.sqlite3")
ENV_PREFIX = "JOBREC_"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: Literal["dev", "prod"] = "dev"
    database_path: str = DEFAULT_DB_PATH

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0
    cache_ttl_seconds: int = Field(default=10, ge=1)
    favorites_cache_ttl_seconds: int = Field(default=10, ge=1)

    serpapi_key: str | None = None
    serpapi_base_url: str = "https://serpapi.com/search"
    edenai_key: str | None = None
    edenai_url: str = "https://api.edenai.run/v2/text/keyword_extraction"
    edenai_provider: str = "ibm"

    default_keyword: str = "engineer"
    search_results_limit: int = Field(default=20, ge=1)
    keywords_per_listing: int = Field(default=3, ge=0)
    recommendation_keyword_limit: int = Field(default=3, ge=1)
    http_timeout_seconds: float = Field(default=15.0, gt=0)

    session_ttl_seconds: int = Field(default=3600, ge=60)
    session_cookie_name: str = "jobrec_session"

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @property
    def is_development(self) -> bool:
        return self.environment == "dev"

    def missing_required(self) -> list[str]:
        missing: list[str] = []
        if not self.serpapi_key:
            missing.append("serpapi_key")
        if not self.edenai_key:
            missing.append("edenai_key")
        return missing

    def describe(self) -> dict[str, object]:
        return {
            "environment": self.environment,
            "database_path": self.database_path,
            "redis_host": self.redis_host,
            "redis_port": self.redis_port,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "default_keyword": self.default_keyword,
            "search_results_limit": self.search_results_limit,
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        source = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name, field in cls.model_fields.items():
            raw = source.get(f"{ENV_PREFIX}{name.upper()}", "").strip()
            if not raw:
                continue
            if field.annotation is int:
                try:
                    values[name] = int(raw)
                except ValueError as exc:
                    raise ConfigurationError(
                        technical_message=f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}"
                    ) from exc
            elif field.annotation is float:
                try:
                    values[name] = float(raw)
                except ValueError as exc:
                    raise ConfigurationError(
                        technical_message=f"{ENV_PREFIX}{name.upper()} must be a number, got {raw!r}"
                    ) from exc
            else:
                values[name] = raw
        try:
            return cls(**values)
        except ValueError as exc:
            raise ConfigurationError(technical_message=str(exc)) from exc
