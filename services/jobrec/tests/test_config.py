from __future__ import annotations

import pytest
from jobrec.config import Settings
from jobrec.errors import ConfigurationError, ErrorKind, NotAuthorized, StorageError
from jobrec.security import hash_password, hash_token, new_session_token, verify_password

pytestmark = pytest.mark.unit


def test_from_env_reads_prefixed_values() -> None:
    settings = Settings.from_env(
        {
            "JOBREC_ENVIRONMENT": "prod",
            "JOBREC_REDIS_PORT": "6380",
            "JOBREC_HTTP_TIMEOUT_SECONDS": "2.5",
            "JOBREC_SERPAPI_KEY": "serp",
            "JOBREC_DEFAULT_KEYWORD": "  ",
        }
    )

    assert settings.is_production
    assert settings.redis_port == 6380
    assert settings.http_timeout_seconds == 2.5
    assert settings.serpapi_key == "serp"
    assert settings.default_keyword == "engineer"
    assert settings.missing_required() == ["edenai_key"]


def test_defaults_describe_a_dev_instance() -> None:
    settings = Settings.from_env({})

    assert settings.is_development
    assert settings.cache_ttl_seconds == 10
    assert settings.search_results_limit == 20
    assert settings.missing_required() == ["serpapi_key", "edenai_key"]
    assert "serpapi_key" not in settings.describe()


@pytest.mark.parametrize(
    "environ",
    [
        {"JOBREC_REDIS_PORT": "not-a-port"},
        {"JOBREC_HTTP_TIMEOUT_SECONDS": "fast"},
        {"JOBREC_ENVIRONMENT": "staging"},
        {"JOBREC_SESSION_TTL_SECONDS": "5"},
    ],
)
def test_malformed_values_raise_configuration_error(environ: dict[str, str]) -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_env(environ)


def test_error_kinds_map_to_statuses() -> None:
    assert NotAuthorized().status_code == 403
    assert NotAuthorized().user_message == ErrorKind.AUTHORIZATION.default_message
    assert ErrorKind.API.status_code == 502

    error = StorageError("disk I/O error on users")
    assert error.status_code == 500
    assert error.user_message == "Database operation failed"
    assert error.technical_message == "disk I/O error on users"


def test_password_hashes_are_salted() -> None:
    first = hash_password("secret123")
    second = hash_password("secret123")

    assert first != second
    assert verify_password("secret123", first)
    assert not verify_password("secret124", first)
    assert not verify_password("secret123", "md5$not-a-hash")
    assert not verify_password("secret123", "garbage")


def test_session_tokens_are_random_and_hashed() -> None:
    token = new_session_token()

    assert token.startswith("sess_")
    assert token != new_session_token()
    assert hash_token(token) == hash_token(token)
    assert len(hash_token(token)) == 64
