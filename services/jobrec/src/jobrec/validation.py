from __future__ import annotations

import math
import re

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,20}$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]{1,50}$")
KEYWORD_PATTERN = re.compile(r"^[a-zA-Z0-9 +#.-]{1,100}$")

MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0
MIN_PASSWORD_LENGTH = 6

# "&" goes first so entities produced by later replacements are left alone.
HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
)


class ValidationResult:
    def __init__(self) -> None:
        self._errors: list[str] = []

    def add_error(self, message: str) -> None:
        self._errors.append(message)

    @property
    def is_valid(self) -> bool:
        return not self._errors

    @property
    def has_errors(self) -> bool:
        return bool(self._errors)

    @property
    def errors(self) -> str:
        return "; ".join(self._errors)

    def __repr__(self) -> str:
        return f"ValidationResult(errors={self._errors!r})"


def is_not_empty(value: str | None) -> bool:
    return value is not None and bool(value.strip())


def is_valid_email(email: str | None) -> bool:
    if not is_not_empty(email):
        return False
    return EMAIL_PATTERN.fullmatch(email.strip()) is not None


def is_valid_username(username: str | None) -> bool:
    if not is_not_empty(username):
        return False
    return USERNAME_PATTERN.fullmatch(username.strip()) is not None


def is_valid_password(password: str | None) -> bool:
    if not is_not_empty(password):
        return False
    return len(password) >= MIN_PASSWORD_LENGTH


def is_valid_name(name: str | None) -> bool:
    if not is_not_empty(name):
        return False
    return NAME_PATTERN.fullmatch(name.strip()) is not None


def is_valid_keyword(keyword: str | None) -> bool:
    if keyword is None or not keyword.strip():
        return True
    return KEYWORD_PATTERN.fullmatch(keyword.strip()) is not None


def is_valid_latitude(latitude: float) -> bool:
    return MIN_LATITUDE <= latitude <= MAX_LATITUDE


def is_valid_longitude(longitude: float) -> bool:
    return MIN_LONGITUDE <= longitude <= MAX_LONGITUDE


def are_valid_coordinates(latitude: float, longitude: float) -> bool:
    return is_valid_latitude(latitude) and is_valid_longitude(longitude)


def sanitize(value: str | None) -> str | None:
    if value is None:
        return None
    sanitized = value.strip()
    for raw, escaped in HTML_ESCAPES:
        sanitized = sanitized.replace(raw, escaped)
    return sanitized


def validate_and_sanitize_user_id(user_id: str | None) -> str | None:
    if not is_valid_username(user_id):
        return None
    return sanitize(user_id)


def validate_and_sanitize_keyword(keyword: str | None) -> str | None:
    if not is_valid_keyword(keyword):
        return None
    return sanitize(keyword)


def parse_coordinate(raw: str | None, label: str, result: ValidationResult) -> float | None:
    if not is_not_empty(raw):
        result.add_error(f"{label} is required.")
        return None
    try:
        value = float(raw)
    except ValueError:
        result.add_error(f"Invalid {label.lower()} format.")
        return None
    if not math.isfinite(value):
        result.add_error(f"Invalid {label.lower()} format.")
        return None
    return value


def validate_registration(
    user_id: str | None,
    password: str | None,
    first_name: str | None,
    last_name: str | None,
) -> ValidationResult:
    result = ValidationResult()
    if not is_valid_username(user_id):
        result.add_error(
            "Invalid username. Must be 3-20 characters, alphanumeric with _ and - allowed."
        )
    if not is_valid_password(password):
        result.add_error(
            f"Invalid password. Must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    if not is_valid_name(first_name):
        result.add_error(
            "Invalid first name. Must contain only letters, spaces, apostrophes, and hyphens."
        )
    if not is_valid_name(last_name):
        result.add_error(
            "Invalid last name. Must contain only letters, spaces, apostrophes, and hyphens."
        )
    return result


def validate_search_parameters(
    latitude: float | None,
    longitude: float | None,
    keyword: str | None,
    result: ValidationResult | None = None,
) -> ValidationResult:
    if result is None:
        result = ValidationResult()
    # None marks a coordinate that already failed to parse.
    if latitude is not None and not is_valid_latitude(latitude):
        result.add_error("Invalid latitude. Must be between -90 and 90 degrees.")
    if longitude is not None and not is_valid_longitude(longitude):
        result.add_error("Invalid longitude. Must be between -180 and 180 degrees.")
    if not is_valid_keyword(keyword):
        result.add_error("Invalid keyword format.")
    return result
