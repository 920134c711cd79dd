"""
Input checks for the progress tools.

Every check runs before the store is touched and raises ValidationError
naming the offending input field.
"""

from typing import Any, Optional

from .errors import ValidationError
from .store import DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT, normalize_timestamp

MAX_PROJECT_ID_LENGTH = 100
MAX_TITLE_LENGTH = 100
MAX_CONTENT_LENGTH = 10000
MAX_TAGS = 10
MAX_TAG_LENGTH = 50
MAX_AGENT_ID_LENGTH = 100


def require_string(input: dict[str, Any], field: str, max_length: Optional[int] = None) -> str:
    value = input.get(field)
    if value is None or value == "":
        raise ValidationError(field, "is required")
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    if not value.strip():
        raise ValidationError(field, "cannot be empty")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return value


def optional_string(input: dict[str, Any], field: str, max_length: Optional[int] = None) -> Optional[str]:
    value = input.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return value or None


def optional_tags(input: dict[str, Any], field: str = "tags", max_tags: Optional[int] = MAX_TAGS) -> list[str]:
    value = input.get(field)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(field, "must be an array of strings")
    if max_tags is not None and len(value) > max_tags:
        raise ValidationError(field, f"must contain at most {max_tags} tags")

    tags = []
    for tag in value:
        if not isinstance(tag, str) or not tag.strip():
            raise ValidationError(field, "must contain only non-empty strings")
        tag = tag.strip()
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(field, f"entries must be at most {MAX_TAG_LENGTH} characters")
        tags.append(tag)
    return tags


def optional_timestamp(input: dict[str, Any], field: str) -> Optional[str]:
    value = input.get(field)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be an ISO 8601 string")
    try:
        return normalize_timestamp(value)
    except ValueError:
        raise ValidationError(
            field, "has an invalid date format. Expected ISO 8601 (e.g., 2025-01-15T10:30:00Z)"
        ) from None


def search_limit(input: dict[str, Any], field: str = "limit") -> int:
    value = input.get(field)
    if value is None:
        return DEFAULT_SEARCH_LIMIT
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer")
    if not 1 <= value <= MAX_SEARCH_LIMIT:
        raise ValidationError(field, f"must be between 1 and {MAX_SEARCH_LIMIT}")
    return value


def optional_bool(input: dict[str, Any], field: str, default: bool = False) -> bool:
    value = input.get(field)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(field, "must be a boolean")
    return value
