"""
Input validation and sanitization.

Runs before any backend is touched. Schema violations raise
``CredentialValidationError`` listing every offending field, not just the
first one pydantic finds.
"""

import re
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import CredentialValidationError
from .sql import MAX_SQL_INTEGER

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
MAX_SEARCH_LENGTH = 100
MAX_WINDOW_DAYS = 3650

_MARKUP_TAG = re.compile(r"<[^>]*>")
_ANGLE_BRACKETS = re.compile(r"[<>]")
_SCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
_QUOTE_CHARS = re.compile(r"['\"`\\;]")
_COMMENT_DELIMITERS = re.compile(r"--|/\*|\*/")

# Fields that are required on create and may not be nulled on update
_REQUIRED_FIELDS = ("service", "username", "secret")


def sanitize_text(value: str) -> str:
    """
    Strip markup, quote characters and comment delimiters, then trim.

    Applied repeatedly until stable so that removals cannot splice a new
    delimiter together (``-/**/-`` does not leave ``--`` behind).
    """
    previous = None
    while previous != value:
        previous = value
        value = _MARKUP_TAG.sub("", value)
        value = _ANGLE_BRACKETS.sub("", value)
        value = _SCRIPT_PROTOCOL.sub("", value)
        value = _EVENT_HANDLER.sub("", value)
        value = _QUOTE_CHARS.sub("", value)
        value = _COMMENT_DELIMITERS.sub("", value)
    return value.strip()


class _CredentialFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("service", "username", "url", "notes", mode="before", check_fields=False)
    @classmethod
    def _sanitize_free_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_text(value)
        return value

    @field_validator("url", "notes", mode="after", check_fields=False)
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class CredentialCreate(_CredentialFields):
    """Payload accepted by create()."""

    service: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=1, max_length=100)
    secret: str = Field(min_length=1, max_length=500)
    url: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)


class CredentialUpdate(_CredentialFields):
    """Partial payload accepted by update(); unset fields are left untouched."""

    service: Optional[str] = Field(default=None, min_length=1, max_length=100)
    username: Optional[str] = Field(default=None, min_length=1, max_length=100)
    secret: Optional[str] = Field(default=None, min_length=1, max_length=500)
    url: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller actually supplied."""
        return self.model_dump(exclude_unset=True)


def _field_errors(error: ValidationError) -> List[Dict[str, str]]:
    errors = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "data"
        errors.append({"field": loc, "message": err.get("msg", "invalid value")})
    return errors


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise CredentialValidationError(
            [{"field": "data", "message": "Expected an object of credential fields"}]
        )
    return data


def validate_create(data: Any) -> CredentialCreate:
    """
    Validate and sanitize a create payload.

    Raises:
        CredentialValidationError: Listing every violated field
    """
    payload = _require_mapping(data)
    try:
        return CredentialCreate.model_validate(dict(payload))
    except ValidationError as e:
        raise CredentialValidationError(_field_errors(e)) from None


def validate_update(data: Any) -> Dict[str, Any]:
    """
    Validate and sanitize a partial update.

    Returns:
        Dict of only the supplied fields, sanitized

    Raises:
        CredentialValidationError: Listing every violated field, including
            required fields explicitly set to null
    """
    payload = dict(_require_mapping(data))
    errors: List[Dict[str, str]] = [
        {"field": name, "message": "Field cannot be null"}
        for name in _REQUIRED_FIELDS
        if name in payload and payload[name] is None
    ]
    nulled = {e["field"] for e in errors}

    try:
        model = CredentialUpdate.model_validate(
            {k: v for k, v in payload.items() if k not in nulled}
        )
    except ValidationError as e:
        errors.extend(_field_errors(e))
        model = None

    if errors or model is None:
        raise CredentialValidationError(errors)
    return model.changes()


def _coerce_int(name: str, value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise CredentialValidationError([{"field": name, "message": "Must be an integer"}])
    if isinstance(value, int):
        return value
    # int() refuses strings past 4300 digits on current interpreters
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d{1,4300}\s*", value):
        return int(value)
    raise CredentialValidationError([{"field": name, "message": "Must be an integer"}])


def validate_pagination(page: Any = None, page_size: Any = None) -> Tuple[int, int]:
    """
    Validate pagination, clamping out-of-range integers.

    Returns:
        (page, page_size) with page_size in 1..100 and page at least 1,
        capped at the last page a SQL OFFSET can address

    Raises:
        CredentialValidationError: If either value is not an integer
    """
    errors: List[Dict[str, str]] = []
    values = []
    for name, value, default in (
        ("page", page, DEFAULT_PAGE),
        ("page_size", page_size, DEFAULT_PAGE_SIZE),
    ):
        try:
            values.append(_coerce_int(name, value, default))
        except CredentialValidationError as e:
            errors.extend(e.field_errors)
    if errors:
        raise CredentialValidationError(errors)

    page_value, size_value = values
    size_value = min(max(size_value, 1), MAX_PAGE_SIZE)
    # Pages past the largest representable offset are all empty
    last_page = MAX_SQL_INTEGER // size_value + 1
    return min(max(page_value, 1), last_page), size_value


def validate_search_term(search_term: Any) -> Optional[str]:
    """Sanitize a search term; blank becomes None."""
    if search_term is None:
        return None
    if not isinstance(search_term, str):
        raise CredentialValidationError(
            [{"field": "search", "message": "Must be a string"}]
        )
    cleaned = sanitize_text(search_term)
    if len(cleaned) > MAX_SEARCH_LENGTH:
        raise CredentialValidationError(
            [{"field": "search", "message": f"Must be at most {MAX_SEARCH_LENGTH} characters"}]
        )
    return cleaned or None


def validate_record_id(credential_id: Any) -> str:
    """
    Returns:
        The canonical lowercase UUID string

    Raises:
        CredentialValidationError: If the id is not a UUID
    """
    if isinstance(credential_id, uuid.UUID):
        return str(credential_id)
    if isinstance(credential_id, str):
        try:
            return str(uuid.UUID(credential_id.strip()))
        except ValueError:
            pass
    raise CredentialValidationError([{"field": "id", "message": "Invalid ID format"}])


def validate_window_days(window_days: Any, default: int) -> int:
    days = _coerce_int("window_days", window_days, default)
    if days < 1 or days > MAX_WINDOW_DAYS:
        raise CredentialValidationError(
            [{"field": "window_days", "message": f"Must be between 1 and {MAX_WINDOW_DAYS}"}]
        )
    return days
