"""Thread and checkpoint id helpers.

Ids are generated by callers, never by the store. Validation runs before
any backend I/O.
"""

import re
import secrets
import time
import uuid

from .exceptions import ValidationError

MAX_ID_LENGTH = 256

# Printable, no whitespace or braces; ":" is allowed so namespaced thread ids work.
_ID_PATTERN = re.compile(r"[^\s\x00-\x1f\x7f{}]+")


def generate_checkpoint_id() -> str:
    """Generate a checkpoint id: millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def generate_thread_id() -> str:
    """Generate a new thread id."""
    return str(uuid.uuid4())


def validate_id(value: object, field: str) -> str:
    """Validate a thread or checkpoint id.

    Args:
        value: Candidate id
        field: Field name used in the error message

    Returns:
        The id unchanged

    Raises:
        ValidationError: If the id is not a non-empty printable string
    """
    if not isinstance(value, str):
        raise ValidationError(field, f"expected str, got {type(value).__name__}")
    if not value:
        raise ValidationError(field, "must not be empty")
    if len(value) > MAX_ID_LENGTH:
        raise ValidationError(field, f"longer than {MAX_ID_LENGTH} characters")
    if not _ID_PATTERN.fullmatch(value):
        raise ValidationError(field, "must not contain whitespace, braces or control characters")
    return value


def validate_thread_id(thread_id: object) -> str:
    return validate_id(thread_id, "thread_id")


def validate_checkpoint_id(checkpoint_id: object) -> str:
    return validate_id(checkpoint_id, "checkpoint_id")


def validate_positive(
    value: object,
    field: str,
    allow_zero: bool = False,
    integer: bool = False,
) -> float:
    """Validate a numeric argument such as a limit, TTL or age.

    With ``integer`` only whole ``int`` values pass; TTLs and limits use it
    so every store applies them identically.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(field, f"expected a number, got {type(value).__name__}")
    if integer and not isinstance(value, int):
        raise ValidationError(field, f"expected an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(field, f"must be {'>= 0' if allow_zero else '> 0'}, got {value}")
    return value
