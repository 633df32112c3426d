"""
Input Validators - Validation for user input at the API boundary.

Parse at the boundary: validate and type-check all external input
before it reaches the round table, the store, or a provider call.
Never pass unvalidated strings through multiple layers.
"""

import logging

logger = logging.getLogger(__name__)

VALID_ROUNDS = (1, 2)


class ValidationError(ValueError):
    """Raised when input validation fails. Contains a user-friendly message."""

    pass


def validate_not_empty(value: str | None, field_name: str = "input") -> str:
    """Validate that a string is not empty or whitespace-only. Returns it stripped."""
    if not value or not value.strip():
        raise ValidationError(f"{field_name} is required")
    return value.strip()


def validate_length(
    value: str,
    field_name: str = "input",
    min_length: int = 0,
    max_length: int = 100_000,
) -> str:
    """Validate string length is within bounds."""
    if len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")
    if len(value) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")
    return value


def validate_in_choices(value: str, choices, field_name: str = "value") -> str:
    """Validate that a value is one of the allowed choices."""
    if value not in choices:
        raise ValidationError(f"{field_name} must be one of: {', '.join(choices)}")
    return value


def validate_round(value: int, field_name: str = "round") -> int:
    """Validate a roundtable round number (1 or 2)."""
    if isinstance(value, bool) or value not in VALID_ROUNDS:
        raise ValidationError(f"{field_name} must be 1 or 2")
    return value


def validate_list_size(
    items: list,
    field_name: str = "list",
    min_items: int = 0,
    max_items: int = 100,
) -> list:
    """Validate that a list has between min_items and max_items entries."""
    if len(items) < min_items:
        raise ValidationError(
            f"{field_name} must have at least {min_items} item(s)"
        )
    if len(items) > max_items:
        raise ValidationError(
            f"{field_name} cannot have more than {max_items} items (got {len(items)})"
        )
    return items
