"""Security utilities -- prompt injection defense and input validation."""
from .prompt_guard import wrap_user_content, detect_injection_attempt, sanitize_for_prompt
from .validators import (
    ValidationError,
    validate_length,
    validate_not_empty,
    validate_in_choices,
    validate_round,
    validate_list_size,
)
