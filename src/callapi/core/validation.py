"""
Response and error body validation.

A validator is either a callable ``(parsed) -> validated`` or a pydantic
``BaseModel`` subclass, validated with ``model_validate``.
"""
from typing import Any, Optional

import pydantic

from ..config import Validator
from ..errors import CallApiError, ValidationError
from ..types import ApiResponse


def _is_model(validator: Validator) -> bool:
    return isinstance(validator, type) and issubclass(validator, pydantic.BaseModel)


def run_validator(
    value: Any,
    validator: Optional[Validator],
    response: Optional[ApiResponse] = None,
    label: str = "response",
) -> Any:
    """
    Validate ``value``; returns the validated (possibly converted) value.

    Raises:
        ValidationError: When the validator rejects the value
    """
    if validator is None:
        return value

    try:
        if _is_model(validator):
            return validator.model_validate(value)
        return validator(value)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"{label.capitalize()} validation failed with {e.error_count()} issue(s)",
            issues=e.errors(),
            error_data=value,
            response=response,
            cause=e,
        ) from e
    except CallApiError:
        raise
    except Exception as e:
        raise ValidationError(
            f"{label.capitalize()} validation failed: {e}",
            error_data=value,
            response=response,
            cause=e,
        ) from e
