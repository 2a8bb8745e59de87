"""Pydantic schema utilities for structured LLM outputs.

## Structured Outputs

LLMs can produce unreliable JSON without schema enforcement. Pydantic models:
1. Define the expected response structure with type hints
2. Validate LLM outputs, reporting every violation
3. Generate JSON Schema for OpenRouter's json_schema mode

## Library Usage

Pydantic BaseModel generates JSON Schema via model_json_schema().
OpenRouter's response_format accepts this schema; with strict=false the
provider only best-effort constrains output, so every result is validated
again with model_validate().

## Data Flow

1. Caller defines a Pydantic model with the expected fields
2. response_format_for() builds the provider payload
3. The model produces (hopefully) schema-compliant JSON
4. validate_candidate() accepts or rejects the decoded value
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

T = TypeVar("T", bound=BaseModel)


@dataclass
class ValidationOutcome(Generic[T]):
    """Result of checking a candidate value against a schema."""
    ok: bool
    value: Optional[T] = None
    violations: list[str] = field(default_factory=list)


def format_violations(error: PydanticValidationError) -> list[str]:
    """Render Pydantic errors as 'loc.path: message' strings."""
    violations = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        violations.append(f"{loc}: {err.get('msg', 'invalid')}")
    return violations


def validate_candidate(schema: Type[T], value: Any) -> ValidationOutcome[T]:
    """Validate a decoded value without raising on structural mismatch.

    Args:
        schema: Pydantic model class describing the expected shape.
        value: Decoded JSON value (usually a dict).

    Returns:
        ValidationOutcome with the model instance on success, or the
        list of violations on failure.
    """
    try:
        return ValidationOutcome(ok=True, value=schema.model_validate(value))
    except PydanticValidationError as e:
        return ValidationOutcome(ok=False, violations=format_violations(e))


def validate_or_raise(schema: Type[T], value: Any) -> T:
    """Validate a decoded value, raising Pydantic's ValidationError on mismatch."""
    return schema.model_validate(value)


def response_format_for(schema: Type[BaseModel]) -> dict[str, Any]:
    """Build the OpenRouter response_format payload for a schema.

    strict=false allows defaults and constraints (minLength, min/max)
    that strict mode would reject.
    """
    return {
        "type": "json_schema",
        "json_schema": {
            "name": schema.__name__,
            "strict": False,
            "schema": schema.model_json_schema(),
        },
    }
