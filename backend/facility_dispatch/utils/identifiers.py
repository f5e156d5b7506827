"""Identifier parsing shared by services and API handlers."""
from typing import Union
from uuid import UUID

from facility_dispatch.errors import ValidationError


def parse_id(value: Union[str, UUID], kind: str = "id") -> UUID:
    """Coerce to UUID or raise ValidationError for malformed input."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Invalid {kind} format: {value!r}") from e
