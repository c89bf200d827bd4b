from __future__ import annotations
"""Input parsing helpers shared by the client-facing routes and gateway parsers.

All failures raise ValidationError so routes answer 400 with a specific message.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from payrecon.errors import ValidationError


def parse_amount(raw: Any, field_name: str = 'amount', minimum: Optional[Decimal] = None) -> Decimal:
    """Parse a money amount into a 2dp Decimal. Floats are routed through str()."""
    if raw is None or (isinstance(raw, str) and not raw.strip()) or isinstance(raw, bool):
        raise ValidationError(f'{field_name} is required')
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field_name} must be a number')
    if not value.is_finite():
        raise ValidationError(f'{field_name} must be a number')
    value = value.quantize(Decimal('0.01'))
    if minimum is not None and value < minimum:
        raise ValidationError(f'{field_name} must be at least {minimum}')
    return value


def require_text(raw: Any, field_name: str, max_length: Optional[int] = None) -> str:
    if raw is None or not str(raw).strip():
        raise ValidationError(f'{field_name} is required')
    value = str(raw).strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f'{field_name} must not exceed {max_length} characters')
    return value

__all__ = ['parse_amount', 'require_text']
