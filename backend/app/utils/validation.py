from __future__ import annotations
"""Reusable validation helpers for request payloads.

Each helper returns the normalized value (to enable inline usage) or raises
ValidationError (400) with a short field-scoped message.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional
from urllib.parse import urlparse
from app.config.ordering import PRICE_CEILING
from app.errors import PriceOutOfRange, ValidationError

CENT = Decimal('0.01')


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    if new_status not in allowed:
        raise ValidationError(f"{field_name} invalid")
    return new_status


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field_name} required')
    return value.strip()


def optional_text(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field_name} must be a string')
    value = value.strip()
    return value or None


def parse_quantity(value: Any, field_name: str = 'quantity') -> int:
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be an integer')
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f'{field_name} must be an integer')
    if value < 1:
        raise ValidationError(f'{field_name} must be at least 1')
    return value


def parse_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field_name} must be a number')
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field_name} must be a number')
    if not dec.is_finite():
        raise ValidationError(f'{field_name} must be a number')
    return dec


def parse_money(value: Any, field_name: str = 'price') -> Decimal:
    """Positive amount rounded half-up to cents; rejects values that round to zero."""
    dec = parse_decimal(value, field_name)
    # range check first: quantize raises InvalidOperation past the context precision
    if dec > PRICE_CEILING:
        raise PriceOutOfRange()
    if dec <= 0 or dec.quantize(CENT, rounding=ROUND_HALF_UP) <= 0:
        raise ValidationError(f'{field_name} must be greater than 0')
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_percent(value: Any, field_name: str = 'margin_percent') -> Decimal:
    pct = parse_decimal(value, field_name)
    if pct < 0:
        raise ValidationError(f'{field_name} must be zero or positive')
    if pct > PRICE_CEILING:
        raise PriceOutOfRange()
    return pct


def validate_url(value: Any, field_name: str = 'product_link') -> Optional[str]:
    value = optional_text(value, field_name)
    if value is None:
        return None
    parsed = urlparse(value)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError(f'{field_name} must be an http(s) URL')
    return value

__all__ = [
    'validate_status', 'require_text', 'optional_text', 'parse_quantity', 'parse_decimal',
    'parse_money', 'parse_percent', 'validate_url', 'CENT',
]
