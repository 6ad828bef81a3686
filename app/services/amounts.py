from typing import Any

from app.core.exceptions import InvalidAmountError


def require_positive(amount: Any, message: str = "Amount must be a positive integer") -> int:
    """Reject non-integers (bool included) and values <= 0 before any mutation."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(message, amount=amount)
    return amount


def require_non_negative(value: Any, message: str = "Value must be a non-negative integer") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidAmountError(message, amount=value)
    return value
