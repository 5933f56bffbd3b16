"""Operator table: pure comparison functions keyed by operator name."""

import math
import operator as op
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

import structlog

from .models import Operator


logger = structlog.get_logger()

NAN = float("nan")


def to_number(value: Any) -> float:
    """Coerce a value to float; anything uncoercible becomes NaN."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return NAN
    return NAN


def to_datetime(value: Any) -> Optional[datetime]:
    """Parse datetimes, dates and ISO-8601 strings; None when unparseable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without bool/number crossover (``True`` is not ``1``)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def is_empty(value: Any) -> bool:
    if value is None or not value:
        return True
    return isinstance(value, str) and not value.strip()


def is_not_empty(value: Any) -> bool:
    # Absent is explicitly not "not empty"; do not derive from is_empty alone.
    if value is None:
        return False
    return not is_empty(value)


def _ordering(compare: Callable[[Any, Any], bool]) -> Callable[..., bool]:
    def evaluate(value: Any, literal: Any, data_type: Optional[str] = None) -> bool:
        if data_type == "date":
            left, right = to_datetime(value), to_datetime(literal)
            if left is None or right is None:
                return False
            return compare(left, right)

        left, right = to_number(value), to_number(literal)
        if math.isnan(left) or math.isnan(right):
            return False
        return compare(left, right)

    return evaluate


def _text(value: Any) -> str:
    return str(value).lower()


def _as_list(literal: Any) -> list[Any]:
    if isinstance(literal, (list, tuple, set, frozenset)):
        return list(literal)
    return [literal]


def _member(value: Any, literal: Any) -> bool:
    return any(strict_equals(value, candidate) for candidate in _as_list(literal))


OPERATORS: dict[str, Callable[..., bool]] = {
    Operator.EQUALS.value: lambda a, b, _t=None: strict_equals(a, b),
    Operator.NOT_EQUALS.value: lambda a, b, _t=None: not strict_equals(a, b),
    Operator.GREATER_THAN.value: _ordering(op.gt),
    Operator.GREATER_THAN_OR_EQUAL.value: _ordering(op.ge),
    Operator.LESS_THAN.value: _ordering(op.lt),
    Operator.LESS_THAN_OR_EQUAL.value: _ordering(op.le),
    Operator.CONTAINS.value: lambda a, b, _t=None: _text(b) in _text(a),
    Operator.NOT_CONTAINS.value: lambda a, b, _t=None: _text(b) not in _text(a),
    Operator.STARTS_WITH.value: lambda a, b, _t=None: _text(a).startswith(_text(b)),
    Operator.ENDS_WITH.value: lambda a, b, _t=None: _text(a).endswith(_text(b)),
    Operator.IS_EMPTY.value: lambda a, _b=None, _t=None: is_empty(a),
    Operator.IS_NOT_EMPTY.value: lambda a, _b=None, _t=None: is_not_empty(a),
    Operator.IN.value: lambda a, b, _t=None: _member(a, b),
    Operator.NOT_IN.value: lambda a, b, _t=None: not _member(a, b),
}

# Operators that have a defined answer for an absent field value.
ABSENT_AWARE = {Operator.IS_EMPTY.value, Operator.IS_NOT_EMPTY.value}


def evaluate_operator(
    field_value: Any,
    operator: str,
    literal: Any,
    data_type: Optional[str] = None,
) -> bool:
    """
    Apply ``operator`` to a resolved field value and a literal.

    An absent (None) field value is false for every operator except
    ``is_empty`` (true) and ``is_not_empty`` (false). Unknown operators are
    false and logged as a warning.
    """
    name = operator.value if isinstance(operator, Operator) else str(operator)
    func = OPERATORS.get(name)
    if func is None:
        logger.warning("unknown_operator", operator=name)
        return False

    if field_value is None and name not in ABSENT_AWARE:
        return False

    return bool(func(field_value, literal, data_type))
