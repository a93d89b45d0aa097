"""Fail-soft field extraction, one coercion per FieldKind."""

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List

from cdc_engine.decoding.schema import FieldKind, FieldRule
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)

# MySQL's null marker in LOAD DATA / TSV exports
NULL_MARKER = "\\N"


def is_null(value: Any) -> bool:
    """Whether a source value counts as null."""
    return value is None or (isinstance(value, str) and value == NULL_MARKER)


def _to_string(value: Any, rule: FieldRule) -> str:
    if isinstance(value, (dict, list)):
        raise ValueError(f"expected scalar, got {type(value).__name__}")
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"non-integral value {value!r}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            number = Decimal(text)
            if number != number.to_integral_value():
                raise ValueError(f"non-integral value {value!r}")
            return int(number)
    raise ValueError(f"cannot convert {type(value).__name__} to int")


def _to_uint(value: Any, rule: FieldRule) -> int:
    number = _to_int(value)
    if number < 0:
        raise ValueError(f"negative value {number} for unsigned field")
    return number


def _to_signed(value: Any, rule: FieldRule) -> int:
    return _to_int(value)


def _to_float(value: Any, rule: FieldRule) -> float:
    """Decode to a 64-bit float; decimal strings go through Decimal so nothing is rounded early."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        try:
            return float(Decimal(value.strip()))
        except InvalidOperation:
            raise ValueError(f"not a decimal: {value!r}") from None
    raise ValueError(f"cannot convert {type(value).__name__} to float")


def _to_bool(value: Any, rule: FieldRule) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "t", "yes"):
            return True
        if text in ("0", "false", "f", "no"):
            return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_array(value: Any, rule: FieldRule) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if not is_null(item)]
    if isinstance(value, str):
        if value == "":
            return []
        return value.split(rule.separator)
    raise ValueError(f"cannot split {type(value).__name__} into a list")


_COERCERS: Dict[FieldKind, Callable[[Any, FieldRule], Any]] = {
    FieldKind.STRING: _to_string,
    FieldKind.UINT: _to_uint,
    FieldKind.INT: _to_signed,
    FieldKind.FLOAT: _to_float,
    FieldKind.BOOL: _to_bool,
    FieldKind.ARRAY: _to_array,
}


def coerce(rule: FieldRule, value: Any) -> Any:
    """
    Strictly convert a non-null source value according to its rule.

    Raises:
        ValueError: If the value cannot be converted
    """
    return _COERCERS[rule.kind](value, rule)


def extract_field(rule: FieldRule, image: Dict[str, Any]) -> Any:
    """
    Extract one field from an event image, falling back to the rule's default.

    Never raises: missing and null values map to the default, unparsable values
    map to the default with a warning.
    """
    value = image.get(rule.source_name)
    if is_null(value):
        return rule.default_value()

    try:
        return coerce(rule, value)
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.warning(
            f"Field {rule.source_name!r} has unusable value {value!r} ({e}); using default"
        )
        return rule.default_value()
