"""
Coercion of string-typed rule arguments into runtime values.

Rule documents store every argument as ``{"value": "<text>", "type": "<kind>"}``.
Four sentinel literals bypass the declared type entirely:

==================  ===================
literal             value
==================  ===================
``__null``          ``None``
``__undefined``     ``UNDEFINED``
``{}``              a new empty dict
``__empty_string``  ``""``
==================  ===================

Numeric parsing never raises: the longest valid numeric prefix is used and
input without one yields NaN, which stages treat as present-but-invalid.
"""

import math
import re
from typing import Any

from polaris.utils.logging import get_logger

logger = get_logger(__name__)


class _Undefined:
    """Marker for an explicitly undefined argument, distinct from ``None``."""

    _instance = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Undefined":
        return self

    def __deepcopy__(self, memo: Any) -> "_Undefined":
        return self


UNDEFINED = _Undefined()

NULL_LITERAL = "__null"
UNDEFINED_LITERAL = "__undefined"
EMPTY_OBJECT_LITERAL = "{}"
EMPTY_STRING_LITERAL = "__empty_string"

_INTEGER_PREFIX = re.compile(r"^\s*([+-]?\d+)")
# A "0x" marker is consumed whole; digits may then be empty, which yields NaN
_HEX_PREFIX = re.compile(r"^\s*([+-]?)(0[xX])?([0-9a-fA-F]*)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))")

NUMERIC_TYPES = ("integer", "hexadecimal", "double")


def is_nan(value: Any) -> bool:
    """Return True for the NaN produced by unparsable numeric arguments."""
    return isinstance(value, float) and math.isnan(value)


def _parse_integer(text: str, base: int) -> Any:
    if base == 16:
        match = _HEX_PREFIX.match(text)
        if not match:
            return math.nan
        sign, _, digits = match.groups()
        if not digits:
            return math.nan
        number = int(digits, 16)
        return -number if sign == "-" else number

    match = _INTEGER_PREFIX.match(text)
    if not match:
        return math.nan
    return int(match.group(1))


def _parse_double(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    if not match:
        return math.nan
    return float(match.group(1))


def coerce(raw: Any, declared_type: str = "string") -> Any:
    """
    Convert a rule argument to the runtime value it denotes.

    Args:
        raw: Argument value as stored in the rule document.
        declared_type: One of string, boolean, integer, hexadecimal, double.
            Unknown types behave like string.

    Returns:
        The typed value; NaN for unparsable numeric input.

    Example:
        >>> coerce("10", "integer")
        10
        >>> coerce("yes", "boolean")
        True
        >>> coerce("__null", "integer") is None
        True
    """
    if raw == NULL_LITERAL:
        return None
    if raw == UNDEFINED_LITERAL:
        return UNDEFINED
    if raw == EMPTY_OBJECT_LITERAL:
        return {}
    if raw == EMPTY_STRING_LITERAL:
        return ""

    kind = (declared_type or "string").lower()

    if kind == "boolean":
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("yes", "true")

    if kind in NUMERIC_TYPES:
        if isinstance(raw, bool) or raw is None:
            value: Any = math.nan
        elif isinstance(raw, (int, float)):
            value = raw
        elif kind == "double":
            value = _parse_double(str(raw))
        else:
            value = _parse_integer(str(raw), 16 if kind == "hexadecimal" else 10)

        if is_nan(value):
            logger.debug("coercion.not_a_number", raw=raw, declared_type=kind)
        return value

    return raw
