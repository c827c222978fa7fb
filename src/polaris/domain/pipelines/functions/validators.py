"""
Function-based validators.

Validator rules with ``type: function`` name one of these checks. Each
constructor returns ``check(value, entity) -> bool``; a False result is a
violation reported under the validator's name. Absent values are handled by
the executor (required or skipped) and never reach the check.
"""

import re
from typing import Any, Callable

from ..registry import StageKind, stage
from ..types import Entity

ValidatorFunc = Callable[[Any, Entity], bool]

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _length(value: Any) -> int:
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return len(str(value))


@stage(StageKind.VALIDATOR, "regex", "Value must match a regular expression")
def regex(pattern: str) -> ValidatorFunc:
    compiled = re.compile(str(pattern))

    def _check(value: Any, entity: Entity) -> bool:
        return isinstance(value, str) and compiled.search(value) is not None

    return _check


@stage(StageKind.VALIDATOR, "email", "Value must look like an e-mail address")
def email() -> ValidatorFunc:
    def _check(value: Any, entity: Entity) -> bool:
        return isinstance(value, str) and EMAIL_PATTERN.match(value) is not None

    return _check


@stage(StageKind.VALIDATOR, "min_length", "Value must be at least N long")
def min_length(size: int) -> ValidatorFunc:
    def _check(value: Any, entity: Entity) -> bool:
        return _length(value) >= int(size)

    return _check


@stage(StageKind.VALIDATOR, "max_length", "Value must be at most N long")
def max_length(size: int) -> ValidatorFunc:
    def _check(value: Any, entity: Entity) -> bool:
        return _length(value) <= int(size)

    return _check


@stage(StageKind.VALIDATOR, "one_of", "Value must be one of the arguments")
def one_of(*choices: Any) -> ValidatorFunc:
    allowed = list(choices)

    def _check(value: Any, entity: Entity) -> bool:
        return value in allowed

    return _check


@stage(StageKind.VALIDATOR, "not_empty", "Value must not be empty")
def not_empty() -> ValidatorFunc:
    def _check(value: Any, entity: Entity) -> bool:
        if isinstance(value, str):
            return value.strip() != ""
        if isinstance(value, (list, tuple, dict)):
            return len(value) > 0
        return value is not None

    return _check
