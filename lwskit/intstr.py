"""Values that hold either an integer or a string such as a percentage."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any

_PERCENT_FMT = "[0-9]+%"
_PERCENT_RE = re.compile(_PERCENT_FMT)
_PERCENT_ERROR_MSG = "a valid percent string must be a numeric string followed by an ending '%'"
_INT_RE = re.compile(r"[+-]?[0-9]+")


class IntOrStringType(enum.IntEnum):
    """Which of the two members of an IntOrString is in use."""

    INT = 0
    STRING = 1


@dataclass(frozen=True)
class IntOrString:
    """An integer or a string, as found in rollout settings."""

    type: IntOrStringType = IntOrStringType.INT
    int_val: int = 0
    str_val: str = ""

    @classmethod
    def from_value(cls, value: Any) -> IntOrString:
        """Build from a plain int or str as it appears in a JSON object."""
        if isinstance(value, IntOrString):
            return value
        if isinstance(value, bool):
            raise TypeError(f"expected an int or a str, got {value!r}")
        if isinstance(value, int):
            return cls(type=IntOrStringType.INT, int_val=value)
        if isinstance(value, str):
            return cls(type=IntOrStringType.STRING, str_val=value)
        raise TypeError(f"expected an int or a str, got {type(value).__name__}")


def _regex_error(msg: str, fmt: str, *examples: str) -> str:
    if not examples:
        return f"{msg} (regex used for validation is '{fmt}')"
    shown = " or ".join(f"'{example}', " for example in examples)
    return f"{msg} (e.g. {shown}regex used for validation is '{fmt}')"


def is_valid_percent(value: str) -> list[str]:
    """Return the reasons ``value`` is not a percentage; empty if it is one."""
    if _PERCENT_RE.fullmatch(value) is None:
        return [_regex_error(_PERCENT_ERROR_MSG, _PERCENT_FMT, "1%", "93%")]
    return []


def get_scaled_value_from_int_or_percent(value: Any, total: int, round_up: bool) -> int:
    """Resolve an int, or a percentage of ``total`` rounded up or down.

    Raises ValueError if the value is missing or is a malformed percentage.
    """
    if value is None:
        raise ValueError("nil value for IntOrString")
    value = IntOrString.from_value(value)
    if value.type == IntOrStringType.INT:
        return value.int_val
    if value.type != IntOrStringType.STRING:
        raise ValueError("invalid type: neither int nor percentage")
    text = value.str_val
    if not text.endswith("%"):
        raise ValueError("invalid type: string is not a percentage")
    digits = text[:-1]
    if _INT_RE.fullmatch(digits) is None:
        raise ValueError(f"invalid value for IntOrString: invalid value {digits!r}")
    product = int(digits) * total
    if round_up:
        return -(-product // 100)
    return product // 100