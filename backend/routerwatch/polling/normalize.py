"""
Reply Normalization

RouterOS replies omit fields freely (an interface without a comment simply has
no "comment" key) and some client libraries surface empty numbers as NaN.
Records are normalized once, at the session boundary, so that collectors never
need to null-check.

Defaults are declared per field class in FIELD_RULES. The first matching rule
wins. A present value is passed through the rule's coercer; a coercer that
raises marks the value invalid and the rule default is used instead.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable

NULL_MAC = "00:00:00:00:00:00"
DEFAULT_MTU = 1500
DEFAULT_LINK_TYPE = "ether"

_TRUE_STRINGS = {"true", "yes"}
_FALSE_STRINGS = {"false", "no"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"not a flag: {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("flag is not a counter")
    return int(value)


def _to_counter(value: Any) -> int | str:
    # registration-table counters come as "rx,tx" pairs
    if isinstance(value, str) and "," in value:
        if all(part.strip().isdigit() for part in value.split(",")):
            return value
    return _to_int(value)


def _to_str(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise TypeError("not a scalar")
    return str(value)


def _named(*names: str) -> Callable[[str], bool]:
    return lambda key: key in names


def _containing(*fragments: str) -> Callable[[str], bool]:
    return lambda key: any(fragment in key for fragment in fragments)


@dataclass(frozen=True)
class FieldRule:
    """Default and coercion for one class of reply fields."""

    match: Callable[[str], bool]
    default: Any
    coerce: Callable[[Any], Any] | None = None

    def apply(self, value: Any) -> Any:
        if _is_missing(value):
            return self.default
        if self.coerce is None:
            return value
        try:
            return self.coerce(value)
        except (TypeError, ValueError):
            return self.default


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(_named("running", "disabled", "inactive", "dynamic", "slave"), False, _to_bool),
    FieldRule(_containing("byte"), 0, _to_counter),
    FieldRule(_named("link-downs"), 0, _to_int),
    FieldRule(_containing("packet", "drop", "error"), 0, _to_counter),
    FieldRule(_named("mac-address", "radio-mac"), NULL_MAC, _to_str),
    FieldRule(_named("mtu", "actual-mtu"), DEFAULT_MTU, _to_int),
    FieldRule(_named("name"), "unknown", _to_str),
    FieldRule(_named("comment"), "", _to_str),
    FieldRule(_named("type"), DEFAULT_LINK_TYPE, _to_str),
)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def rule_for(key: str) -> FieldRule | None:
    """Return the first rule that claims this field name."""
    for rule in FIELD_RULES:
        if rule.match(key):
            return rule
    return None


def normalize_value(key: str, value: Any) -> Any:
    if isinstance(value, dict):
        return normalize_record(value)
    if isinstance(value, list):
        return [normalize_value(key, item) for item in value]

    rule = rule_for(key)
    if rule is not None:
        return rule.apply(value)
    return None if _is_missing(value) else value


def normalize_record(record: dict[str, Any]) -> dict[str, Any]:
    """Replace missing/NaN values with per-field defaults, recursively."""
    return {key: normalize_value(key, value) for key, value in record.items()}


def normalize_records(records: list[Any]) -> list[Any]:
    """Normalize every record of a reply list; non-dict entries pass through."""
    return [normalize_record(r) if isinstance(r, dict) else r for r in records]


def record_with_defaults(record: dict[str, Any], *keys: str) -> dict[str, Any]:
    """
    Normalize a record and make sure the given keys are present.

    Used for the fields a collector reads: a key the device never sent gets the
    same default as a key it sent empty.
    """
    merged = {key: None for key in keys}
    merged.update(record)
    return normalize_record(merged)
