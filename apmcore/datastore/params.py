"""Validation of query parameters captured on datastore segments."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Mapping

MAX_KEY_LENGTH = 255
MAX_VALUE_LENGTH = 255

_VALID_TYPES = (str, bool, int, float)


@dataclass(frozen=True, slots=True)
class ParameterValidation:
    """Outcome of validating one parameter map."""

    params: dict[str, object]
    dropped: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.dropped


def validate_parameters(raw: Mapping[object, object]) -> ParameterValidation:
    """Keep every valid parameter, truncating long strings.

    Invalid entries are dropped individually; the reasons are returned so the
    caller can report them once.
    """

    params: dict[str, object] = {}
    dropped: list[str] = []
    for key, value in raw.items():
        reason = _invalid_reason(key, value)
        if reason is not None:
            dropped.append(reason)
            continue
        if isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            value = value[:MAX_VALUE_LENGTH]
        params[key] = value  # type: ignore[index]
    return ParameterValidation(params=params, dropped=tuple(dropped))


def _invalid_reason(key: object, value: object) -> str | None:
    if not isinstance(key, str):
        return f"attribute key of type {type(key).__name__} is invalid"
    if len(key) > MAX_KEY_LENGTH:
        return f"attribute key '{key[:32]}...' exceeds {MAX_KEY_LENGTH} characters"
    if not isinstance(value, _VALID_TYPES):
        return f"attribute '{key}' value of type {type(value).__name__} is invalid"
    if isinstance(value, float) and not math.isfinite(value):
        return f"attribute '{key}' value {value} is not finite"
    return None


__all__ = ["MAX_KEY_LENGTH", "MAX_VALUE_LENGTH", "ParameterValidation", "validate_parameters"]
