"""Input parameter validation against an ability's input schema."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from unbrowse.abilities.types import InputField


class ParameterValidationError(ValueError):
    """Raised when execution parameters do not satisfy the input schema."""

    def __init__(self, *, missing: list[str], invalid: dict[str, str]) -> None:
        self.missing = missing
        self.invalid = invalid
        parts: list[str] = []
        if missing:
            parts.append(f"missing required parameter(s): {', '.join(missing)}")
        if invalid:
            parts.append(
                "invalid parameter(s): "
                + ", ".join(f"{name} ({reason})" for name, reason in invalid.items())
            )
        super().__init__("; ".join(parts))


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "any":
        return True
    if expected == "string":
        return isinstance(value, str)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, int | float) and not isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list | tuple)
    if expected == "object":
        return isinstance(value, dict)
    return False


def validate_params(
    schema: Mapping[str, InputField],
    params: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Validate params and fill schema defaults.

    Parameters not named by the schema pass through untouched. ``None`` is
    treated as absent.

    Raises:
        ParameterValidationError: naming every missing or mistyped field.
    """
    provided = {key: value for key, value in (params or {}).items() if value is not None}
    validated = dict(provided)
    missing: list[str] = []
    invalid: dict[str, str] = {}

    for name, spec in schema.items():
        if name not in provided:
            if spec.default is not None:
                validated[name] = spec.default
            elif spec.required:
                missing.append(name)
            continue
        if not _matches_type(provided[name], spec.type):
            invalid[name] = f"expected {spec.type}"

    if missing or invalid:
        raise ParameterValidationError(missing=missing, invalid=invalid)
    return validated
