"""
Comrade Parameter Validator

Checks tool-call parameters against the JSON schema each tool declares,
using jsonschema's Draft 7 validator.

Validation is side-effect free and accumulates every violation instead of
stopping at the first, so the model sees the full list in one round trip.
Error paths use dotted/indexed notation rooted at ``parameters``
(``parameters.options.paths[2]``). Properties a schema does not declare
are reported as warnings unless ``additionalProperties`` forbids them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

ROOT_PATH = "parameters"


@dataclass
class ValidationResult:
    """Outcome of validating one value against one schema."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def format_path(path: Iterable[str | int]) -> str:
    """Render a jsonschema error path as ``parameters.a.b[2]``."""
    rendered = ROOT_PATH
    for part in path:
        rendered += f"[{part}]" if isinstance(part, int) else f".{part}"
    return rendered


def check_schema(schema: Any) -> str | None:
    """Return why ``schema`` is not a valid Draft 7 schema, or None."""
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        return e.message
    return None


class ParameterValidator:
    """Draft 7 validator for tool parameter schemas."""

    def validate(self, value: Any, schema: dict[str, Any] | bool) -> ValidationResult:
        result = ValidationResult()
        for error in Draft7Validator(schema).iter_errors(value):
            result.errors.append(f"{format_path(error.absolute_path)}: {error.message}")
        _collect_unknown(value, schema, [], result)
        return result


def _collect_unknown(value: Any, schema: Any, path: list[str | int], result: ValidationResult) -> None:
    if not isinstance(schema, dict):
        return
    if isinstance(value, dict):
        properties = schema.get("properties")
        if not isinstance(properties, dict) or not properties:
            return
        if "additionalProperties" not in schema and "patternProperties" not in schema:
            unknown = [k for k in value if k not in properties]
            if unknown:
                result.warnings.append(f"{format_path(path)}: Unknown properties ignored: {', '.join(unknown)}")
        for key, prop_schema in properties.items():
            if key in value:
                _collect_unknown(value[key], prop_schema, [*path, key], result)
    elif isinstance(value, list) and isinstance(schema.get("items"), dict):
        for index, item in enumerate(value):
            _collect_unknown(item, schema["items"], [*path, index], result)
