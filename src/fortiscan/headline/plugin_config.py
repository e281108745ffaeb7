"""JSON Schema validation of ``plugin.config.json``."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jsonschema import SchemaError
from jsonschema.validators import validator_for

from fortiscan.exceptions import ScanConfigurationError

CONFIG_FILENAME = "plugin.config.json"


def load_schema(schema_path: str | Path) -> dict[str, Any]:
    """Read and check a JSON Schema; a bad schema is a configuration error."""
    path = Path(schema_path)
    try:
        schema = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ScanConfigurationError(f"Cannot load plugin config schema {path}: {e}") from e
    try:
        validator_for(schema).check_schema(schema)
    except SchemaError as e:
        raise ScanConfigurationError(f"Invalid plugin config schema {path}: {e.message}") from e
    return schema


class PluginConfigValidator:
    """Validates a plugin's ``plugin.config.json`` against a JSON Schema."""

    def __init__(self, schema: dict[str, Any]) -> None:
        self._validator = validator_for(schema)(schema)

    @classmethod
    def from_file(cls, schema_path: str | Path) -> PluginConfigValidator:
        return cls(load_schema(schema_path))

    def validate(self, plugin_root: str | Path) -> dict[str, Any]:
        """Return ``{}`` when valid, otherwise ``{"error": ..., "details": [...]}``.

        Each detail carries ``path`` (JSON pointer), ``message``, ``keyword``
        and ``args``.
        """
        config_file = Path(plugin_root) / CONFIG_FILENAME
        if not config_file.is_file():
            return {"error": f"{CONFIG_FILENAME} not found"}

        try:
            data = json.loads(config_file.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return {"error": f"Invalid JSON in {CONFIG_FILENAME}: {e}"}

        errors = sorted(self._validator.iter_errors(data), key=lambda e: list(map(str, e.absolute_path)))
        if not errors:
            return {}
        return {
            "error": "Schema validation failed",
            "details": [_detail(e) for e in errors],
        }


def _detail(error) -> dict[str, Any]:
    pointer = "".join(f"/{part}" for part in error.absolute_path)
    return {
        "path": pointer or "/",
        "message": error.message,
        "keyword": error.validator,
        "args": error.validator_value,
    }
