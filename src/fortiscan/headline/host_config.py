"""Structural validation of a host configuration: ``global`` and ``settings``."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import StrictBool, StrictFloat, StrictInt, StrictStr, TypeAdapter, ValidationError

from fortiscan.exceptions import DuplicateSettingIdError, HostConfigError

SettingValue = Union[
    StrictBool,
    None,
    StrictStr,
    StrictInt,
    StrictFloat,
    List[StrictStr],
    Dict[StrictStr, Optional[StrictBool]],
]

_SETTING_VALUE = TypeAdapter(SettingValue)


def is_setting_value(value: Any) -> bool:
    """bool, null, string, number, a list of unique strings, or a map of
    string to bool/null."""
    try:
        _SETTING_VALUE.validate_python(value)
    except ValidationError:
        return False
    if isinstance(value, list):
        return len(set(value)) == len(value)
    return True


class HostConfigValidator:
    def validate(self, host_config: Any) -> None:
        """Raise :class:`HostConfigError` on the first structural problem."""
        if not isinstance(host_config, dict):
            raise HostConfigError("Host config must be an object.")

        if "global" in host_config:
            scope = host_config["global"]
            if not isinstance(scope, dict):
                raise HostConfigError("'global' must be an object.")
            if "id" in scope:
                raise HostConfigError("'global' must not contain an 'id'.")
            for key, value in scope.items():
                if not is_setting_value(value):
                    raise HostConfigError(f"Invalid SettingValue at global['{key}'].")

        if "settings" in host_config:
            settings = host_config["settings"]
            if not isinstance(settings, list):
                raise HostConfigError("'settings' must be an array of Setting objects.")
            seen: set[str] = set()
            for i, setting in enumerate(settings):
                path = f"settings[{i}]"
                if not isinstance(setting, dict):
                    raise HostConfigError(f"'{path}' must be an object.")
                if "id" not in setting:
                    raise HostConfigError(f"'{path}.id' is required.")
                setting_id = setting["id"]
                if isinstance(setting_id, bool) or not isinstance(setting_id, (str, int, float)):
                    raise HostConfigError(f"'{path}.id' must be a string or number.")
                # '1' and 1 collide
                key = str(setting_id)
                if key in seen:
                    raise DuplicateSettingIdError(key)
                seen.add(key)
                for name, value in setting.items():
                    if name != "id" and not is_setting_value(value):
                        raise HostConfigError(f"Invalid SettingValue at {path}['{name}'].")

    def validate_file(self, path: str | Path) -> None:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise HostConfigError(f"Cannot read host config {path}: {e}") from e
        self.validate(data)
