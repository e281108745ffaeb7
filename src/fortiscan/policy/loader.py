"""Load and resolve PolicyView snapshots from YAML files."""

from __future__ import annotations

import importlib.resources
from pathlib import Path
from types import MappingProxyType
from typing import Iterable

import yaml

from fortiscan.policy.models import PolicyView, ScanLimits

_PRESET_PREFIX = "preset:"
DEFAULT_PRESET = "default"


def load_policy(path: str | Path, _resolved: set[str] | None = None) -> PolicyView:
    """Load a policy from a YAML file path."""
    data = _read_yaml(Path(path).read_text(encoding="utf-8"))
    raw = _resolve(data, _resolved=_resolved if _resolved is not None else set())
    return build_policy(raw)


def load_policy_from_string(text: str) -> PolicyView:
    """Parse a YAML string into a PolicyView, resolving inheritance."""
    return build_policy(_resolve(_read_yaml(text), _resolved=set()))


def load_policy_by_name(
    name: str, search_dirs: Iterable[Path] = ()
) -> PolicyView:
    """Look up ``<name>.yaml`` in the search dirs, then fall back to presets."""
    for directory in search_dirs:
        candidate = Path(directory) / f"{name}.yaml"
        if candidate.is_file():
            return load_policy(candidate)
    return build_policy(_load_preset(name, set()))


def default_policy() -> PolicyView:
    return load_policy_by_name(DEFAULT_PRESET)


def resolve_policy(ref: str | Path | None, search_dirs: Iterable[Path] = ()) -> PolicyView:
    """A YAML path, a policy name or ``preset:<name>``; None means the default."""
    if ref is None:
        return default_policy()
    if Path(ref).is_file():
        return load_policy(ref)
    name = str(ref)
    if name.startswith(_PRESET_PREFIX):
        return build_policy(_load_preset(name[len(_PRESET_PREFIX) :], set()))
    return load_policy_by_name(name, search_dirs)


def build_policy(data: dict) -> PolicyView:
    """Turn a fully-merged policy mapping into an immutable PolicyView."""
    functions = data.get("functions") or {}
    overrides = data.get("overrides") or {}

    lifted = (
        _lower_set(overrides.get("functions"))
        | _lower_set(overrides.get("tokens"))
        | _lower_set(overrides.get("dangerous"))
    )

    dangerous = _lower_set(functions.get("dangerous")) - lifted
    risky = _lower_set(functions.get("tokens")) - lifted
    forbidden = (
        _lower_set(functions.get("forbidden"))
        | _lower_set(functions.get("file_io"))
        | _lower_set(functions.get("stream"))
        | _lower_set(functions.get("curl"))
    ) - lifted
    unsupported = (
        dangerous
        | risky
        | _lower_set(functions.get("environment"))
        | _lower_set(functions.get("obfuscators"))
    ) - lifted

    allowed_ns = tuple(_trim_ns(n) for n in _str_list(overrides.get("namespaces")))
    allowed_ns_keys = {n.lower() for n in allowed_ns}
    namespaces = tuple(
        ns
        for ns in dict.fromkeys(_trim_ns(n) for n in _str_list(data.get("namespaces")))
        if ns and ns.lower() not in allowed_ns_keys
    )

    wrappers = tuple(
        w
        for w in dict.fromkeys(w.lower() for w in _str_list(data.get("wrappers")))
        if w not in _lower_set(overrides.get("wrappers"))
    )

    return PolicyView(
        name=data.get("name", "unnamed"),
        description=data.get("description", ""),
        forbidden_functions=frozenset(forbidden),
        unsupported_functions=frozenset(unsupported),
        dangerous_functions=frozenset(dangerous),
        risky_functions=frozenset(risky),
        obfuscators=frozenset(_lower_set(functions.get("obfuscators"))),
        callback_functions=frozenset(_lower_set(functions.get("callbacks"))),
        forbidden_namespaces=namespaces,
        forbidden_packages=frozenset(
            _lower_set(data.get("packages")) - _lower_set(overrides.get("packages"))
        ),
        reflection_prefix=str(data.get("reflection_prefix", "Reflection")).lower(),
        allowed_namespaces=allowed_ns,
        magic_methods=frozenset(
            _lower_set(data.get("magic_methods"))
            - _lower_set(overrides.get("magic_methods"))
        ),
        wrappers=wrappers,
        allowed_class_methods=_class_methods(
            data.get("allowed_class_methods") or {}, overrides.get("classes") or {}
        ),
        limits=_parse_limits(data.get("scan") or {}),
        inherit=tuple(_str_list(data.get("inherit"))),
    )


def _read_yaml(text: str) -> dict:
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Policy YAML must be a mapping")
    return data


def _resolve(data: dict, _resolved: set[str]) -> dict:
    """Merge inherited policies underneath ``data``; returns a raw mapping."""
    name = data.get("name", "unnamed")

    # Circular inheritance detection; _resolved holds only the ancestor path
    if name in _resolved:
        raise ValueError(f"Circular policy inheritance detected: {name}")
    ancestors = _resolved | {name}

    merged: dict = {}
    for ref in _str_list(data.get("inherit")):
        merged = _merge(merged, _load_ref(ref, ancestors))
    return _merge(merged, data)


def _merge(base: dict, own: dict) -> dict:
    result = dict(base)
    for key, value in own.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merge(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            result[key] = current + [v for v in value if v not in current]
        else:
            result[key] = value
    return result


def _load_ref(ref: str, _resolved: set[str]) -> dict:
    if ref.startswith(_PRESET_PREFIX):
        return _load_preset(ref[len(_PRESET_PREFIX) :], _resolved)
    # Treat as file path
    return _resolve(_read_yaml(Path(ref).read_text(encoding="utf-8")), _resolved)


def _load_preset(name: str, _resolved: set[str]) -> dict:
    pkg = importlib.resources.files("fortiscan.policy.presets")
    resource = pkg.joinpath(f"{name}.yaml")
    if not resource.is_file():
        raise ValueError(f"Unknown policy preset: {name}")
    return _resolve(_read_yaml(resource.read_text(encoding="utf-8")), _resolved)


def _parse_limits(scan: dict) -> ScanLimits:
    extensions = [e.lower().lstrip(".") for e in _str_list(scan.get("php_extensions"))]
    if not extensions:
        extensions = list(ScanLimits.php_extensions)
    if "php" not in extensions:
        extensions.insert(0, "php")

    scan_size = {
        str(ext).lower().lstrip("."): int(size)
        for ext, size in (scan.get("scan_size") or {}).items()
    }
    return ScanLimits(
        php_extensions=tuple(dict.fromkeys(extensions)),
        scan_size=MappingProxyType(scan_size),
        max_web_file_bytes=int(scan.get("max_web_file_bytes", 262_144)),
        strict_ignore_blocks_payload=bool(scan.get("strict_ignore_blocks_payload", False)),
        short_open_tags=bool(scan.get("short_open_tags", False)),
        emit_pre_flags=bool(scan.get("emit_pre_flags", True)),
        include_non_php=bool(scan.get("include_non_php", False)),
        ignore=tuple(_str_list(scan.get("ignore"))),
    )


def _class_methods(allowed: dict, extra: dict) -> MappingProxyType:
    table: dict[str, set[str]] = {}
    for source in (allowed, extra):
        for cls, methods in source.items():
            key = _trim_ns(str(cls)).lower()
            table.setdefault(key, set()).update(_lower_set(methods))
    return MappingProxyType({k: frozenset(v) for k, v in table.items()})


def _str_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None and str(v).strip()]


def _lower_set(value) -> set[str]:
    return {v.strip().lower() for v in _str_list(value)}


def _trim_ns(name: str) -> str:
    return name.strip().strip("\\")
