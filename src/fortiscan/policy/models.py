"""Policy data models: an immutable snapshot consumed read-only by every scanner."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class ScanLimits:
    """File eligibility, size ceilings and ignore rules."""

    php_extensions: tuple[str, ...] = ("php", "phtml", "phpt")
    scan_size: Mapping[str, int] = field(default_factory=dict)
    max_web_file_bytes: int = 262_144
    strict_ignore_blocks_payload: bool = False
    short_open_tags: bool = False
    emit_pre_flags: bool = True
    include_non_php: bool = False
    ignore: tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyView:
    """Forbidden and unsupported identifiers plus scan limits.

    All name sets hold lowercase values; namespaces are stored trimmed of
    leading and trailing backslashes.
    """

    name: str = "unnamed"
    description: str = ""
    forbidden_functions: frozenset[str] = frozenset()
    unsupported_functions: frozenset[str] = frozenset()
    dangerous_functions: frozenset[str] = frozenset()
    risky_functions: frozenset[str] = frozenset()
    obfuscators: frozenset[str] = frozenset()
    callback_functions: frozenset[str] = frozenset()
    forbidden_namespaces: tuple[str, ...] = ()
    forbidden_packages: frozenset[str] = frozenset()
    reflection_prefix: str = "reflection"
    allowed_namespaces: tuple[str, ...] = ()
    magic_methods: frozenset[str] = frozenset()
    wrappers: tuple[str, ...] = ()
    allowed_class_methods: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    limits: ScanLimits = field(default_factory=ScanLimits)
    inherit: tuple[str, ...] = ()

    def is_forbidden_function(self, name: str) -> bool:
        return _fn_key(name) in self.forbidden_functions

    def is_unsupported_function(self, name: str) -> bool:
        return _fn_key(name) in self.unsupported_functions

    def is_obfuscator(self, name: str) -> bool:
        return _fn_key(name) in self.obfuscators

    def is_callback_function(self, name: str) -> bool:
        return _fn_key(name) in self.callback_functions

    def is_forbidden_magic_method(self, name: str) -> bool:
        return name.lower() in self.magic_methods

    def forbidden_namespace_for(self, name: str) -> str | None:
        """Return the forbidden namespace prefix covering ``name``, if any."""
        key = name.strip("\\").lower()
        if not key:
            return None
        for ns in self.forbidden_namespaces:
            prefix = ns.lower()
            if key == prefix or key.startswith(prefix + "\\"):
                return ns
        return None

    def is_forbidden_namespace(self, name: str) -> bool:
        return self.forbidden_namespace_for(name) is not None

    def is_forbidden_reflection(self, class_name: str) -> bool:
        key = class_name.strip("\\").lower()
        short = key.rsplit("\\", 1)[-1]
        if not short.startswith(self.reflection_prefix):
            return False
        return not any(
            key == ns.lower() or key.startswith(ns.lower().rstrip("\\") + "\\")
            for ns in self.allowed_namespaces
        )

    def is_forbidden_package(self, package: str) -> bool:
        return package.strip().lower() in self.forbidden_packages

    def forbidden_wrapper_for(self, value: str) -> str | None:
        lowered = value.lower()
        for wrapper in self.wrappers:
            if lowered.startswith(wrapper):
                return wrapper
        return None

    def allowed_methods_for(self, class_name: str) -> frozenset[str] | None:
        """Allowed method names for a blocklisted class, or None if unlisted."""
        return self.allowed_class_methods.get(class_name.strip("\\").lower())


def _fn_key(name: str) -> str:
    return name.strip().lstrip("\\").lower()
