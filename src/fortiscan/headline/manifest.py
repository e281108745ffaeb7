"""Permission manifest validation.

A manifest declares the host capabilities a plugin needs, split into
``required_permissions`` and ``optional_permissions``. Each rule has a
``type`` (db, file, network, notify, module or codec) that decides which
``actions`` and which ``target`` shape are legal. Unknown keys are rejected
everywhere. All problems are collected and reported together as
:class:`~fortiscan.exceptions.PermissionManifestError`.
"""

from __future__ import annotations

import ipaddress
import json
import re
from pathlib import Path
from typing import Annotated, Any, Iterable, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)

from fortiscan.exceptions import PermissionManifestError

TYPES = ("db", "file", "network", "notify", "module", "codec")

NonEmptyStr = Annotated[StrictStr, StringConstraints(min_length=1)]
HostPattern = Annotated[StrictStr, StringConstraints(pattern=r"^([a-z0-9.-]+|\*\.[a-z0-9.-]+)$")]
Port = Annotated[StrictInt, Field(ge=1, le=65535)]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

_CODEC_METHOD = re.compile(r"^[a-z0-9_]+$")


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _unique(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    return list(dict.fromkeys(values))


class Audit(_Strict):
    log: Literal["always", "on_deny", "never"] | None = None
    redact_fields: list[StrictStr] | None = None
    tags: list[StrictStr] | None = None


class EnvCondition(_Strict):
    allow: list[StrictStr] | None = None
    deny: list[StrictStr] | None = None


class Conditions(_Strict):
    setting_link: StrictStr | StrictInt | StrictFloat | None = None
    guard: NonEmptyStr | None = None
    env: EnvCondition | None = None


class _Rule(_Strict):
    conditions: Conditions | None = None
    audit: Audit | None = None
    justification: StrictStr | None = None


# -- db ----------------------------------------------------------------------


class DbTarget(_Strict):
    model: NonEmptyStr | None = None
    table: NonEmptyStr | None = None
    columns: list[StrictStr] | None = None

    @model_validator(mode="after")
    def _model_or_table(self) -> DbTarget:
        if (self.model is None) == (self.table is None):
            raise ValueError("exactly one of 'model' or 'table' is required")
        if self.columns is not None and len(set(self.columns)) != len(self.columns):
            raise ValueError("columns must be an array of unique strings")
        return self


class DbRule(_Rule):
    type: Literal["db"]
    target: DbTarget
    actions: Annotated[
        list[Literal["select", "insert", "update", "delete", "truncate", "transaction"]],
        Field(min_length=1),
    ]


# -- file --------------------------------------------------------------------


class FileTarget(_Strict):
    base_dir: NonEmptyStr
    paths: Annotated[list[StrictStr], Field(min_length=1)]
    follow_symlinks: StrictBool = False

    @field_validator("paths")
    @classmethod
    def _no_traversal(cls, paths: list[str]) -> list[str]:
        for path in paths:
            if ".." in re.split(r"[\\/]", path):
                raise ValueError(f"path must not contain '..': {path}")
        return _unique(paths)


class FileRule(_Rule):
    type: Literal["file"]
    target: FileTarget
    actions: Annotated[
        list[Literal["read", "write", "append", "delete", "mkdir", "rmdir", "list"]],
        Field(min_length=1),
    ]


# -- network -----------------------------------------------------------------


class NetworkTarget(_Strict):
    hosts: Annotated[list[HostPattern], Field(min_length=1)]
    methods: Annotated[list[HttpMethod], Field(min_length=1)]
    schemes: list[Literal["https", "http"]] | None = None
    ports: list[Port] | None = None
    ips_allowed: list[StrictStr] | None = None
    headers_allowed: list[StrictStr] | None = None
    paths: list[StrictStr] | None = None
    auth_via_host_secret: StrictBool = True

    @field_validator("methods", mode="before")
    @classmethod
    def _upper(cls, methods: Any) -> Any:
        if isinstance(methods, list):
            return [m.upper() if isinstance(m, str) else m for m in methods]
        return methods

    @field_validator("ips_allowed")
    @classmethod
    def _valid_ips(cls, ips: list[str] | None) -> list[str] | None:
        for ip in ips or ():
            try:
                ipaddress.ip_network(ip, strict=False)
            except ValueError:
                raise ValueError(f"invalid IP '{ip}'") from None
        return ips

    @field_validator("hosts", "methods")
    @classmethod
    def _dedupe(cls, values: list[str]) -> list[str]:
        return _unique(values)


class NetworkRule(_Rule):
    type: Literal["network"]
    target: NetworkTarget
    actions: Annotated[list[Literal["request"]], Field(min_length=1)]


# -- notify ------------------------------------------------------------------


class NotifyTarget(_Strict):
    channels: Annotated[list[StrictStr], Field(min_length=1)]
    templates: list[StrictStr] | None = None
    recipients: list[StrictStr] | None = None


class NotifyRule(_Rule):
    type: Literal["notify"]
    target: NotifyTarget
    actions: Annotated[list[Literal["send"]], Field(min_length=1)]


# -- module ------------------------------------------------------------------


class ModuleTarget(_Strict):
    plugin: NonEmptyStr
    apis: Annotated[list[StrictStr], Field(min_length=1)]


class ModuleRule(_Rule):
    type: Literal["module"]
    target: ModuleTarget
    actions: Annotated[list[Literal["call", "publish", "subscribe"]], Field(min_length=1)]


# -- codec -------------------------------------------------------------------


class CodecOptions(_Strict):
    allow_unserialize_classes: list[NonEmptyStr] | None = None


class CodecRule(_Rule):
    type: Literal["codec"]
    target: Literal["codec"]
    actions: Annotated[list[Literal["invoke"]], Field(min_length=1)]
    methods: Literal["*"] | list[StrictStr] | None = None
    groups: list[StrictStr] | None = None
    options: CodecOptions | None = None

    @field_validator("methods")
    @classmethod
    def _method_names(cls, methods: str | list[str] | None) -> str | list[str] | None:
        if isinstance(methods, list):
            for method in methods:
                if not _CODEC_METHOD.match(method):
                    raise ValueError(f"invalid method name '{method}'")
        return methods

    @model_validator(mode="after")
    def _methods_or_groups(self) -> CodecRule:
        if self.methods is None and self.groups is None:
            raise ValueError("codec rule requires one of: methods or groups")
        if self.requires_unserialize_guard and (
            self.options is None or self.options.allow_unserialize_classes is None
        ):
            raise ValueError(
                'options.allow_unserialize_classes is required when methods="*" '
                'or includes "unserialize", or groups include "serialize"'
            )
        return self

    @property
    def requires_unserialize_guard(self) -> bool:
        if self.methods == "*":
            return True
        if isinstance(self.methods, list) and "unserialize" in self.methods:
            return True
        return "serialize" in (self.groups or ())


Rule = Annotated[
    Union[DbRule, FileRule, NetworkRule, NotifyRule, ModuleRule, CodecRule],
    Field(discriminator="type"),
]


class PermissionManifest(_Strict):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    required_permissions: list[Rule]
    optional_permissions: list[Rule] = Field(default_factory=list)
    schema_uri: StrictStr | None = Field(default=None, alias="$schema")
    manifest_id: StrictStr | None = Field(default=None, alias="$id")
    title: StrictStr | None = None
    description: StrictStr | None = None

    def rules(self) -> Iterable[tuple[str, int, Any]]:
        for key in ("required_permissions", "optional_permissions"):
            for i, rule in enumerate(getattr(self, key)):
                yield key, i, rule


class PermissionManifestValidator:
    """Validates a manifest against the rule types and, optionally, what the
    host offers (notify channels, module names, codec groups)."""

    def __init__(
        self,
        allowed_channels: Iterable[str] | None = None,
        known_modules: Iterable[str] | None = None,
        codec_groups: Iterable[str] | None = None,
    ) -> None:
        self._channels = _lowered(allowed_channels)
        self._modules = _lowered(known_modules)
        self._codec_groups = frozenset(codec_groups) if codec_groups is not None else None

    def validate(self, data: Any) -> PermissionManifest:
        if not isinstance(data, dict):
            raise PermissionManifestError(["$: manifest must be an object"])
        try:
            manifest = PermissionManifest.model_validate(data)
        except ValidationError as e:
            raise PermissionManifestError([_format_error(err) for err in e.errors()]) from e

        errors = list(self._host_errors(manifest))
        if errors:
            raise PermissionManifestError(errors)
        return manifest

    def validate_file(self, path: str | Path) -> PermissionManifest:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PermissionManifestError([f"$: cannot read manifest {path}: {e}"]) from e
        return self.validate(data)

    def _host_errors(self, manifest: PermissionManifest) -> Iterable[str]:
        for key, i, rule in manifest.rules():
            path = f"$.{key}[{i}]"
            if isinstance(rule, NotifyRule) and self._channels is not None:
                for j, channel in enumerate(rule.target.channels):
                    if channel.lower() not in self._channels:
                        yield f"{path}.target.channels[{j}]: channel '{channel}' is not allowed by host"
            elif isinstance(rule, ModuleRule) and self._modules is not None:
                if rule.target.plugin.lower() not in self._modules:
                    yield (
                        f"{path}.target.plugin: unknown module '{rule.target.plugin}' "
                        "(not in host modules map)"
                    )
            elif isinstance(rule, CodecRule) and self._codec_groups is not None:
                for j, group in enumerate(rule.groups or ()):
                    if group not in self._codec_groups:
                        yield f"{path}.groups[{j}]: unknown codec group '{group}'"


def _lowered(values: Iterable[str] | None) -> frozenset[str] | None:
    if values is None:
        return None
    return frozenset(v.lower() for v in values)


def _format_error(err: dict[str, Any]) -> str:
    """Render a pydantic error as ``$.a.b[0]: message``."""
    path = "$"
    previous: Any = None
    for part in err["loc"]:
        if isinstance(part, int):
            path += f"[{part}]"
        elif isinstance(previous, int) and part in TYPES:
            pass  # discriminator tag
        elif any(c in part for c in "[('"):
            pass  # union member label
        else:
            path += f".{part}"
        previous = part
    message = err["msg"]
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return f"{path}: {message}"
