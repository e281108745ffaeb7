"""Global configuration: XDG paths, env vars, and the pipeline YAML."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from fortiscan.exceptions import ScanConfigurationError

_TRUTHY = {"1", "true", "yes", "on"}


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "fortiscan"
    return Path.home() / ".config" / "fortiscan"


@dataclass
class FortiScanConfig:
    """Process-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    policy_dirs: list[Path] = field(default_factory=list)
    policy_path: Path | None = None
    web_context: bool = False
    max_call_depth: int = 7
    verbose: bool = False

    @classmethod
    def load(cls) -> FortiScanConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_web = os.environ.get("FORTISCAN_WEB_CONTEXT")
        if env_web:
            config.web_context = env_web.strip().lower() in _TRUTHY

        env_depth = os.environ.get("FORTISCAN_MAX_CALL_DEPTH")
        if env_depth:
            config.max_call_depth = int(env_depth)

        env_policy = os.environ.get("FORTISCAN_POLICY")
        if env_policy:
            config.policy_path = Path(env_policy)

        # Add config dir's policies/ subdirectory if it exists
        policies_dir = config.config_dir / "policies"
        if policies_dir.is_dir():
            config.policy_dirs.append(policies_dir)

        return config


@dataclass(frozen=True)
class HeadlineConfig:
    """Locations of plugin-level inputs checked before the file scan."""

    composer_json: str = "composer.json"
    forti_schema: str | None = None
    host_config: str | None = None
    permission_manifest: str | None = None
    route_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScanSettings:
    token_list: tuple[str, ...] = ()


@dataclass(frozen=True)
class FailPolicy:
    """Rules turning an aggregated violation log into pass/fail."""

    types_blocklist: frozenset[str] = frozenset()
    total_error_limit: int | None = None
    per_type_limits: dict[str, int] = field(default_factory=dict)
    file_gates: tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineConfig:
    headline: HeadlineConfig = field(default_factory=HeadlineConfig)
    scan: ScanSettings = field(default_factory=ScanSettings)
    fail_policy: FailPolicy = field(default_factory=FailPolicy)


def load_pipeline_config(path: str | Path) -> PipelineConfig:
    """Load the orchestrator configuration from a YAML file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ScanConfigurationError(f"Cannot read pipeline config {path}: {e}") from e
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ScanConfigurationError("Pipeline YAML must be a mapping")
    return pipeline_config_from_dict(data)


def pipeline_config_from_dict(data: dict) -> PipelineConfig:
    headline = _section(data, "headline")
    scan = _section(data, "scan")
    fail = _section(data, "fail_policy")

    limit = fail.get("total_error_limit")
    if limit is not None and not isinstance(limit, int):
        raise ScanConfigurationError("fail_policy.total_error_limit must be an integer")

    per_type = fail.get("per_type_limits") or {}
    if not isinstance(per_type, dict):
        raise ScanConfigurationError("fail_policy.per_type_limits must be a mapping")

    return PipelineConfig(
        headline=HeadlineConfig(
            composer_json=headline.get("composer_json") or "composer.json",
            forti_schema=headline.get("forti_schema"),
            host_config=headline.get("host_config"),
            permission_manifest=headline.get("permission_manifest"),
            route_files=_str_tuple(headline.get("route_files")),
        ),
        scan=ScanSettings(
            token_list=tuple(t.lower() for t in _str_tuple(scan.get("token_list")))
        ),
        fail_policy=FailPolicy(
            types_blocklist=frozenset(_str_tuple(fail.get("types_blocklist"))),
            total_error_limit=limit,
            per_type_limits={
                str(k): int(v) for k, v in per_type.items() if isinstance(v, int)
            },
            file_gates=_str_tuple(fail.get("file_gates")),
        ),
    )


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ScanConfigurationError(f"'{key}' section must be a mapping")
    return value


def _str_tuple(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value if isinstance(v, str) and v)
