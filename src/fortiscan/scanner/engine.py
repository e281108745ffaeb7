"""Validation orchestrator: headline checks, then the per-file scan pipeline."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Union

from fortiscan.catalog import format_many
from fortiscan.config import FortiScanConfig, PipelineConfig
from fortiscan.exceptions import HeadlineValidationError, ScanConfigurationError
from fortiscan.headline import (
    ComposerScan,
    HostConfigValidator,
    PermissionManifestValidator,
    PluginConfigValidator,
    RouteFileValidator,
    RouteIdRegistry,
)
from fortiscan.headline.plugin_config import CONFIG_FILENAME, load_schema
from fortiscan.policy.evaluator import FailPolicyEvaluator
from fortiscan.policy.models import PolicyView
from fortiscan.scanner.content import ContentScanner
from fortiscan.scanner.discovery import FileDiscoveryScanner
from fortiscan.scanner.models import CandidateFile, ScanEvent, ScanSummary, Severity, Violation
from fortiscan.scanner.php.callgraph import DEFAULT_MAX_DEPTH, CallGraphIndex
from fortiscan.scanner.php.facts import VariableFacts
from fortiscan.scanner.php.parser import ParsedUnit, parse_file
from fortiscan.scanner.php.security import SyntaxTreeSecurityScanner
from fortiscan.scanner.tokens import TokenStreamAnalyzer

logger = logging.getLogger(__name__)

EventSink = Callable[[Union[ScanEvent, Violation]], None]

# Validator name or alias -> canonical name
_ALIASES = {
    "composer": "composer",
    "composerscan": "composer",
    "config": "config",
    "pluginconfigvalidator": "config",
    "host": "host_config",
    "host_config": "host_config",
    "hostconfigvalidator": "host_config",
    "permission_manifest": "permission_manifest",
    "manifest": "permission_manifest",
    "permissionmanifestvalidator": "permission_manifest",
    "route": "route",
    "routes": "route",
    "routefilevalidator": "route",
    "file_scanner": "file_scanner",
    "filediscoveryscanner": "file_scanner",
    "content": "content",
    "content_validator": "content",
    "contentscanner": "content",
    "token": "token",
    "token_usage": "token",
    "token_analyzer": "token",
    "tokenstreamanalyzer": "token",
    "ast": "ast",
    "ast_scanner": "ast",
    "syntaxtreesecurityscanner": "ast",
}

VALIDATORS = tuple(dict.fromkeys(_ALIASES.values()))

HOST_CONFIG_FILE = "[host-config]"


def canonical_validator(name: str) -> str:
    key = name.strip().lower()
    if key not in _ALIASES:
        raise ScanConfigurationError(
            f"Unknown validator '{name}' (expected one of: {', '.join(VALIDATORS)})"
        )
    return _ALIASES[key]


class ValidationOrchestrator:
    """Runs every check against a plugin directory and summarizes the result.

    Violations never raise; a failing validator or scanner becomes a
    synthetic violation. Only an unusable configuration (unreadable root,
    missing schema) raises :class:`ScanConfigurationError`.
    """

    def __init__(
        self,
        policy: PolicyView,
        pipeline: PipelineConfig | None = None,
        web_context: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._policy = policy
        self._pipeline = pipeline or PipelineConfig()
        self._web_context = web_context
        self._max_depth = max_depth
        self._ignored: set[str] = set()
        self._log: list[Violation] = []
        self._sink: EventSink | None = None

    @classmethod
    def from_config(
        cls, policy: PolicyView, pipeline: PipelineConfig | None, config: FortiScanConfig
    ) -> ValidationOrchestrator:
        return cls(
            policy,
            pipeline,
            web_context=config.web_context,
            max_depth=config.max_call_depth,
        )

    @property
    def ignored_validators(self) -> frozenset[str]:
        return frozenset(self._ignored)

    def set_ignored_validators(self, names: Iterable[str]) -> None:
        """Skip validators by alias or class name; replaces any previous set."""
        self._ignored = {canonical_validator(n) for n in names if n and n.strip()}

    def run(self, root: str | Path, on_event: EventSink | None = None) -> ScanSummary:
        root = _check_root(root)
        schema = self._load_schema(root)

        saved = self._begin(on_event)
        try:
            self._emit(ScanEvent(title="Initialize", description=f"Validating {root}"))
            self._headline(root, schema)
            files = self._scan_files(root)
            return self._finish(root, files)
        finally:
            self._log, self._sink = saved

    def run_file_scan(self, root: str | Path, on_event: EventSink | None = None) -> ScanSummary:
        """Only the per-file scan phase, without headline checks."""
        root = _check_root(root)
        saved = self._begin(on_event)
        try:
            files = self._scan_files(root)
            return self._finish(root, files)
        finally:
            self._log, self._sink = saved

    # -- plumbing ---------------------------------------------------------

    def _begin(self, on_event: EventSink | None) -> tuple[list[Violation], EventSink | None]:
        saved = (self._log, self._sink)
        self._log = []
        self._sink = on_event
        return saved

    def _emit(self, item: ScanEvent | Violation) -> None:
        if self._sink is None:
            return
        try:
            self._sink(item)
        except Exception as e:
            logger.warning("Event sink raised %s: %s", type(e).__name__, e)

    def _record(self, violation: Violation) -> None:
        self._log.append(violation)
        self._emit(violation)

    def _enabled(self, name: str) -> bool:
        return name not in self._ignored

    def _finish(self, root: Path, files: int) -> ScanSummary:
        verdict = FailPolicyEvaluator(self._pipeline.fail_policy, root=root).evaluate(self._log)
        if verdict.should_fail:
            logger.info("Fail policy tripped: %s", verdict.reason)
        summary = ScanSummary(
            files_scanned=files,
            total_issues=len(self._log),
            should_fail=verdict.should_fail,
            log=list(self._log),
            extended=[v.to_dict() for v in self._log],
            formatted=[f.to_dict() for f in format_many(self._log)],
            fail_reason=verdict.reason,
        )
        self._emit(
            ScanEvent(
                title="Finalize",
                description=verdict.reason or "Validation complete",
                stats={
                    "files": files,
                    "issues": summary.total_issues,
                    "shouldFail": summary.should_fail,
                },
            )
        )
        return summary

    # -- headline ---------------------------------------------------------

    def _load_schema(self, root: Path) -> dict | None:
        configured = self._pipeline.headline.forti_schema
        if not configured or not self._enabled("config"):
            return None
        path = _resolve(root, configured)
        if not path.is_file():
            raise ScanConfigurationError(f"Plugin config schema not found: {path}")
        return load_schema(path)

    def _headline(self, root: Path, schema: dict | None) -> None:
        headline = self._pipeline.headline
        self._emit(ScanEvent(title="Headline", description="Plugin-level checks"))

        if self._enabled("composer"):
            self._emit(ScanEvent(title="Headline: Composer"))
            composer_path = _resolve(root, headline.composer_json)
            try:
                for v in ComposerScan(self._policy).scan(composer_path):
                    v.type = f"composer.{v.type}"
                    self._record(v)
            except Exception as e:
                self._record(_failure("composer.exception", str(composer_path), e))

        if schema is not None:
            self._emit(ScanEvent(title="Headline: Config"))
            config_path = str(root / CONFIG_FILENAME)
            try:
                result = PluginConfigValidator(schema).validate(root)
            except Exception as e:
                self._record(_failure("config.exception", config_path, e))
            else:
                for detail in result.get("details") or ([{}] if result else []):
                    self._record(
                        Violation(
                            type="config.schema",
                            severity=Severity.HIGH,
                            file=config_path,
                            line=0,
                            issue=result["error"],
                            data=dict(detail),
                        )
                    )

        if headline.host_config and self._enabled("host_config"):
            self._emit(ScanEvent(title="Headline: HostConfig"))
            self._guarded(
                "hostconfig.error",
                HOST_CONFIG_FILE,
                lambda: HostConfigValidator().validate_file(_resolve(root, headline.host_config)),
            )

        if headline.permission_manifest and self._enabled("permission_manifest"):
            self._emit(ScanEvent(title="Headline: Permission manifest"))
            manifest_path = _resolve(root, headline.permission_manifest)
            self._guarded(
                "manifest.invalid",
                str(manifest_path),
                lambda: PermissionManifestValidator().validate_file(manifest_path),
            )

        if headline.route_files and self._enabled("route"):
            self._emit(ScanEvent(title="Headline: Route file"))
            validator = RouteFileValidator(RouteIdRegistry())
            for route_file in headline.route_files:
                route_path = _resolve(root, route_file)
                self._guarded(
                    "route.invalid",
                    str(route_path),
                    lambda path=route_path: validator.validate_file(path),
                )

    def _guarded(self, vtype: str, file: str, check: Callable[[], object]) -> None:
        try:
            check()
        except HeadlineValidationError as e:
            self._record(
                Violation(
                    type=vtype,
                    severity=Severity.HIGH,
                    file=file,
                    line=0,
                    issue=e.message,
                    data={"code": e.code, **e.extra},
                )
            )
        except Exception as e:
            self._record(_failure(vtype, file, e))

    # -- file scan --------------------------------------------------------

    def _scan_files(self, root: Path) -> int:
        self._emit(ScanEvent(title="Scan", description=f"Scanning {root}"))
        if not self._enabled("file_scanner"):
            logger.info("File scan skipped")
            return 0

        discovery = FileDiscoveryScanner(self._policy, web_context=self._web_context)
        try:
            candidates = discovery.discover(root, emit=self._emit)
        except Exception as e:
            self._record(_failure("scanner.exception", str(root), e))
            return 0

        units: dict[str, ParsedUnit] = {}
        for candidate in candidates:
            try:
                units[candidate.path] = parse_file(candidate.path)
            except OSError as e:
                logger.debug("Skipping %s: %s", candidate.path, e)
                self._record(
                    Violation(
                        type="read_error",
                        severity=Severity.HIGH,
                        file=candidate.path,
                        line=0,
                        issue="Unable to read file",
                    )
                )
            except Exception as e:
                logger.warning("Parser failed on %s: %s", candidate.path, e)
                self._record(_failure("parse_error", candidate.path, e))

        # Every definition must be known before the first file is scanned
        index = CallGraphIndex.from_units(self._policy, units.values(), max_depth=self._max_depth)
        content = ContentScanner(self._policy)
        tokens = TokenStreamAnalyzer(self._policy, self._pipeline.scan.token_list or None)
        security = SyntaxTreeSecurityScanner(self._policy, index=index, max_depth=self._max_depth)
        facts = VariableFacts()

        for candidate in candidates:
            for v in discovery.flag_violations(candidate):
                self._record(v)
            unit = units.get(candidate.path)
            if unit is None:
                continue
            self._scan_file(candidate, unit, content, tokens, security, facts)

        logger.info("Scanned %d file(s), %d issue(s)", len(units), len(self._log))
        return len(units)

    def _scan_file(
        self,
        candidate: CandidateFile,
        unit: ParsedUnit,
        content: ContentScanner,
        tokens: TokenStreamAnalyzer,
        security: SyntaxTreeSecurityScanner,
        facts: VariableFacts,
    ) -> None:
        path = candidate.path
        before = len(self._log)
        self._emit(ScanEvent(title="Scan: File", description="start", stats={"filePath": path}))

        if self._enabled("content"):
            self._run("content.exception", path, lambda: content.scan_source(unit.text, path))
        if self._enabled("token"):
            self._run("token.exception", path, lambda: tokens.analyze_unit(unit))
        if self._enabled("ast"):
            self._emit(ScanEvent(title="Scan: Security", stats={"filePath": path}))
            self._run(
                "ast.exception",
                path,
                lambda: security.scan_unit(
                    unit, facts, extension=candidate.extension, size=candidate.size
                ),
            )

        self._emit(
            ScanEvent(
                title="Scan: File",
                description="end",
                stats={"filePath": path, "issues": len(self._log) - before},
            )
        )

    def _run(self, vtype: str, path: str, scan: Callable[[], list[Violation]]) -> None:
        try:
            found = scan()
        except Exception as e:
            logger.warning("%s failed on %s: %s", vtype.split(".")[0], path, e)
            self._record(_failure(vtype, path, e))
            return
        for v in found:
            self._record(v)


def _check_root(root: str | Path) -> Path:
    path = Path(root).resolve()
    if not path.is_dir() or not os.access(path, os.R_OK | os.X_OK):
        raise ScanConfigurationError(f"Scan root is not a readable directory: {root}")
    return path


def _resolve(root: Path, configured: str) -> Path:
    path = Path(configured)
    return path if path.is_absolute() else root / path


def _failure(vtype: str, file: str, error: Exception) -> Violation:
    return Violation(
        type=vtype,
        severity=Severity.HIGH,
        file=file,
        line=0,
        issue=str(error) or type(error).__name__,
        data={"error": type(error).__name__},
    )
