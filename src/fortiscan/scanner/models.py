"""Scanner data models: violations, candidate files, events and summaries."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class Severity(enum.Enum):
    """Violation severity level."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.INFO: 4,
}


@dataclass
class Violation:
    """A single policy-relevant finding.

    ``data`` carries the detector-specific fields (function, namespace,
    resolved name, ...) used by the catalog to render a description.
    """

    type: str
    severity: Severity
    file: str
    line: int
    snippet: str = ""
    issue: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "type": self.type,
            "severity": self.severity.value,
            "file": self.file,
            "line": self.line,
        }
        if self.snippet:
            record["snippet"] = self.snippet
        if self.issue:
            record["issue"] = self.issue
        record.update(self.data)
        return record


class FileFlag(enum.Enum):
    """Suspicion signals raised during discovery."""

    BIDI_FILENAME = "suspicious_filename_unicode"
    DOUBLE_EXTENSION = "suspicious_double_extension"
    PAYLOAD_IN_NON_PHP = "php_payload_in_non_php"


@dataclass(frozen=True)
class CandidateFile:
    """A file selected for analysis. Never mutated after discovery."""

    path: str
    extension: str
    size: int
    flags: frozenset[FileFlag] = frozenset()
    has_payload: bool = False


@dataclass
class ScanEvent:
    """Progress/telemetry event delivered to the caller's sink."""

    title: str
    description: str = ""
    error: dict[str, Any] | None = None
    stats: dict[str, Any] | None = None
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {"title": self.title}
        if self.description:
            record["description"] = self.description
        if self.error is not None:
            record["error"] = self.error
        if self.stats is not None:
            record["stats"] = self.stats
        if self.meta is not None:
            record["meta"] = self.meta
        return record


@dataclass
class ScanSummary:
    """Terminal result of an orchestrated run."""

    files_scanned: int = 0
    total_issues: int = 0
    should_fail: bool = False
    log: list[Violation] = field(default_factory=list)
    extended: list[dict[str, Any]] = field(default_factory=list)
    formatted: list[dict[str, Any]] = field(default_factory=list)
    fail_reason: str = ""
