"""Syntax-tree security scanner: folds the detectors over every node of a file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.models import Severity, Violation
from fortiscan.scanner.php.callgraph import DEFAULT_MAX_DEPTH, CallGraphIndex
from fortiscan.scanner.php.detectors import DETECTORS, FILE_DETECTORS, Detector, ScanContext
from fortiscan.scanner.php.facts import VariableFacts
from fortiscan.scanner.php.parser import ParsedUnit, parse_file, parse_php, walk

logger = logging.getLogger(__name__)


class SyntaxTreeSecurityScanner:
    """Runs every registered detector over a parsed unit.

    Multiple detectors may fire on the same node; each emits its own
    violation and nothing is deduplicated.
    """

    def __init__(
        self,
        policy: PolicyView,
        index: CallGraphIndex | None = None,
        detectors: Mapping[str, tuple[Detector, ...]] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._policy = policy
        self._index = index
        self._detectors = DETECTORS if detectors is None else detectors
        self._max_depth = max_depth

    def scan_unit(
        self,
        unit: ParsedUnit,
        facts: VariableFacts | None = None,
        extension: str | None = None,
        size: int | None = None,
    ) -> list[Violation]:
        violations: list[Violation] = []
        if unit.has_error:
            line = unit.first_error_line()
            logger.debug("Parse error in %s near line %d", unit.path, line)
            # The detectors still run over whatever tree-sitter recovered
            violations.append(
                Violation(
                    type="parse_error",
                    severity=Severity.HIGH,
                    file=unit.path,
                    line=line,
                    snippet=unit.line_text(line),
                    issue="Unable to parse file",
                )
            )

        index = self._index
        if index is None:
            index = CallGraphIndex.from_units(self._policy, [unit], max_depth=self._max_depth)

        facts = facts if facts is not None else VariableFacts()
        facts.reset()
        ctx = ScanContext(
            policy=self._policy,
            index=index,
            unit=unit,
            facts=facts,
            extension=extension or _extension_of(unit.path),
            size=len(unit.source) if size is None else size,
        )

        for file_detector in FILE_DETECTORS:
            violations.extend(file_detector(ctx))
        for node in walk(unit.root):
            for detector in self._detectors.get(node.type, ()):
                violations.extend(detector(node, ctx))
            facts.observe(node, unit.names)
        facts.reset()
        return violations

    def scan_source(self, source: str | bytes, path: str = "[source]") -> list[Violation]:
        return self.scan_unit(parse_php(source, path))

    def scan_file(self, path: str | Path) -> list[Violation]:
        return self.scan_unit(parse_file(path))


def _extension_of(path: str) -> str:
    name = Path(path).name
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""
