"""Fail-policy evaluator: converts an aggregated violation log into pass/fail."""

from __future__ import annotations

import fnmatch
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from fortiscan.config import FailPolicy
from fortiscan.scanner.models import Violation


@dataclass(frozen=True)
class FailVerdict:
    """Result of evaluating a violation log against a fail policy."""

    should_fail: bool
    reason: str = ""
    violation_type: str = ""
    file: str = ""


@dataclass
class _CompiledGate:
    pattern: str
    regex: re.Pattern[str]


class FailPolicyEvaluator:
    """Evaluates a violation log. First rule that trips wins.

    Rules are checked in order: type blocklist, total limit, per-type
    limits, then file gates.
    """

    def __init__(self, policy: FailPolicy, root: str | Path | None = None) -> None:
        self.policy = policy
        self._root = str(Path(root).resolve()) if root else ""
        self._gates = [
            _CompiledGate(pattern=p, regex=re.compile(fnmatch.translate(p)))
            for p in policy.file_gates
        ]

    def evaluate(self, log: Iterable[Violation]) -> FailVerdict:
        log = list(log)
        blocklist = self.policy.types_blocklist

        for v in log:
            if v.type in blocklist:
                return FailVerdict(
                    should_fail=True,
                    reason=f"Violation type '{v.type}' is blocklisted",
                    violation_type=v.type,
                    file=v.file,
                )

        limit = self.policy.total_error_limit
        if limit is not None and limit >= 0 and len(log) > limit:
            return FailVerdict(
                should_fail=True,
                reason=f"{len(log)} violations exceed the total limit of {limit}",
            )

        if self.policy.per_type_limits:
            counts = Counter(v.type for v in log)
            for vtype, type_limit in self.policy.per_type_limits.items():
                if type_limit >= 0 and counts.get(vtype, 0) > type_limit:
                    return FailVerdict(
                        should_fail=True,
                        reason=(
                            f"{counts[vtype]} '{vtype}' violations exceed "
                            f"the limit of {type_limit}"
                        ),
                        violation_type=vtype,
                    )

        if self._gates:
            for v in log:
                gate = self._gate_for(v.file)
                if gate is not None:
                    return FailVerdict(
                        should_fail=True,
                        reason=f"Violation in gated path '{gate.pattern}'",
                        violation_type=v.type,
                        file=v.file,
                    )

        return FailVerdict(should_fail=False)

    def _gate_for(self, file_path: str) -> _CompiledGate | None:
        if not file_path:
            return None
        candidates = [file_path.replace("\\", "/")]
        if self._root and file_path.startswith(self._root):
            relative = file_path[len(self._root) :].lstrip("/\\").replace("\\", "/")
            candidates.extend([relative, "./" + relative])
        for gate in self._gates:
            if any(gate.regex.match(c) for c in candidates):
                return gate
        return None
