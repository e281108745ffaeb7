"""Line-oriented regex pass over raw source; no parse tree required."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.models import Severity, Violation
from fortiscan.scanner.patterns import compile_ci, ns_pattern, word_part

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")
_USE_LINE = re.compile(r"^\s*use\s+([^;]+);", re.IGNORECASE)
_ASSIGN_TARGET = r"(?:\$\w+|\$\w+\[.*?]|\w+::\$\w+|\$\w+->\w+)\s*=\s*"
# Method/property access and declarations are not bare calls
_NOT_MEMBER = r"(?<!->)(?<!::)(?<!\$)(?<!\\)(?<!function )"


@dataclass
class _BlockedClass:
    key: str
    allowed: frozenset[str]
    instantiation: re.Pattern[str]
    constructor: re.Pattern[str]
    reference: re.Pattern[str]
    method: re.Pattern[str]


class ContentScanner:
    """Regex checks for tokens, blocklisted classes, namespaces and functions."""

    def __init__(self, policy: PolicyView, tokens: Iterable[str] | None = None) -> None:
        self._policy = policy
        token_set = set(policy.risky_functions if tokens is None else (t.lower() for t in tokens))

        self._token_part = word_part(token_set)
        self._token_re = compile_ci(self._token_part) if self._token_part else None
        self._token_assign_re = (
            compile_ci(_ASSIGN_TARGET + self._token_part + r"\s*;") if self._token_part else None
        )
        self._token_arg_re = (
            compile_ci(r"\b\w+\s*\(\s*" + self._token_part + r"\s*\)") if self._token_part else None
        )

        self._forbidden_call_re, self._forbidden_assign_re = _call_patterns(
            policy.forbidden_functions
        )
        self._unsupported_call_re, _ = _call_patterns(policy.unsupported_functions)

        self._blocked = [
            _compile_blocked(cls, allowed) for cls, allowed in policy.allowed_class_methods.items()
        ]
        self._namespaces = [
            (
                ns,
                compile_ci(r"(?<![A-Za-z0-9_\\])\\{0,2}" + ns_pattern(ns) + r"(?:\\{1,2}|(?![A-Za-z0-9_]))"),
                compile_ci(r"""['"]\\{0,2}""" + ns_pattern(ns) + r"""(?:\\{1,2}[^'"]*)?['"]"""),
            )
            for ns in policy.forbidden_namespaces
        ]

    def scan_file(self, file_path: str | Path) -> list[Violation]:
        try:
            content = Path(file_path).read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.debug("Cannot read %s: %s", file_path, e)
            return [
                Violation(
                    type="read_error",
                    severity=Severity.HIGH,
                    file=str(file_path),
                    line=0,
                    issue="Unable to read file",
                )
            ]
        return self.scan_source(content, str(file_path))

    def scan_source(self, content: str, file_path: str = "[source]") -> list[Violation]:
        violations: list[Violation] = []
        for index, line in enumerate(_LINE_SPLIT.split(content)):
            if not line.strip():
                continue
            ln = index + 1
            violations.extend(self._invalid_tokens(line, ln, file_path))
            violations.extend(self._blocklist(line, ln, file_path))
            violations.extend(self._namespaces_in(line, ln, file_path))
            violations.extend(self._functions(line, ln, file_path))
        return violations

    def _invalid_tokens(self, line: str, ln: int, file_path: str) -> Iterator[Violation]:
        if self._token_re is None:
            return
        m = self._token_re.search(line)
        if m:
            yield _row("invalid_token_usage", Severity.LOW, file_path, ln, line,
                       f"Usage of invalid token '{m.group(1)}'", token=m.group(1))
        m = self._token_assign_re.search(line)
        if m:
            yield _row("invalid_token_assignment", Severity.MEDIUM, file_path, ln, line,
                       f"Invalid token '{m.group(1)}' assigned", token=m.group(1))
        m = self._token_arg_re.search(line)
        if m:
            yield _row("invalid_token_function_argument", Severity.MEDIUM, file_path, ln, line,
                       f"Invalid token '{m.group(1)}' passed as an argument", token=m.group(1))

    def _blocklist(self, line: str, ln: int, file_path: str) -> Iterator[Violation]:
        for blocked in self._blocked:
            if "*" in blocked.allowed:
                continue
            m = blocked.instantiation.search(line)
            if m:
                yield _row("blocklist_instantiation", Severity.HIGH, file_path, ln, line,
                           f"Instantiation: new {m.group(1)}", token=m.group(1))
            m = blocked.constructor.search(line)
            if m:
                yield _row("blocklist_constructor", Severity.HIGH, file_path, ln, line,
                           f"Constructor: {m.group(1)}::__construct", token=m.group(1))
            m = blocked.reference.search(line)
            if m:
                yield _row("blocklist_class_reference", Severity.MEDIUM, file_path, ln, line,
                           f"Class reference: {m.group(1)}::class", token=m.group(1))
            for m in blocked.method.finditer(line):
                method = m.group(2)
                if method.lower() in ("class", "__construct") or method.lower() in blocked.allowed:
                    continue
                yield _row("blocklist_method", Severity.HIGH, file_path, ln, line,
                           f"Method: {m.group(1)}::{method}", token=m.group(1), method=method)

    def _namespaces_in(self, line: str, ln: int, file_path: str) -> Iterator[Violation]:
        if not self._namespaces:
            return
        use = _USE_LINE.match(line)
        if use:
            for imported in _imported_names(use.group(1)):
                ns = self._policy.forbidden_namespace_for(imported)
                if ns:
                    yield _row("forbidden_namespace_import", Severity.CRITICAL, file_path, ln, line,
                               "Import of forbidden namespace or child", namespace=ns)
            return

        for ns, reference, string in self._namespaces:
            if string.search(line):
                yield _row("forbidden_namespace_string", Severity.HIGH, file_path, ln, line,
                           "Forbidden namespace/class referenced as a string", namespace=ns)
            elif reference.search(line):
                yield _row("forbidden_namespace_reference", Severity.CRITICAL, file_path, ln, line,
                           "Reference to forbidden namespace", namespace=ns)

    def _functions(self, line: str, ln: int, file_path: str) -> Iterator[Violation]:
        if self._forbidden_call_re is not None:
            m = self._forbidden_call_re.search(line)
            if m:
                yield _row("forbidden_function", Severity.CRITICAL, file_path, ln, line,
                           f"Call to forbidden function {m.group(1)}()", function=m.group(1).lower())
            m = self._forbidden_assign_re.search(line)
            if m:
                yield _row("forbidden_function_assignment", Severity.HIGH, file_path, ln, line,
                           f"Result of forbidden function {m.group(1)}() assigned",
                           function=m.group(1).lower())
        if self._unsupported_call_re is not None:
            m = self._unsupported_call_re.search(line)
            if m:
                yield _row("unsupported_function", Severity.MEDIUM, file_path, ln, line,
                           f"Call to unsupported function {m.group(1)}()",
                           function=m.group(1).lower())


def _call_patterns(names: Iterable[str]) -> tuple[re.Pattern[str] | None, re.Pattern[str] | None]:
    part = word_part(names)
    if part is None:
        return None, None
    return (
        compile_ci(_NOT_MEMBER + part + r"\s*\("),
        compile_ci(_ASSIGN_TARGET + part + r"\s*\("),
    )


def _compile_blocked(cls: str, allowed: frozenset[str]) -> _BlockedClass:
    short = cls.rsplit("\\", 1)[-1]
    names = ns_pattern(cls) if short == cls else f"\\\\?{ns_pattern(cls)}|{re.escape(short)}"
    q = rf"(?<![A-Za-z0-9_\\])({names})(?![A-Za-z0-9_])"
    return _BlockedClass(
        key=cls,
        allowed=allowed,
        instantiation=compile_ci(rf"\bnew\s+{q}\s*\("),
        constructor=compile_ci(rf"{q}\s*::\s*__construct\s*\("),
        reference=compile_ci(rf"{q}\s*::\s*class\b"),
        method=compile_ci(rf"{q}::([A-Za-z_][A-Za-z0-9_]*)"),
    )


def _imported_names(clause: str) -> list[str]:
    """Expand a use clause, including group and function/const imports."""
    clause = re.sub(r"^(?:function|const)\s+", "", clause.strip(), flags=re.IGNORECASE)
    group = re.match(r"^([^{]*)\{([^}]*)\}", clause)
    if group:
        prefix = group.group(1).strip().rstrip("\\")
        items = [f"{prefix}\\{item}" for item in _split_items(group.group(2))]
    else:
        items = _split_items(clause)
    return [re.split(r"\s+as\s+", item, flags=re.IGNORECASE)[0].strip() for item in items]


def _split_items(text: str) -> list[str]:
    out = []
    for item in text.split(","):
        item = re.sub(r"^(?:function|const)\s+", "", item.strip(), flags=re.IGNORECASE)
        if item:
            out.append(item)
    return out


def _row(
    vtype: str,
    severity: Severity,
    file_path: str,
    ln: int,
    line: str,
    issue: str,
    **data,
) -> Violation:
    return Violation(
        type=vtype,
        severity=severity,
        file=file_path,
        line=ln,
        snippet=line.strip(),
        issue=issue,
        data=data,
    )
