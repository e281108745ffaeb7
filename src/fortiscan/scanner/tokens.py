"""Lexical pass: direct and string-concatenation-obfuscated calls, plus backticks."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Iterator

from tree_sitter import Node

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.models import Severity, Violation
from fortiscan.scanner.php.parser import ParsedUnit, line_of, literal_string, parse_php, text

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ATOMIC = frozenset({"string", "encapsed_string", "heredoc", "nowdoc"})
# Tokens after which an identifier is a member, variable or declaration
_NOT_A_CALL_AFTER = frozenset({"->", "?->", "::", "$", "function", "fn", "new", "const"})

DIRECT_USAGE = "Direct usage of invalid token"
OBFUSCATED_USAGE = "Obfuscated usage of invalid token"
BACKTICK_USAGE = "Backtick shell execution detected"


def leaf_tokens(root: Node) -> Iterator[Node]:
    """Leaves in source order; string literals stay whole and comments are dropped.

    ERROR regions still contribute their leaves, so malformed sources are
    analyzed as far as the parser got.
    """
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "comment":
            continue
        if node.type in _ATOMIC or node.child_count == 0:
            if node.end_byte > node.start_byte:
                yield node
            continue
        stack.extend(reversed(node.children))


class TokenStreamAnalyzer:
    """Flags calls to invalid tokens, however they are spelled."""

    def __init__(self, policy: PolicyView, token_list: Iterable[str] | None = None) -> None:
        tokens = {t.strip().lower() for t in token_list or () if t and t.strip()}
        self._tokens = frozenset(tokens) if tokens else policy.forbidden_functions

    @property
    def tokens(self) -> frozenset[str]:
        return self._tokens

    def analyze_file(self, path: str | Path) -> list[Violation]:
        file_path = Path(path)
        return self.analyze_unit(parse_php(file_path.read_bytes(), str(file_path)))

    def analyze_source(self, source: str | bytes, path: str = "[source]") -> list[Violation]:
        return self.analyze_unit(parse_php(source, path))

    def analyze_unit(self, unit: ParsedUnit) -> list[Violation]:
        violations = list(self._calls(unit))
        violations.extend(self._backticks(unit))
        return violations

    def _calls(self, unit: ParsedUnit) -> Iterator[Violation]:
        tokens = list(leaf_tokens(unit.root))
        texts = [text(t) for t in tokens]
        i = 0
        while i < len(tokens):
            tok = tokens[i]
            if tok.type in _ATOMIC:
                value, end = self._string_run(tokens, texts, i)
                if value is not None and _called_at(texts, end) and value.lower() in self._tokens:
                    yield self._row(unit, tok, value.lower(), OBFUSCATED_USAGE, Severity.CRITICAL)
                i = max(end, i + 1)
                continue

            word = texts[i]
            if (
                _IDENTIFIER.match(word)
                and word.lower() in self._tokens
                and i + 1 < len(texts)
                and texts[i + 1] == "("
                and (i == 0 or texts[i - 1].lower() not in _NOT_A_CALL_AFTER)
            ):
                yield self._row(unit, tok, word.lower(), DIRECT_USAGE, Severity.HIGH)
            i += 1

    @staticmethod
    def _string_run(tokens: list[Node], texts: list[str], start: int) -> tuple[str | None, int]:
        """Join ``'a' . 'b' . ...`` starting at ``start``; returns value and end index."""
        parts: list[str] = []
        i = start
        while i < len(tokens):
            value = literal_string(tokens[i]) if tokens[i].type in _ATOMIC else None
            if value is None:
                return None, i + 1
            parts.append(value)
            i += 1
            if i < len(texts) and texts[i] == "." and i + 1 < len(tokens) and tokens[i + 1].type in _ATOMIC:
                i += 1
                continue
            break
        return "".join(parts), i

    def _backticks(self, unit: ParsedUnit) -> Iterator[Violation]:
        for number, raw in enumerate(unit.lines, start=1):
            if b"`" in raw:
                yield Violation(
                    type="invalid_token_usage",
                    severity=Severity.HIGH,
                    file=unit.path,
                    line=number,
                    snippet=raw.decode("utf-8", errors="replace").strip(),
                    issue=BACKTICK_USAGE,
                    data={"token": "`"},
                )

    @staticmethod
    def _row(unit: ParsedUnit, node: Node, token: str, issue: str, severity: Severity) -> Violation:
        line = line_of(node)
        return Violation(
            type="invalid_token_usage",
            severity=severity,
            file=unit.path,
            line=line,
            snippet=unit.line_text(line),
            issue=issue,
            data={"token": token},
        )


def _called_at(texts: list[str], index: int) -> bool:
    """Whether ``(`` follows at ``index``, allowing closing parentheses first."""
    while index < len(texts) and texts[index] == ")":
        index += 1
    return index < len(texts) and texts[index] == "("
