"""Shared regex builders and constant sets used by the scanners."""

from __future__ import annotations

import re
from typing import Iterable

SUPERGLOBALS = frozenset(
    {"_GET", "_POST", "_REQUEST", "_COOKIE", "_FILES", "_SESSION", "_SERVER", "_ENV"}
)

# Arrays whose element assignment leaks state beyond the current scope
LEAKY_GLOBALS = frozenset({"GLOBALS", "_SESSION", "_ENV", "_SERVER"})

# LRE, RLE, PDF, LRO, RLO and the LRI/RLI/FSI/PDI isolates
BIDI_CHARS = frozenset(chr(c) for c in (*range(0x202A, 0x202F), *range(0x2066, 0x206A)))

# Code/command executing sinks that must never see request input
CODE_EXEC_SINKS = frozenset(
    {
        "eval",
        "assert",
        "create_function",
        "exec",
        "system",
        "shell_exec",
        "passthru",
        "popen",
        "proc_open",
    }
)

WRAPPER_IO_FUNCTIONS = frozenset(
    {"fopen", "file_get_contents", "file_put_contents", "file", "readfile"}
)

SUPERGLOBAL_MARKER = "{superglobal}"
DYNAMIC_MARKER = "{dynamic}"

_WORD_LEFT = r"(?<![A-Za-z0-9_])"
_WORD_RIGHT = r"(?![A-Za-z0-9_])"


def alternation(names: Iterable[str]) -> str:
    """Escaped alternation, longest names first so prefixes never shadow."""
    unique = sorted({n for n in names if n}, key=lambda n: (-len(n), n))
    return "|".join(re.escape(n) for n in unique)


def word_part(names: Iterable[str]) -> str | None:
    """Word-boundary-anchored group over ``names``; None when empty."""
    alts = alternation(names)
    if not alts:
        return None
    return f"{_WORD_LEFT}({alts}){_WORD_RIGHT}"


def compile_ci(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def ns_pattern(namespace: str) -> str:
    """Namespace regex accepting single or doubled backslash separators."""
    parts = [re.escape(p) for p in namespace.strip("\\").split("\\") if p]
    return r"\\{1,2}".join(parts)


def has_bidi(text: str) -> bool:
    return any(ch in BIDI_CHARS for ch in text)
