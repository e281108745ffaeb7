"""File discovery: decides which files are analyzable and flags spoofing signals."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Any, Callable

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.models import (
    CandidateFile,
    FileFlag,
    ScanEvent,
    Severity,
    Violation,
)
from fortiscan.scanner.patterns import has_bidi

logger = logging.getLogger(__name__)

EventSink = Callable[[ScanEvent], None]

# Batch contexts sniff at most this much of a non-PHP file
_SNIFF_BYTES = 65_536
_MIN_WEB_SNIFF_BYTES = 4_096

_SHEBANGS = (b"#!/usr/bin/php", b"#!/usr/bin/env php")

_FLAG_SEVERITY = {
    FileFlag.BIDI_FILENAME: Severity.MEDIUM,
    FileFlag.DOUBLE_EXTENSION: Severity.MEDIUM,
    FileFlag.PAYLOAD_IN_NON_PHP: Severity.HIGH,
}

_FLAG_HINTS = {
    FileFlag.BIDI_FILENAME: "Filename contains bidi control characters (possible extension spoofing)",
    FileFlag.DOUBLE_EXTENSION: "Double-extension pattern detected (e.g., *.jpg.php or *.php.txt)",
    FileFlag.PAYLOAD_IN_NON_PHP: "PHP payload found in a non-PHP file",
}


class FileDiscoveryScanner:
    """Walks a plugin tree and yields CandidateFiles.

    Size ceilings apply only when ``web_context`` is set; batch runs scan
    every eligible file regardless of size.
    """

    def __init__(self, policy: PolicyView, web_context: bool = False) -> None:
        self._policy = policy
        self._limits = policy.limits
        self._web_context = web_context
        self._php_ext = frozenset(self._limits.php_extensions)
        if web_context:
            self._sniff_bytes = max(_MIN_WEB_SNIFF_BYTES, self._limits.max_web_file_bytes)
        else:
            self._sniff_bytes = _SNIFF_BYTES

    def discover(self, root: str | Path, emit: EventSink | None = None) -> list[CandidateFile]:
        """Return every analyzable file under ``root`` in a stable order."""
        root = Path(root).resolve()
        candidates: list[CandidateFile] = []
        for path in self._walk(root):
            candidate = self._inspect(root, path, emit)
            if candidate is not None:
                candidates.append(candidate)

        if emit is not None:
            emit(
                ScanEvent(
                    title="Scanning files",
                    description=f"Scanning {len(candidates)} file(s)",
                    meta={"count": len(candidates)},
                )
            )
        return candidates

    def scan(
        self,
        root: str | Path,
        callback: Callable[[CandidateFile], Any],
        emit: EventSink | None = None,
    ) -> list[Any]:
        """Invoke ``callback`` per candidate; return its non-empty results."""
        results = []
        for candidate in self.discover(root, emit):
            result = callback(candidate)
            if result:
                results.append(result)
        return results

    def flag_violations(self, candidate: CandidateFile) -> list[Violation]:
        """Pre-scan flags as violations, when the policy asks for them."""
        if not self._limits.emit_pre_flags:
            return []
        name = os.path.basename(candidate.path)
        return [
            Violation(
                type=flag.value,
                severity=_FLAG_SEVERITY[flag],
                file=candidate.path,
                line=0,
                issue=_FLAG_HINTS[flag],
                data={"token": name},
            )
            for flag in sorted(candidate.flags, key=lambda f: f.value)
        ]

    def _walk(self, root: Path):
        for current, dirs, files in os.walk(root, followlinks=False):
            # Prune symlinked directories in-place; sort for stable output
            dirs[:] = sorted(d for d in dirs if not os.path.islink(os.path.join(current, d)))
            for name in sorted(files):
                path = Path(current) / name
                if path.is_symlink():
                    logger.debug("Skipping symlink %s", path)
                    continue
                if path.is_file():
                    yield path

    def _inspect(
        self, root: Path, path: Path, emit: EventSink | None
    ) -> CandidateFile | None:
        name = path.name
        ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        is_php_ext = ext in self._php_ext

        try:
            size = path.stat().st_size
        except OSError as e:
            logger.debug("Skipping %s: %s", path, e)
            return None

        ignored = self._is_ignored(root, path)
        has_payload = False
        if not is_php_ext or ignored:
            has_payload = self._sniff_payload(path)

        if ignored and has_payload and not self._limits.strict_ignore_blocks_payload:
            logger.debug("Payload in %s bypasses ignore rules", path)
            ignored = False
        if ignored:
            self._ignored(emit, path, "ignore_pattern", "Matched an ignore pattern")
            return None

        double_ext = self._has_double_extension(name)
        if not (is_php_ext or double_ext or has_payload or self._limits.include_non_php):
            return None

        if self._web_context:
            # Both caps apply; the per-extension one never lifts the global one
            for reason, cap in (
                ("scan_size", self._limits.scan_size.get(ext)),
                ("max_web_file_bytes", self._limits.max_web_file_bytes),
            ):
                if cap and cap > 0 and size > cap:
                    self._ignored(
                        emit,
                        path,
                        reason,
                        f"File exceeds the {cap} byte limit",
                        size=size,
                    )
                    return None

        flags = set()
        if has_bidi(name):
            flags.add(FileFlag.BIDI_FILENAME)
        if double_ext:
            flags.add(FileFlag.DOUBLE_EXTENSION)
        if has_payload and not is_php_ext:
            flags.add(FileFlag.PAYLOAD_IN_NON_PHP)

        return CandidateFile(
            path=str(path),
            extension=ext,
            size=size,
            flags=frozenset(flags),
            has_payload=has_payload or is_php_ext,
        )

    def _has_double_extension(self, name: str) -> bool:
        parts = name.lower().split(".")
        if len(parts) < 3:
            return False
        return parts[-1] in self._php_ext or parts[-2] in self._php_ext

    def _sniff_payload(self, path: Path) -> bool:
        try:
            with open(path, "rb") as fh:
                head = fh.read(self._sniff_bytes)
        except OSError as e:
            logger.debug("Cannot sniff %s: %s", path, e)
            return False

        lowered = head.lower()
        if b"<?php" in lowered or b"<?=" in head:
            return True
        if any(head.startswith(s) for s in _SHEBANGS):
            return True
        if self._limits.short_open_tags and b"<?" in head:
            return not lowered.lstrip().startswith(b"<?xml")
        return False

    def _is_ignored(self, root: Path, path: Path) -> bool:
        """Last matching pattern wins; ``!pattern`` re-includes."""
        patterns = self._limits.ignore
        if not patterns:
            return False
        relative = path.relative_to(root).as_posix()
        absolute = path.as_posix()
        ignored = False
        for pattern in patterns:
            negate = pattern.startswith("!")
            glob = pattern[1:] if negate else pattern
            if fnmatch.fnmatch(relative, glob) or fnmatch.fnmatch(absolute, glob):
                ignored = not negate
        return ignored

    @staticmethod
    def _ignored(
        emit: EventSink | None, path: Path, code: str, message: str, size: int | None = None
    ) -> None:
        logger.debug("Ignoring %s: %s", path, message)
        if emit is None:
            return
        stats: dict[str, Any] = {"filePath": str(path)}
        if size is not None:
            stats["size"] = size
        emit(
            ScanEvent(
                title="File ignored",
                description=message,
                error={"code": code, "message": message, "extra": {"issue": code}},
                stats=stats,
            )
        )
