"""Forbidden-dependency scan over a plugin's composer.json."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.models import Severity, Violation

logger = logging.getLogger(__name__)

_SECTIONS = ("require", "require-dev")


class ComposerScan:
    def __init__(self, policy: PolicyView) -> None:
        self._policy = policy

    def scan(self, composer_path: str | Path) -> list[Violation]:
        """Return one violation per forbidden package required by the manifest.

        A missing or unparsable manifest yields a single violation instead.
        """
        path = Path(composer_path)
        file = str(path)
        if not path.is_file():
            return [
                Violation(
                    type="composer_file_missing",
                    severity=Severity.MEDIUM,
                    file=file,
                    line=0,
                    issue="composer.json not found",
                )
            ]

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug("Unreadable composer manifest %s: %s", file, e)
            data = None
        if not data or not isinstance(data, dict):
            return [
                Violation(
                    type="composer_file_invalid",
                    severity=Severity.HIGH,
                    file=file,
                    line=0,
                    issue="Invalid JSON in composer.json",
                )
            ]

        violations = []
        for section in _SECTIONS:
            deps = data.get(section) or {}
            if not isinstance(deps, dict):
                continue
            for package, version in deps.items():
                if self._policy.is_forbidden_package(package):
                    violations.append(
                        Violation(
                            type="forbidden_package_dependency",
                            severity=Severity.CRITICAL,
                            file=file,
                            line=0,
                            issue=f"Composer requires forbidden package: {package}",
                            data={"package": package, "version": version, "section": section},
                        )
                    )
        return violations
