"""Tests for the violation catalog and formatter."""

from __future__ import annotations

from fortiscan.catalog import (
    CATALOG,
    DEFAULT_SEVERITY,
    format_many,
    format_violation,
    list_known_violations,
    lookup,
)
from fortiscan.scanner.models import Severity, Violation


def test_lookup_known():
    entry = lookup("forbidden_function")
    assert entry.name == "Forbidden function"
    assert entry.severity == Severity.CRITICAL


def test_lookup_unknown():
    entry = lookup("route.duplicate_thing")
    assert entry.name == "Route Duplicate Thing"
    assert entry.description == 'An issue of type "route.duplicate_thing" was reported.'
    assert entry.severity == DEFAULT_SEVERITY


def test_description_uses_violation_data():
    formatted = format_violation(
        Violation(
            type="forbidden_function",
            severity=Severity.CRITICAL,
            file="a.php",
            line=3,
            snippet="exec('ls');",
            issue="Call to forbidden function exec()",
            data={"function": "exec"},
        )
    )
    assert formatted.description == "Call to forbidden function exec()."
    assert formatted.severity == "critical"
    assert formatted.line == 3
    assert formatted.to_dict()["name"] == "Forbidden function"


def test_missing_placeholder_falls_back_to_issue():
    formatted = format_violation(
        Violation(type="forbidden_function", severity=Severity.HIGH, file="a.php", line=1, issue="raw")
    )
    assert formatted.description == "raw"
    assert formatted.severity == "high"


def test_formats_plain_records():
    [formatted] = format_many([{"type": "something_new", "file": "x.php", "line": None}])
    assert formatted.severity == DEFAULT_SEVERITY.value
    assert formatted.line == 0
    assert formatted.name == "Something New"


def test_catalog_covers_headline_rows():
    for slug in ("composer.forbidden_package_dependency", "config.schema", "manifest.invalid", "route.invalid"):
        assert slug in CATALOG


def test_list_known_violations_sorted():
    slugs = [slug for slug, _ in list_known_violations()]
    assert slugs == sorted(CATALOG)
