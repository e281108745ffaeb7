"""Tests for file discovery and pre-scan flags."""

from __future__ import annotations

from pathlib import Path

from fortiscan.policy.loader import load_policy_from_string
from fortiscan.scanner.discovery import FileDiscoveryScanner
from fortiscan.scanner.models import FileFlag, ScanEvent, Severity


def _names(candidates) -> list[str]:
    return [Path(c.path).name for c in candidates]


def _policy(scan_yaml: str):
    return load_policy_from_string(
        "name: discovery\ninherit:\n  - preset:default\nscan:\n" + scan_yaml
    )


class TestEligibility:
    def test_php_files_are_candidates(self, policy, make_plugin):
        root = make_plugin({"index.php": "<?php echo 1;", "view.phtml": "<p>hi</p>"})
        assert _names(FileDiscoveryScanner(policy).discover(root)) == ["index.php", "view.phtml"]

    def test_plain_text_is_skipped(self, policy, make_plugin):
        root = make_plugin({"README.md": "# docs", "data.json": "{}"})
        assert FileDiscoveryScanner(policy).discover(root) == []

    def test_payload_in_non_php_is_flagged(self, policy, make_plugin):
        root = make_plugin({"avatar.png": b"\x89PNG....<?php system($_GET['c']); ?>"})
        [candidate] = FileDiscoveryScanner(policy).discover(root)
        assert candidate.has_payload
        assert FileFlag.PAYLOAD_IN_NON_PHP in candidate.flags

    def test_short_tag_only_counts_when_enabled(self, make_plugin):
        root = make_plugin({"tpl.txt": "<? echo 1; ?>", "feed.txt": "<?xml version='1.0'?>"})
        assert FileDiscoveryScanner(_policy("  short_open_tags: false\n")).discover(root) == []
        found = FileDiscoveryScanner(_policy("  short_open_tags: true\n")).discover(root)
        assert _names(found) == ["tpl.txt"]

    def test_include_non_php(self, make_plugin):
        root = make_plugin({"notes.txt": "plain"})
        found = FileDiscoveryScanner(_policy("  include_non_php: true\n")).discover(root)
        assert _names(found) == ["notes.txt"]

    def test_symlinks_are_not_followed(self, policy, make_plugin, tmp_path):
        outside = tmp_path / "outside.php"
        outside.write_text("<?php eval('x');")
        root = make_plugin({"main.php": "<?php"})
        (root / "link.php").symlink_to(outside)
        assert _names(FileDiscoveryScanner(policy).discover(root)) == ["main.php"]


class TestFlags:
    def test_double_extension_is_flagged_and_kept(self, policy, make_plugin):
        root = make_plugin({"image.jpg.php": "no payload here"})
        scanner = FileDiscoveryScanner(policy)
        [candidate] = scanner.discover(root)
        assert FileFlag.DOUBLE_EXTENSION in candidate.flags

        [row] = scanner.flag_violations(candidate)
        assert row.type == "suspicious_double_extension"
        assert row.severity == Severity.MEDIUM
        assert row.data["token"] == "image.jpg.php"
        assert row.line == 0

    def test_php_hidden_before_other_extension(self, policy, make_plugin):
        root = make_plugin({"shell.php.txt": "nothing"})
        [candidate] = FileDiscoveryScanner(policy).discover(root)
        assert FileFlag.DOUBLE_EXTENSION in candidate.flags

    def test_bidi_filename(self, policy, make_plugin):
        root = make_plugin({"invoice\u202egnp.php": "<?php"})
        [candidate] = FileDiscoveryScanner(policy).discover(root)
        assert FileFlag.BIDI_FILENAME in candidate.flags

    def test_pre_flags_can_be_disabled(self, make_plugin):
        root = make_plugin({"image.jpg.php": "x"})
        scanner = FileDiscoveryScanner(_policy("  emit_pre_flags: false\n"))
        [candidate] = scanner.discover(root)
        assert scanner.flag_violations(candidate) == []


class TestIgnoreRules:
    def test_ignored_file_emits_event(self, make_plugin):
        root = make_plugin({"docs/page.phtml": "static", "main.php": "<?php"})
        events: list[ScanEvent] = []
        found = FileDiscoveryScanner(_policy("  ignore: ['docs/*']\n")).discover(root, events.append)
        assert _names(found) == ["main.php"]
        ignored = [e for e in events if e.title == "File ignored"]
        assert len(ignored) == 1
        assert ignored[0].error["code"] == "ignore_pattern"
        assert ignored[0].stats["filePath"].endswith("page.phtml")
        assert events[-1].title == "Scanning files"
        assert events[-1].meta == {"count": 1}

    def test_negation_reincludes(self, make_plugin):
        root = make_plugin({"docs/a.phtml": "a", "docs/keep.phtml": "b"})
        policy = _policy("  ignore: ['docs/*', '!docs/keep.phtml']\n")
        assert _names(FileDiscoveryScanner(policy).discover(root)) == ["keep.phtml"]

    def test_payload_bypasses_ignore_unless_strict(self, make_plugin):
        root = make_plugin({"cache/x.php": "<?php system('id');"})
        lenient = _policy("  ignore: ['cache/*']\n")
        strict = _policy("  ignore: ['cache/*']\n  strict_ignore_blocks_payload: true\n")
        assert _names(FileDiscoveryScanner(lenient).discover(root)) == ["x.php"]
        assert FileDiscoveryScanner(strict).discover(root) == []


class TestWebContext:
    def test_size_cap_applies_only_in_web_context(self, make_plugin):
        root = make_plugin({"big.php": "<?php\n" + "// pad\n" * 100})
        policy = _policy("  max_web_file_bytes: 64\n")
        assert _names(FileDiscoveryScanner(policy).discover(root)) == ["big.php"]

        events: list[ScanEvent] = []
        assert FileDiscoveryScanner(policy, web_context=True).discover(root, events.append) == []
        [ignored] = [e for e in events if e.title == "File ignored"]
        assert ignored.error["code"] == "max_web_file_bytes"
        assert ignored.stats["size"] > 64

    def test_per_extension_size_does_not_lift_global_cap(self, make_plugin):
        root = make_plugin({"big.php": "<?php\n" + "// pad\n" * 100})
        policy = _policy("  max_web_file_bytes: 64\n  scan_size: {php: 100000}\n")
        events: list[ScanEvent] = []
        assert FileDiscoveryScanner(policy, web_context=True).discover(root, events.append) == []
        [ignored] = [e for e in events if e.title == "File ignored"]
        assert ignored.error["code"] == "max_web_file_bytes"

    def test_per_extension_size(self, make_plugin):
        root = make_plugin({"big.php": "<?php\n" + "// pad\n" * 100, "small.php": "<?php echo 1;"})
        policy = _policy("  scan_size: {php: 64}\n")
        events: list[ScanEvent] = []
        found = FileDiscoveryScanner(policy, web_context=True).discover(root, events.append)
        assert _names(found) == ["small.php"]
        [ignored] = [e for e in events if e.title == "File ignored"]
        assert ignored.error["code"] == "scan_size"


def test_scan_collects_callback_results(policy, make_plugin):
    root = make_plugin({"a.php": "<?php", "b.php": "<?php"})
    results = FileDiscoveryScanner(policy).scan(
        root, lambda c: Path(c.path).name if c.path.endswith("a.php") else None
    )
    assert results == ["a.php"]
