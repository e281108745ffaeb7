"""Tests for the token stream analyzer."""

from __future__ import annotations

from fortiscan.scanner.models import Severity
from fortiscan.scanner.tokens import (
    BACKTICK_USAGE,
    DIRECT_USAGE,
    OBFUSCATED_USAGE,
    TokenStreamAnalyzer,
)


def _issues(violations) -> list[str]:
    return [v.issue for v in violations]


class TestDirectCalls:
    def test_direct_call(self, policy):
        [v] = TokenStreamAnalyzer(policy).analyze_source("<?php\n\nsystem('id');\n", "a.php")
        assert v.type == "invalid_token_usage"
        assert v.issue == DIRECT_USAGE
        assert v.severity == Severity.HIGH
        assert v.line == 3
        assert v.data["token"] == "system"
        assert v.snippet == "system('id');"

    def test_uppercase_call(self, policy):
        found = TokenStreamAnalyzer(policy).analyze_source("<?php EVAL('1;');")
        assert [v.data["token"] for v in found] == ["eval"]

    def test_methods_and_declarations_are_ignored(self, policy):
        source = (
            "<?php\n"
            "$db->exec('x');\n"
            "Shell::exec('y');\n"
            "function exec($cmd) { return 1; }\n"
        )
        assert TokenStreamAnalyzer(policy).analyze_source(source) == []

    def test_names_in_strings_and_comments_are_ignored(self, policy):
        source = "<?php\n// exec('x');\necho 'system is fine';\n"
        assert TokenStreamAnalyzer(policy).analyze_source(source) == []


class TestObfuscatedCalls:
    def test_concatenated_name(self, policy):
        [v] = TokenStreamAnalyzer(policy).analyze_source('<?php ("ev"."al")($code);')
        assert v.issue == OBFUSCATED_USAGE
        assert v.severity == Severity.CRITICAL
        assert v.data["token"] == "eval"

    def test_three_part_concat(self, policy):
        found = TokenStreamAnalyzer(policy).analyze_source("<?php ('sy' . 'st' . 'em')('id');")
        assert _issues(found) == [OBFUSCATED_USAGE]

    def test_concat_not_called(self, policy):
        assert TokenStreamAnalyzer(policy).analyze_source("<?php $name = 'ev' . 'al';") == []

    def test_harmless_concat_call(self, policy):
        assert TokenStreamAnalyzer(policy).analyze_source("<?php ('str' . 'len')('abc');") == []


class TestBackticks:
    def test_backtick_line(self, policy):
        [v] = TokenStreamAnalyzer(policy).analyze_source("<?php\n$out = `ls -la`;\n")
        assert v.issue == BACKTICK_USAGE
        assert v.line == 2
        assert v.data["token"] == "`"


class TestTokenList:
    def test_custom_list_replaces_policy(self, policy):
        analyzer = TokenStreamAnalyzer(policy, [" PHPINFO ", ""])
        assert analyzer.tokens == frozenset({"phpinfo"})
        source = "<?php phpinfo(); system('id');"
        assert [v.data["token"] for v in analyzer.analyze_source(source)] == ["phpinfo"]

    def test_empty_list_falls_back_to_policy(self, policy):
        assert TokenStreamAnalyzer(policy, []).tokens == policy.forbidden_functions

    def test_analyze_file(self, policy, tmp_path):
        path = tmp_path / "x.php"
        path.write_text("<?php passthru('ls');")
        [v] = TokenStreamAnalyzer(policy).analyze_file(path)
        assert v.file == str(path)
