"""Tests for the fail-policy evaluator."""

from fortiscan.config import FailPolicy
from fortiscan.policy.evaluator import FailPolicyEvaluator
from fortiscan.scanner.models import Severity, Violation


def _v(vtype: str, file: str = "/plugin/src/a.php") -> Violation:
    return Violation(type=vtype, severity=Severity.HIGH, file=file, line=1)


def test_empty_policy_passes():
    verdict = FailPolicyEvaluator(FailPolicy()).evaluate([_v("unsupported_function")])
    assert not verdict.should_fail
    assert verdict.reason == ""


def test_blocklisted_type_alone_fails():
    policy = FailPolicy(types_blocklist=frozenset({"always_forbidden_function"}))
    verdict = FailPolicyEvaluator(policy).evaluate([_v("always_forbidden_function")])
    assert verdict.should_fail
    assert verdict.violation_type == "always_forbidden_function"


def test_total_limit_is_exclusive():
    policy = FailPolicy(total_error_limit=2)
    evaluator = FailPolicyEvaluator(policy)
    assert not evaluator.evaluate([_v("a"), _v("b")]).should_fail
    assert evaluator.evaluate([_v("a"), _v("b"), _v("c")]).should_fail


def test_zero_total_limit_fails_on_any_violation():
    verdict = FailPolicyEvaluator(FailPolicy(total_error_limit=0)).evaluate([_v("a")])
    assert verdict.should_fail


def test_per_type_limit():
    policy = FailPolicy(per_type_limits={"unsupported_function": 1})
    evaluator = FailPolicyEvaluator(policy)
    assert not evaluator.evaluate([_v("unsupported_function"), _v("other")]).should_fail
    verdict = evaluator.evaluate([_v("unsupported_function"), _v("unsupported_function")])
    assert verdict.should_fail
    assert verdict.violation_type == "unsupported_function"


def test_file_gate_on_absolute_path():
    policy = FailPolicy(file_gates=("*/vendor/*",))
    verdict = FailPolicyEvaluator(policy, root="/plugin").evaluate(
        [_v("config_risky_function", file="/plugin/vendor/lib/x.php")]
    )
    assert verdict.should_fail
    assert "vendor" in verdict.reason


def test_file_gate_on_relative_path(tmp_path):
    root = tmp_path / "plugin"
    root.mkdir()
    policy = FailPolicy(file_gates=("src/admin/*",))
    evaluator = FailPolicyEvaluator(policy, root=root)
    inside = str(root.resolve() / "src" / "admin" / "panel.php")
    outside = str(root.resolve() / "src" / "public.php")
    assert evaluator.evaluate([_v("x", file=inside)]).should_fail
    assert not evaluator.evaluate([_v("x", file=outside)]).should_fail


def test_blocklist_checked_before_limits():
    policy = FailPolicy(types_blocklist=frozenset({"b"}), total_error_limit=0)
    verdict = FailPolicyEvaluator(policy).evaluate([_v("a"), _v("b")])
    assert verdict.violation_type == "b"
