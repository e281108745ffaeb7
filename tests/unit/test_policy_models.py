"""Tests for PolicyView lookups."""

import dataclasses

import pytest

from fortiscan.policy.models import PolicyView, ScanLimits


def _policy(**kwargs) -> PolicyView:
    return PolicyView(name="unit", **kwargs)


def test_function_lookup_is_case_insensitive():
    policy = _policy(forbidden_functions=frozenset({"eval", "exec"}))
    assert policy.is_forbidden_function("EVAL")
    assert policy.is_forbidden_function("\\exec")
    assert not policy.is_forbidden_function("evaluate")


def test_unsupported_and_obfuscator_lookups():
    policy = _policy(
        unsupported_functions=frozenset({"base64_decode"}),
        obfuscators=frozenset({"base64_decode"}),
    )
    assert policy.is_unsupported_function("Base64_Decode")
    assert policy.is_obfuscator("base64_decode")
    assert not policy.is_forbidden_function("base64_decode")


def test_namespace_match_respects_segment_boundary():
    policy = _policy(forbidden_namespaces=("Illuminate\\Support\\Facades\\File",))
    assert policy.forbidden_namespace_for("Illuminate\\Support\\Facades\\File") == (
        "Illuminate\\Support\\Facades\\File"
    )
    assert policy.is_forbidden_namespace("\\illuminate\\support\\facades\\file\\Inner")
    assert not policy.is_forbidden_namespace("Illuminate\\Support\\Facades\\FileSystem")
    assert not policy.is_forbidden_namespace("")


def test_reflection_prefix_on_short_name():
    policy = _policy(reflection_prefix="reflection")
    assert policy.is_forbidden_reflection("ReflectionClass")
    assert policy.is_forbidden_reflection("\\ReflectionMethod")
    assert policy.is_forbidden_reflection("Vendor\\Lib\\ReflectionHelper")
    assert not policy.is_forbidden_reflection("Vendor\\Reflection\\Helper")


def test_reflection_allowed_namespace():
    policy = _policy(reflection_prefix="reflection", allowed_namespaces=("App\\Safe",))
    assert not policy.is_forbidden_reflection("App\\Safe\\ReflectionHelper")
    assert policy.is_forbidden_reflection("App\\Other\\ReflectionHelper")


def test_wrapper_prefix():
    policy = _policy(wrappers=("php://", "phar://"))
    assert policy.forbidden_wrapper_for("PHP://input") == "php://"
    assert policy.forbidden_wrapper_for("phar://archive.phar/x") == "phar://"
    assert policy.forbidden_wrapper_for("https://example.com") is None


def test_allowed_methods_for_unlisted_class():
    policy = _policy(allowed_class_methods={"acme\\gateway": frozenset({"charge"})})
    assert policy.allowed_methods_for("\\Acme\\Gateway") == frozenset({"charge"})
    assert policy.allowed_methods_for("Acme\\Other") is None


def test_scan_limits_defaults():
    limits = ScanLimits()
    assert "php" in limits.php_extensions
    assert limits.max_web_file_bytes == 262_144
    assert limits.emit_pre_flags
    assert not limits.include_non_php


def test_policy_is_frozen():
    policy = _policy()
    with pytest.raises(dataclasses.FrozenInstanceError):
        policy.name = "changed"  # type: ignore[misc]
