"""Tests for policy YAML loading and inheritance."""

from pathlib import Path

import pytest

from fortiscan.policy.loader import (
    default_policy,
    load_policy,
    load_policy_by_name,
    load_policy_from_string,
    resolve_policy,
)


def test_default_preset_lists():
    policy = default_policy()
    assert policy.name == "default"
    assert policy.is_forbidden_function("eval")
    assert policy.is_forbidden_function("file_put_contents")
    assert policy.is_forbidden_function("curl_exec")
    assert policy.is_unsupported_function("base64_decode")
    assert policy.is_obfuscator("str_rot13")
    assert policy.is_callback_function("array_map")
    assert policy.is_forbidden_namespace("Illuminate\\Support\\Facades\\DB")
    assert policy.is_forbidden_magic_method("__callStatic")
    assert policy.forbidden_wrapper_for("php://filter") == "php://"
    assert not policy.forbidden_packages


def test_namespaces_are_trimmed():
    policy = default_policy()
    assert "Illuminate\\Routing" in policy.forbidden_namespaces
    assert all(not ns.endswith("\\") for ns in policy.forbidden_namespaces)


def test_load_policy_with_inheritance(test_policy_path: Path):
    policy = load_policy(test_policy_path)
    assert policy.name == "test"
    # inherited from preset:default
    assert policy.is_forbidden_function("exec")
    # own additions
    assert policy.is_forbidden_package("Evil/Backdoor")
    assert "mail" in policy.dangerous_functions
    assert policy.is_unsupported_function("mail")
    assert "phpinfo" in policy.risky_functions
    assert policy.allowed_methods_for("Acme\\Payments\\Gateway") == frozenset({"charge", "refund"})


def test_overrides_lift_entries(test_policy_path: Path):
    policy = load_policy(test_policy_path)
    assert not policy.is_forbidden_function("file_exists")
    assert not policy.is_forbidden_namespace("Illuminate\\Support\\Facades\\Schema")
    assert "Illuminate\\Support\\Facades\\Schema" in policy.allowed_namespaces


def test_strict_preset():
    policy = load_policy_by_name("strict")
    assert policy.name == "strict"
    assert policy.is_forbidden_package("symfony/process")
    assert policy.limits.short_open_tags
    assert policy.limits.strict_ignore_blocks_payload
    assert policy.is_forbidden_function("eval")


def test_load_policy_from_string():
    policy = load_policy_from_string(
        """
name: inline
functions:
  forbidden: [Eval, SYSTEM]
namespaces:
  - Vendor\\Danger\\
scan:
  php_extensions: [inc]
"""
    )
    assert policy.name == "inline"
    assert policy.forbidden_functions == frozenset({"eval", "system"})
    assert policy.forbidden_namespaces == ("Vendor\\Danger",)
    # php is always eligible
    assert policy.limits.php_extensions == ("php", "inc")


def test_child_lists_extend_parent():
    policy = load_policy_from_string(
        """
name: child
inherit:
  - preset:default
functions:
  forbidden: [my_forbidden]
"""
    )
    assert policy.is_forbidden_function("my_forbidden")
    assert policy.is_forbidden_function("eval")


def test_circular_inheritance(tmp_path: Path):
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text(f"name: a\ninherit:\n  - {b}\n")
    b.write_text(f"name: b\ninherit:\n  - {a}\n")
    with pytest.raises(ValueError, match="Circular"):
        load_policy(a)


def test_shared_parent_is_not_circular(tmp_path: Path):
    left = tmp_path / "left.yaml"
    right = tmp_path / "right.yaml"
    left.write_text("name: left\ninherit:\n  - preset:default\nfunctions:\n  forbidden: [left_fn]\n")
    right.write_text("name: right\ninherit:\n  - preset:default\nfunctions:\n  forbidden: [right_fn]\n")
    policy = load_policy_from_string(f"name: both\ninherit:\n  - {left}\n  - {right}\n")
    assert policy.is_forbidden_function("left_fn")
    assert policy.is_forbidden_function("right_fn")
    assert policy.is_forbidden_function("eval")


def test_strict_and_default_together():
    policy = load_policy_from_string("name: x\ninherit:\n  - preset:default\n  - preset:strict\n")
    assert policy.name == "x"
    assert policy.limits.strict_ignore_blocks_payload is True


def test_unknown_preset():
    with pytest.raises(ValueError, match="Unknown policy preset"):
        load_policy_from_string("name: x\ninherit:\n  - preset:nope\n")


def test_non_mapping_yaml():
    with pytest.raises(ValueError, match="mapping"):
        load_policy_from_string("- just\n- a list\n")


def test_load_by_name_prefers_search_dirs(tmp_path: Path):
    (tmp_path / "strict.yaml").write_text("name: local-strict\n")
    policy = load_policy_by_name("strict", search_dirs=[tmp_path])
    assert policy.name == "local-strict"


def test_resolve_policy_forms(test_policy_path: Path):
    assert resolve_policy(None).name == "default"
    assert resolve_policy(str(test_policy_path)).name == "test"
    assert resolve_policy("preset:strict").name == "strict"
    assert resolve_policy("strict").name == "strict"
