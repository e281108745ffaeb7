"""Tests for the call-graph index."""

from __future__ import annotations

from fortiscan.scanner.php.callgraph import CallGraphIndex, collect_func_call_chain
from fortiscan.scanner.php.parser import parse_php, walk


def _index(policy, *sources: str, max_depth: int = 7) -> CallGraphIndex:
    units = [parse_php(src, f"f{i}.php") for i, src in enumerate(sources)]
    return CallGraphIndex.from_units(policy, units, max_depth=max_depth)


def _chain(depth: int) -> str:
    """f0 returns f1(), ... f{depth} returns shell_exec()."""
    body = ["<?php"]
    for i in range(depth):
        body.append(f"function f{i}($x) {{ return f{i + 1}($x); }}")
    body.append(f"function f{depth}($x) {{ return shell_exec($x); }}")
    return "\n".join(body)


class TestIndex:
    def test_functions_and_methods_are_indexed(self, policy):
        index = _index(
            policy,
            "<?php namespace App;\nfunction helper() {}\nclass Tool { public function run() {} }",
        )
        assert "app\\helper" in index.functions
        assert "run" in index.get_method_defs("App\\Tool")
        assert index.has_method("\\App\\Tool", "RUN")

    def test_first_definition_wins(self, policy):
        index = _index(policy, "<?php function dup() { return 1; }", "<?php function dup() { return 2; }")
        assert index.functions["dup"].path == "f0.php"

    def test_inherited_and_trait_methods(self, policy):
        index = _index(
            policy,
            "<?php\n"
            "trait Greets { public function hello() {} }\n"
            "class Base { public function save() {} }\n"
            "class Child extends Base { use Greets; }\n",
        )
        assert index.parents["child"] == "base"
        assert index.find_method("Child", "save").class_name == "base"
        assert index.find_method("Child", "hello").class_name == "greets"
        assert index.find_method("Child", "missing") is None


class TestReturnChains:
    def test_direct_forbidden_call(self, policy):
        index = _index(policy, "<?php function run($c) { return shell_exec($c); }")
        assert index.has_forbidden_return_chain("run")

    def test_returned_function_name(self, policy):
        index = _index(policy, "<?php function pick() { return 'system'; }")
        assert index.has_forbidden_return_chain("pick")

    def test_returned_harmless_value(self, policy):
        index = _index(policy, "<?php function pick() { return 'strlen'; }")
        assert not index.has_forbidden_return_chain("pick")

    def test_chain_through_other_function(self, policy):
        index = _index(policy, "<?php function a() { return b(); }", "<?php function b() { return exec('id'); }")
        assert index.has_forbidden_return_chain("a")
        assert index.has_forbidden_return_chain("\\A")

    def test_chain_within_depth(self, policy):
        index = _index(policy, _chain(2), max_depth=2)
        assert index.has_forbidden_return_chain("f0")

    def test_chain_beyond_depth(self, policy):
        index = _index(policy, _chain(3), max_depth=2)
        assert not index.has_forbidden_return_chain("f0")
        assert index.has_forbidden_return_chain("f1")

    def test_recursion_terminates(self, policy):
        index = _index(
            policy,
            "<?php function ping() { return pong(); }\nfunction pong() { return ping(); }",
        )
        assert not index.has_forbidden_return_chain("ping")

    def test_self_recursion_terminates(self, policy):
        index = _index(policy, "<?php function loop() { return loop(); }")
        assert not index.has_forbidden_return_chain("loop")

    def test_unknown_function(self, policy):
        assert not _index(policy, "<?php").has_forbidden_return_chain("nope")

    def test_nested_closure_return_is_ignored(self, policy):
        index = _index(
            policy,
            "<?php function outer() { $f = function () { return exec('x'); }; return 1; }",
        )
        assert not index.has_forbidden_return_chain("outer")

    def test_forbidden_namespace_instance(self, policy):
        index = _index(
            policy,
            "<?php function fs() { return new \\Illuminate\\Filesystem\\Filesystem(); }",
        )
        assert index.has_forbidden_return_chain("fs")


class TestMethodChains:
    def test_this_call(self, policy):
        index = _index(
            policy,
            "<?php class Runner {\n"
            "  public function go($c) { return $this->raw($c); }\n"
            "  private function raw($c) { return passthru($c); }\n"
            "}",
        )
        assert index.has_forbidden_method_return_chain("Runner", "go")

    def test_parent_call(self, policy):
        index = _index(
            policy,
            "<?php class Base { public function make() { return 'eval'; } }\n"
            "class Child extends Base { public function make() { return parent::make(); } }",
        )
        assert index.has_forbidden_method_return_chain("Child", "make")

    def test_mutual_method_recursion(self, policy):
        index = _index(
            policy,
            "<?php class Loop {\n"
            "  public function a() { return $this->b(); }\n"
            "  public function b() { return self::a(); }\n"
            "}",
        )
        assert not index.has_forbidden_method_return_chain("Loop", "a")


def test_collect_func_call_chain():
    unit = parse_php("<?php strrev(base64_decode(gzinflate($payload)));")
    call = next(n for n in walk(unit.root) if n.type == "function_call_expression")
    assert collect_func_call_chain(call) == ["strrev", "base64_decode", "gzinflate"]
    assert collect_func_call_chain(call, max_depth=2) == ["strrev", "base64_decode"]
