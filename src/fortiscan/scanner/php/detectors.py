"""Syntax-tree detectors.

Each detector is a generator ``(node, ctx) -> Iterator[Violation]`` that
inspects one node kind and nothing else. ``DETECTORS`` maps node types to
the detectors run for them; the security scanner folds them over a
pre-order traversal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator

from tree_sitter import Node

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.models import Severity, Violation
from fortiscan.scanner.patterns import (
    CODE_EXEC_SINKS,
    DYNAMIC_MARKER,
    LEAKY_GLOBALS,
    SUPERGLOBAL_MARKER,
    SUPERGLOBALS,
    WRAPPER_IO_FUNCTIONS,
)
from fortiscan.scanner.php.callgraph import CallGraphIndex, class_key, collect_func_call_chain
from fortiscan.scanner.php.facts import VariableFacts
from fortiscan.scanner.php.parser import (
    CLOSURE_TYPES,
    INCLUDE_TYPES,
    ParsedUnit,
    binary_operator,
    call_arguments,
    concat_parts,
    created_class,
    enclosing_class_node,
    first_argument,
    function_name_node,
    is_anonymous_creation,
    is_concat,
    is_name,
    line_of,
    literal_string,
    parse_use_clause,
    subscript_base,
    superglobal_of,
    text,
    unwrap,
    variable_name,
    walk,
)

Detector = Callable[[Node, "ScanContext"], Iterator[Violation]]

_REGISTRATION_FUNCTIONS = frozenset(
    {
        "register_shutdown_function",
        "set_error_handler",
        "set_exception_handler",
        "register_tick_function",
    }
)
_INVOKERS = frozenset(
    {"call_user_func", "call_user_func_array", "forward_static_call", "forward_static_call_array"}
)
_MAGIC_CONSTANTS = frozenset({"__dir__", "__file__"})
_SPECIAL_SCOPES = frozenset({"self", "static", "parent"})
_VALUE_DEPTH = 4

FORBIDDEN = "forbidden"
UNSUPPORTED = "unsupported"
CHAIN = "chain"


@dataclass
class ScanContext:
    """Everything a detector may consult while visiting one file."""

    policy: PolicyView
    index: CallGraphIndex
    unit: ParsedUnit
    facts: VariableFacts
    extension: str = "php"
    size: int = 0

    @property
    def path(self) -> str:
        return self.unit.path

    def violation(
        self,
        vtype: str,
        severity: Severity,
        node: Node | None,
        issue: str = "",
        **data,
    ) -> Violation:
        line = line_of(node) if node is not None else 0
        return Violation(
            type=vtype,
            severity=severity,
            file=self.path,
            line=line,
            snippet=self.unit.line_text(line) if line else "",
            issue=issue,
            data=data,
        )

    def resolve_class(self, node: Node) -> str:
        return self.unit.names.resolve_class(text(node), node.start_byte)

    def function_name(self, call: Node) -> tuple[str, list[str]] | None:
        """``(global fallback name, lookup candidates)`` for a named call."""
        fn = function_name_node(call)
        if not is_name(fn):
            return None
        raw = text(fn)
        names = self.unit.names
        return names.global_function_name(raw, fn.start_byte), names.function_candidates(
            raw, fn.start_byte
        )

    def chains_to_forbidden(self, candidates: list[str]) -> bool:
        target = self.index.resolve_function(candidates)
        return target is not None and self.index.has_forbidden_return_chain(target)

    def name_verdict(self, name: str, candidates: list[str] | None = None) -> str | None:
        """Classify a callable name as forbidden, unsupported, chain or harmless."""
        if self.policy.is_forbidden_function(name):
            return FORBIDDEN
        if self.policy.is_unsupported_function(name):
            return UNSUPPORTED
        if self.chains_to_forbidden(candidates or [name.lstrip("\\").lower()]):
            return CHAIN
        return None

    def is_forbidden_class(self, class_name: str) -> bool:
        return self.policy.is_forbidden_namespace(class_name) or self.policy.is_forbidden_reflection(
            class_name
        )

    def current_class(self, node: Node) -> str:
        cls = enclosing_class_node(node)
        if cls is None:
            return ""
        name = cls.child_by_field_name("name")
        if name is None:
            return ""
        ns = self.unit.names.namespace_at(cls.start_byte)
        return class_key(f"{ns}\\{text(name)}" if ns else text(name))

    def receiver_class(self, obj: Node | None, at: Node) -> str:
        """Best-effort class of a method-call receiver."""
        name = variable_name(obj)
        if name == "this":
            return self.current_class(at)
        if name and name in self.facts.types:
            return class_key(self.facts.types[name])
        return ""

    def scope_class(self, scope: Node | None, at: Node) -> str:
        return self.index.scope_class(scope, self.current_class(at), self.unit.names)

    def is_superglobal_derived(self, node: Node | None) -> str | None:
        """Superglobal feeding an expression directly, by concat or by variable."""
        node = unwrap(node)
        if node is None:
            return None
        direct = superglobal_of(node, SUPERGLOBALS)
        if direct:
            return direct
        name = variable_name(node)
        if name and self.facts.is_superglobal(name):
            return name
        described = self.facts.describe(node)
        if described is not None and SUPERGLOBAL_MARKER in described:
            return described
        return None


# -- shared analysis helpers -------------------------------------------------


def call_verdict(call: Node, ctx: ScanContext) -> str | None:
    """Verdict for any call node found inside a body."""
    if call.type == "function_call_expression":
        resolved = ctx.function_name(call)
        if resolved is not None:
            return ctx.name_verdict(*resolved)
        return None
    if call.type in ("member_call_expression", "nullsafe_member_call_expression"):
        method = call.child_by_field_name("name")
        cls = ctx.receiver_class(call.child_by_field_name("object"), call)
        if cls and method is not None and method.type == "name":
            if ctx.index.has_forbidden_method_return_chain(cls, text(method)):
                return CHAIN
        return None
    if call.type == "scoped_call_expression":
        method = call.child_by_field_name("name")
        cls = ctx.scope_class(call.child_by_field_name("scope"), call)
        if cls and method is not None and method.type == "name":
            if ctx.index.has_forbidden_method_return_chain(cls, text(method)):
                return CHAIN
    return None


def body_is_dangerous(body: Node | None, ctx: ScanContext) -> bool:
    if body is None:
        return False
    return any(call_verdict(node, ctx) is not None for node in walk(body))


def contains_dangerous_value(node: Node | None, ctx: ScanContext, depth: int = 0) -> bool:
    """Whether a value placed somewhere long-lived could run forbidden code."""
    node = unwrap(node)
    if node is None or depth > _VALUE_DEPTH:
        return False
    literal = literal_string(node)
    if literal is not None:
        return ctx.policy.is_forbidden_function(literal)
    if node.type == "object_creation_expression":
        if is_anonymous_creation(node):
            return body_is_dangerous(node, ctx)
        cls = created_class(node)
        return is_name(cls) and ctx.is_forbidden_class(ctx.resolve_class(cls))
    if node.type == "function_call_expression":
        fn = function_name_node(node)
        if fn is not None and not is_name(fn):
            return True
        return call_verdict(node, ctx) is not None
    if node.type in CLOSURE_TYPES:
        return body_is_dangerous(node.child_by_field_name("body"), ctx)
    if node.type == "array_creation_expression":
        for element in node.named_children:
            values = element.named_children or [element]
            if contains_dangerous_value(values[-1], ctx, depth + 1):
                return True
        return False
    name = variable_name(node)
    if name and name in ctx.facts.nodes:
        return contains_dangerous_value(ctx.facts.nodes[name], ctx, depth + 1)
    return False


def _closure_scan(closure: Node, ctx: ScanContext) -> Iterator[Violation]:
    body = closure.child_by_field_name("body")
    if body is None:
        return
    for node in walk(body):
        if node.type != "function_call_expression":
            continue
        resolved = ctx.function_name(node)
        if resolved is None:
            continue
        verdict = ctx.name_verdict(*resolved)
        if verdict == FORBIDDEN:
            yield ctx.violation("closure_calls_always_forbidden", Severity.CRITICAL, node,
                                f"Closure calls forbidden function {resolved[0]}()",
                                function=resolved[0])
        elif verdict == UNSUPPORTED:
            yield ctx.violation("closure_calls_unsupported", Severity.MEDIUM, node,
                                f"Closure calls unsupported function {resolved[0]}()",
                                function=resolved[0])
        elif verdict == CHAIN:
            yield ctx.violation("closure_calls_forbidden_chain", Severity.CRITICAL, node,
                                f"Closure calls {resolved[0]}() which returns a forbidden construct",
                                function=resolved[0])


def _reflection_rows(
    ctx: ScanContext, node: Node, class_name: str, kind: str
) -> Iterator[Violation]:
    yield ctx.violation("always_forbidden_reflection", Severity.HIGH, node,
                        f"Reflection class {class_name} used ({kind})",
                        class_name=class_name, kind=kind)
    yield ctx.violation("reflection_usage", Severity.CRITICAL, node,
                        f"Reflection API usage: {class_name}",
                        class_name=class_name, kind=kind)


def _class_reference_rows(
    ctx: ScanContext, node: Node, name_node: Node, kind: str
) -> Iterator[Violation]:
    if text(name_node).strip().lower() in _SPECIAL_SCOPES:
        return
    class_name = ctx.resolve_class(name_node)
    ns = ctx.policy.forbidden_namespace_for(class_name)
    if ns:
        yield ctx.violation("forbidden_namespace_reference", Severity.CRITICAL, node,
                            f"Reference to forbidden namespace {ns} ({kind})",
                            namespace=ns, class_name=class_name, kind=kind)
    if ctx.policy.is_forbidden_reflection(class_name):
        yield from _reflection_rows(ctx, node, class_name, kind)


def _type_names(type_node: Node | None) -> Iterator[Node]:
    if type_node is None:
        return
    for node in walk(type_node):
        if node.type == "named_type":
            inner = node.named_children
            yield inner[0] if inner else node


# -- function calls ------------------------------------------------------------


def detect_function_call(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    resolved = ctx.function_name(node)
    if resolved is None:
        return
    name, candidates = resolved
    policy = ctx.policy

    if policy.is_forbidden_function(name):
        severity = Severity.CRITICAL if name == "eval" else Severity.HIGH
        yield ctx.violation("always_forbidden_function", severity, node,
                            f"Call to forbidden function {name}()", function=name)
    elif policy.is_unsupported_function(name):
        yield ctx.violation("unsupported_function", Severity.MEDIUM, node,
                            f"Call to unsupported function {name}()", function=name)

    if name in policy.dangerous_functions:
        yield ctx.violation("config_dangerous_function", Severity.MEDIUM, node,
                            f"Call to host-listed dangerous function {name}()", function=name)
    if name in policy.risky_functions:
        yield ctx.violation("config_risky_function", Severity.LOW, node,
                            f"Call to host-listed risky function {name}()", function=name)
    if policy.is_obfuscator(name):
        yield ctx.violation("obfuscation_function", Severity.MEDIUM, node,
                            f"Call to obfuscation-capable function {name}()", function=name)

    if ctx.chains_to_forbidden(candidates):
        yield ctx.violation("function_call_chain_forbidden", Severity.CRITICAL, node,
                            f"{name}() returns a forbidden construct through its call chain",
                            function=name)


def detect_variable_function_call(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    fn = unwrap(function_name_node(node))
    if fn is not None and fn.type == "subscript_expression":
        yield from _array_element_call(node, fn, ctx)
        return
    var = variable_name(fn)
    if var is None:
        return
    value = ctx.facts.value_of(var)
    if value is not None and SUPERGLOBAL_MARKER in value:
        yield ctx.violation("backdoor_variable_function_call_superglobal", Severity.CRITICAL, node,
                            f"Function name in ${var} comes from request input", var=var)
        return

    resolved = value.lower() if value and DYNAMIC_MARKER not in value else None
    escalated = resolved is not None and (
        ctx.policy.is_forbidden_function(resolved) or ctx.chains_to_forbidden([resolved])
    )
    data = {"var": var}
    if resolved is not None:
        data["resolved_function"] = resolved
    yield ctx.violation("backdoor_variable_function_call",
                        Severity.CRITICAL if escalated else Severity.HIGH, node,
                        f"Variable function call through ${var}", **data)
    if escalated:
        yield ctx.violation("backdoor_variable_function_call_chain_forbidden", Severity.CRITICAL,
                            node, f"${var}() resolves to forbidden {resolved}()", **data)


def _array_element_call(node: Node, fn: Node, ctx: ScanContext) -> Iterator[Violation]:
    # $_GET['a']($_GET['b']) and $handlers['x']()
    source = ctx.is_superglobal_derived(subscript_base(fn))
    if source:
        yield ctx.violation("backdoor_variable_function_call_superglobal", Severity.CRITICAL, node,
                            "Function name comes from request input", source=source,
                            expression=text(fn))
        return
    yield ctx.violation("backdoor_variable_function_call", Severity.HIGH, node,
                        f"Function call through array element {text(fn)}", expression=text(fn))


def detect_concat_function_call(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    fn = unwrap(function_name_node(node))
    if not is_concat(fn):
        return
    expression = (ctx.facts.describe(fn) or DYNAMIC_MARKER).lower()
    if DYNAMIC_MARKER in expression or SUPERGLOBAL_MARKER in expression:
        yield ctx.violation("backdoor_concat_function_call_unknown", Severity.HIGH, node,
                            "Function name built by concatenation with unknown parts",
                            expression=expression)
        return

    verdict = ctx.name_verdict(expression)
    if verdict == FORBIDDEN:
        yield ctx.violation("backdoor_concat_function_call_always_forbidden", Severity.CRITICAL,
                            node, f"Concatenated call resolves to forbidden {expression}()",
                            expression=expression)
    elif verdict == UNSUPPORTED:
        yield ctx.violation("backdoor_concat_function_call_unsupported", Severity.MEDIUM, node,
                            f"Concatenated call resolves to unsupported {expression}()",
                            expression=expression)
    elif verdict == CHAIN:
        yield ctx.violation("backdoor_concat_function_call_chain_forbidden", Severity.CRITICAL,
                            node, f"Concatenated call resolves to {expression}() which chains "
                            "to a forbidden construct", expression=expression)
    else:
        yield ctx.violation("backdoor_concat_function_call", Severity.HIGH, node,
                            f"Function name built by concatenation: {expression}",
                            expression=expression)


def detect_callback(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    resolved = ctx.function_name(node)
    if resolved is None:
        return
    name = resolved[0]
    if not (ctx.policy.is_callback_function(name) or name in _INVOKERS):
        return

    for arg in call_arguments(node):
        arg = unwrap(arg)
        literal = literal_string(arg)
        if literal is not None:
            target = literal.strip().lstrip("\\").lower()
            if not target or "::" in target:
                continue
            verdict = ctx.name_verdict(target)
            if verdict == FORBIDDEN:
                yield ctx.violation("callback_always_forbidden", Severity.CRITICAL, node,
                                    f"{name}() given forbidden callback {target}",
                                    function=name, callback=target)
                if name in _REGISTRATION_FUNCTIONS:
                    yield ctx.violation("always_forbidden_callback_to_forbidden_function",
                                        Severity.CRITICAL, node,
                                        f"{name}() registers forbidden {target}()",
                                        function=name, callback=target)
            elif verdict == UNSUPPORTED:
                yield ctx.violation("callback_unsupported", Severity.MEDIUM, node,
                                    f"{name}() given unsupported callback {target}",
                                    function=name, callback=target)
            elif verdict == CHAIN:
                yield ctx.violation("callback_user_defined_forbidden_chain", Severity.CRITICAL,
                                    node, f"{name}() given {target} which chains to a forbidden "
                                    "construct", function=name, callback=target)
        elif arg is not None and arg.type in CLOSURE_TYPES:
            rows = list(_closure_scan(arg, ctx))
            yield from rows
            if rows:
                yield ctx.violation("callback_closure_forbidden", Severity.CRITICAL, node,
                                    f"Closure passed to {name}() calls forbidden code",
                                    function=name)


def detect_obfuscated_eval(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    resolved = ctx.function_name(node)
    if resolved is None or resolved[0] != "eval":
        return
    chain = collect_func_call_chain(first_argument(node))
    if not chain:
        return
    hits = [c for c in chain if ctx.policy.is_obfuscator(c)]
    if hits:
        yield ctx.violation("always_forbidden_obfuscated_eval", Severity.CRITICAL, node,
                            "eval() of decoded/obfuscated payload: " + " -> ".join(chain),
                            chain=chain)


def detect_wrapper_stream(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    resolved = ctx.function_name(node)
    if resolved is None or resolved[0] not in WRAPPER_IO_FUNCTIONS:
        return
    literal = literal_string(first_argument(node))
    if literal is None:
        return
    wrapper = ctx.policy.forbidden_wrapper_for(literal)
    if wrapper:
        yield ctx.violation("always_forbidden_wrapper_stream", Severity.CRITICAL, node,
                            f"{resolved[0]}() through forbidden stream wrapper {wrapper}",
                            function=resolved[0], wrapper=wrapper)


def detect_superglobal_code(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    resolved = ctx.function_name(node)
    if resolved is None or resolved[0] not in CODE_EXEC_SINKS:
        return
    for arg in call_arguments(node):
        source = ctx.is_superglobal_derived(arg)
        if source:
            yield ctx.violation("dynamic_code_from_superglobal", Severity.CRITICAL, node,
                                f"{resolved[0]}() receives request input",
                                function=resolved[0], source=source)
            return


# -- methods, classes and namespaces ------------------------------------------


def _dynamic_member_rows(
    node: Node, ctx: ScanContext, cls: str, prefix: str, noun: str
) -> Iterator[Violation]:
    name_node = node.child_by_field_name("name")
    if name_node is None or name_node.type == "name":
        return
    var = variable_name(name_node)
    if var is None:
        yield ctx.violation(f"{prefix}_complex", Severity.HIGH, node,
                            f"{noun} name computed from an expression",
                            expression=text(name_node))
        return
    value = ctx.facts.value_of(var)
    if value is not None and SUPERGLOBAL_MARKER in value:
        yield ctx.violation(f"{prefix}_superglobal", Severity.CRITICAL, node,
                            f"{noun} name in ${var} comes from request input", var=var)
        return
    if value is None or DYNAMIC_MARKER in value:
        yield ctx.violation(f"{prefix}_unresolved", Severity.HIGH, node,
                            f"{noun} name in ${var} could not be resolved", var=var)
        return
    member = value.lower()
    if ctx.policy.is_forbidden_function(member) or ctx.policy.is_unsupported_function(member):
        yield ctx.violation(f"{prefix}_forbidden", Severity.CRITICAL, node,
                            f"{noun} ${var} resolves to forbidden {member}",
                            var=var, resolved_method=member)
    elif cls and ctx.index.has_forbidden_method_return_chain(cls, member):
        yield ctx.violation(f"{prefix}_chain_forbidden", Severity.CRITICAL, node,
                            f"{noun} ${var} resolves to {cls}::{member} which chains to a "
                            "forbidden construct", var=var, resolved_method=member, class_name=cls)


def detect_dynamic_method_call(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    if node.type == "scoped_call_expression":
        cls = ctx.scope_class(node.child_by_field_name("scope"), node)
    else:
        cls = ctx.receiver_class(node.child_by_field_name("object"), node)
    yield from _dynamic_member_rows(node, ctx, cls, "backdoor_dynamic_method_call", "Method")


def detect_blocked_method(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    method = node.child_by_field_name("name")
    if method is None or method.type != "name":
        return
    if node.type == "scoped_call_expression":
        scope = node.child_by_field_name("scope")
        if scope is None:
            return
        if text(scope).strip().lower() in _SPECIAL_SCOPES:
            cls = ctx.scope_class(scope, node)
        elif is_name(scope):
            cls = class_key(ctx.resolve_class(scope))
        else:
            return
    else:
        cls = ctx.receiver_class(node.child_by_field_name("object"), node)
    if not cls:
        return
    allowed = ctx.policy.allowed_methods_for(cls)
    if allowed is None or "*" in allowed:
        return
    method_name = text(method)
    if method_name.lower() not in allowed:
        yield ctx.violation("config_blocked_method", Severity.CRITICAL, node,
                            f"Method {cls}::{method_name} is not on the allowlist",
                            class_name=cls, method=method_name)


def detect_static_class_reference(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    scope = node.child_by_field_name("scope")
    if is_name(scope):
        yield from _class_reference_rows(ctx, node, scope, "static_call")


def detect_class_constant(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    parts = node.named_children
    if parts and is_name(parts[0]):
        yield from _class_reference_rows(ctx, node, parts[0], "class_constant")


def detect_instanceof(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    if binary_operator(node) != "instanceof":
        return
    right = node.child_by_field_name("right")
    if is_name(right):
        yield from _class_reference_rows(ctx, node, right, "instanceof")


def detect_instantiation(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    if is_anonymous_creation(node):
        dangerous = body_is_dangerous(node, ctx)
        yield ctx.violation("anonymous_class_leak",
                            Severity.CRITICAL if dangerous else Severity.INFO, node,
                            "Anonymous class calls forbidden code" if dangerous
                            else "Anonymous class defined", dangerous=dangerous)
        return

    cls = created_class(node)
    if cls is None:
        return
    if is_name(cls):
        yield from _class_reference_rows(ctx, node, cls, "new")
        return

    var = variable_name(cls)
    if var is None:
        yield ctx.violation("backdoor_dynamic_class_instantiation_complex", Severity.HIGH, node,
                            "Class name computed from an expression", expression=text(cls))
        return
    facts = ctx.facts
    if facts.is_superglobal(var) or var in SUPERGLOBALS:
        yield ctx.violation("backdoor_dynamic_class_instantiation_superglobal", Severity.CRITICAL,
                            node, f"Class name in ${var} comes from request input", var=var)
        return
    resolved = facts.class_literals.get(var)
    if resolved is None:
        value = facts.value_of(var)
        if value is not None and DYNAMIC_MARKER not in value:
            resolved = value.lstrip("\\")
    if resolved is None:
        yield ctx.violation("backdoor_dynamic_class_instantiation_unresolved", Severity.HIGH,
                            node, f"Class name in ${var} could not be resolved", var=var)
    elif ctx.is_forbidden_class(resolved):
        yield ctx.violation("backdoor_dynamic_class_instantiation_forbidden", Severity.CRITICAL,
                            node, f"new ${var} resolves to forbidden class {resolved}",
                            var=var, class_name=resolved)


def detect_parameter_type(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    for name_node in _type_names(node.child_by_field_name("type")):
        class_name = ctx.resolve_class(name_node)
        if ctx.policy.is_forbidden_reflection(class_name):
            yield from _reflection_rows(ctx, node, class_name, "type_hint")


def detect_class_declaration(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    for child in node.children:
        if child.type == "base_clause":
            vtype, kind = "forbidden_namespace_extends", "extends"
        elif child.type == "class_interface_clause":
            vtype, kind = "forbidden_namespace_implements", "implements"
        else:
            continue
        for name_node in child.named_children:
            if not is_name(name_node):
                continue
            class_name = ctx.resolve_class(name_node)
            ns = ctx.policy.forbidden_namespace_for(class_name)
            if ns:
                yield ctx.violation(vtype, Severity.CRITICAL, child,
                                    f"Class {kind} {class_name} from forbidden namespace",
                                    namespace=ns, class_name=class_name)
            if kind == "extends" and ctx.policy.is_forbidden_reflection(class_name):
                yield from _reflection_rows(ctx, child, class_name, kind)


def detect_trait_use(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    for name_node in node.named_children:
        if not is_name(name_node):
            continue
        trait = ctx.resolve_class(name_node)
        ns = ctx.policy.forbidden_namespace_for(trait)
        if ns:
            yield ctx.violation("forbidden_namespace_trait_use", Severity.CRITICAL, node,
                                f"Trait {trait} from forbidden namespace",
                                namespace=ns, class_name=trait)


def detect_namespace_import(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    suffix = {"class": "", "function": "_function", "const": "_const"}
    for kind, name, _alias in parse_use_clause(text(node)):
        ns = ctx.policy.forbidden_namespace_for(name)
        if ns:
            yield ctx.violation(f"forbidden_namespace_import{suffix[kind]}", Severity.CRITICAL,
                                node, f"Import of {name} from forbidden namespace",
                                namespace=ns, name=name)


def detect_namespace_string(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    value = literal_string(node)
    if not value or len(value) > 512 or "\\" not in value.strip("\\"):
        return
    ns = ctx.policy.forbidden_namespace_for(value)
    if ns:
        yield ctx.violation("forbidden_namespace_string_reference", Severity.HIGH, node,
                            f"String refers to forbidden namespace {ns}",
                            namespace=ns, value=value)


def detect_magic_method(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    name = text(node.child_by_field_name("name"))
    if not ctx.policy.is_forbidden_magic_method(name):
        return
    severity = _magic_body_severity(node.child_by_field_name("body"), ctx)
    yield ctx.violation("always_forbidden_magic_method", Severity.HIGH, node,
                        f"Forbidden magic method {name} defined", method=name)
    yield ctx.violation("magic_method_defined", severity, node,
                        f"Magic method {name} defined", method=name)


def _magic_body_severity(body: Node | None, ctx: ScanContext) -> Severity:
    if body is None:
        return Severity.LOW
    severity = Severity.LOW
    for node in walk(body):
        if node.type != "function_call_expression":
            continue
        fn = function_name_node(node)
        if fn is not None and not is_name(fn):
            severity = Severity.HIGH
            continue
        resolved = ctx.function_name(node)
        if resolved is None:
            continue
        if ctx.name_verdict(*resolved) is not None:
            return Severity.CRITICAL
        if resolved[0] in _INVOKERS:
            target = first_argument(node)
            literal = literal_string(target)
            if literal is not None and ctx.name_verdict(literal.lower()) is not None:
                return Severity.CRITICAL
            if variable_name(target) is not None:
                severity = Severity.HIGH
    return severity


# -- includes, variables and state leaks --------------------------------------


def detect_include(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    target = unwrap(node.named_children[0]) if node.named_children else None
    if target is None:
        return
    literal = literal_string(target)
    if literal is not None:
        wrapper = ctx.policy.forbidden_wrapper_for(literal)
        if wrapper:
            yield ctx.violation("always_forbidden_wrapper_stream_include", Severity.CRITICAL,
                                node, f"Include through forbidden stream wrapper {wrapper}",
                                wrapper=wrapper)
            yield ctx.violation("include_forbidden_wrapper", Severity.CRITICAL, node,
                                f"Include path uses {wrapper}", wrapper=wrapper)
        return
    if _is_static_path(target):
        return

    yield ctx.violation("always_forbidden_dynamic_include", Severity.HIGH, node,
                        "Include/require of a non-literal path", expr_type=target.type)
    if ctx.is_superglobal_derived(target):
        yield ctx.violation("include_dynamic_path_superglobal", Severity.CRITICAL, node,
                            "Include path comes from request input", expr_type=target.type)
    else:
        yield ctx.violation("include_dynamic_path", Severity.HIGH, node,
                            "Include path computed at runtime", expr_type=target.type)


def _is_static_path(node: Node) -> bool:
    """``__DIR__ . '/x.php'`` style paths made only of literals and magic constants."""
    if not is_concat(node):
        return False
    for part in concat_parts(node):
        if literal_string(part) is not None:
            continue
        if part.type == "name" and text(part).lower() in _MAGIC_CONSTANTS:
            continue
        return False
    return True


def detect_variable_variable(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    if node.parent is not None and node.parent.type == "dynamic_variable_name":
        return
    yield ctx.violation("variable_variable_usage", Severity.LOW, node,
                        f"Variable variable {text(node)}", expression=text(node))


def detect_dynamic_property(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    name_node = node.child_by_field_name("name")
    var = variable_name(name_node)
    if var is None:
        return
    value = ctx.facts.value_of(var)
    if value is not None and SUPERGLOBAL_MARKER in value:
        yield ctx.violation("dynamic_property_access_superglobal", Severity.CRITICAL, node,
                            f"Property name in ${var} comes from request input", var=var)
        return
    yield ctx.violation("dynamic_property_access", Severity.LOW, node,
                        f"Dynamic property access through ${var}", var=var)
    cls = ctx.receiver_class(node.child_by_field_name("object"), node)
    if value and DYNAMIC_MARKER not in value and cls:
        if ctx.index.has_forbidden_method_return_chain(cls, value):
            yield ctx.violation("dynamic_property_access_chain_forbidden", Severity.CRITICAL,
                                node, f"${var} resolves to {cls}::{value} which chains to a "
                                "forbidden construct", var=var, class_name=cls)


def detect_dynamic_static_property(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    name_node = node.child_by_field_name("name")
    if name_node is None and len(node.named_children) > 1:
        name_node = node.named_children[-1]
    if name_node is not None and name_node.type == "dynamic_variable_name":
        yield ctx.violation("dynamic_static_property_access", Severity.MEDIUM, node,
                            "Static property accessed through a variable name",
                            expression=text(node))


def detect_assignment_leak(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    left = node.child_by_field_name("left")
    right = unwrap(node.child_by_field_name("right"))
    if left is None or right is None:
        return
    if left.type == "subscript_expression":
        base = variable_name(subscript_base(left))
        if base in LEAKY_GLOBALS or base in SUPERGLOBALS:
            dangerous = contains_dangerous_value(right, ctx)
            yield ctx.violation("global_or_session_leak",
                                Severity.CRITICAL if dangerous else Severity.HIGH, node,
                                f"Value stored into ${base}", target=base, dangerous=dangerous)
    if right.type in CLOSURE_TYPES:
        dangerous = body_is_dangerous(right.child_by_field_name("body"), ctx)
        yield ctx.violation("anonymous_function_leak",
                            Severity.CRITICAL if dangerous else Severity.INFO, node,
                            "Closure stored in a variable calls forbidden code" if dangerous
                            else "Closure stored in a variable", dangerous=dangerous)


def detect_static_variable(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    for decl in node.named_children:
        if decl.type != "static_variable_declaration":
            continue
        value = decl.child_by_field_name("value")
        if value is not None and contains_dangerous_value(value, ctx):
            name = text(decl.child_by_field_name("name"))
            yield ctx.violation("static_variable_leak", Severity.CRITICAL, decl,
                                f"Static variable {name} holds forbidden code", var=name)


# -- returns -------------------------------------------------------------------


def detect_return(node: Node, ctx: ScanContext) -> Iterator[Violation]:
    expr = next((c for c in node.named_children if c.type != "comment"), None)
    expr = unwrap(expr)
    if expr is None:
        return

    literal = literal_string(expr)
    if literal is not None:
        if ctx.policy.is_forbidden_function(literal) or ctx.policy.is_unsupported_function(literal):
            yield ctx.violation("return_forbidden_function", Severity.CRITICAL, node,
                                f"Returns the name of forbidden function {literal}",
                                function=literal.lower(), literal=True)
        return

    if expr.type == "object_creation_expression":
        cls = created_class(expr)
        if is_name(cls):
            class_name = ctx.resolve_class(cls)
            if ctx.is_forbidden_class(class_name):
                yield ctx.violation("return_forbidden_class", Severity.CRITICAL, node,
                                    f"Returns an instance of forbidden class {class_name}",
                                    class_name=class_name)
        return

    if expr.type == "function_call_expression":
        resolved = ctx.function_name(expr)
        if resolved is None:
            return
        name, candidates = resolved
        if ctx.policy.is_forbidden_function(name) or ctx.policy.is_unsupported_function(name):
            yield ctx.violation("return_forbidden_function", Severity.CRITICAL, node,
                                f"Returns the result of forbidden {name}()", function=name)
        elif ctx.chains_to_forbidden(candidates):
            yield ctx.violation("return_indirect_forbidden_chain", Severity.CRITICAL, node,
                                f"Returns {name}() which chains to a forbidden construct",
                                function=name)
        return

    if expr.type in ("member_call_expression", "scoped_call_expression"):
        method = expr.child_by_field_name("name")
        if method is None or method.type != "name":
            return
        if expr.type == "member_call_expression":
            if variable_name(expr.child_by_field_name("object")) != "this":
                return
            cls = ctx.current_class(expr)
        else:
            cls = ctx.scope_class(expr.child_by_field_name("scope"), expr)
        if cls and ctx.index.has_forbidden_method_return_chain(cls, text(method)):
            yield ctx.violation("return_indirect_forbidden_method_chain", Severity.CRITICAL,
                                node, f"Returns {cls}::{text(method)}() which chains to a "
                                "forbidden construct", class_name=cls, method=text(method))


# -- file level ----------------------------------------------------------------


def detect_file_too_large(ctx: ScanContext) -> Iterator[Violation]:
    cap = ctx.policy.limits.scan_size.get(ctx.extension)
    if cap is not None and ctx.size > cap:
        yield Violation(
            type="config_file_too_large",
            severity=Severity.MEDIUM,
            file=ctx.path,
            line=0,
            issue=f"File is {ctx.size} bytes; the .{ctx.extension} limit is {cap}",
            data={"size": ctx.size, "limit": cap},
        )


_CALL_DETECTORS: tuple[Detector, ...] = (
    detect_function_call,
    detect_variable_function_call,
    detect_concat_function_call,
    detect_callback,
    detect_obfuscated_eval,
    detect_wrapper_stream,
    detect_superglobal_code,
)
_MEMBER_CALL_DETECTORS: tuple[Detector, ...] = (detect_dynamic_method_call, detect_blocked_method)
_PARAMETER_DETECTORS: tuple[Detector, ...] = (detect_parameter_type,)

DETECTORS: dict[str, tuple[Detector, ...]] = {
    "function_call_expression": _CALL_DETECTORS,
    "member_call_expression": _MEMBER_CALL_DETECTORS,
    "nullsafe_member_call_expression": _MEMBER_CALL_DETECTORS,
    "scoped_call_expression": (
        detect_static_class_reference,
        detect_dynamic_method_call,
        detect_blocked_method,
    ),
    "object_creation_expression": (detect_instantiation,),
    "class_constant_access_expression": (detect_class_constant,),
    "binary_expression": (detect_instanceof,),
    "simple_parameter": _PARAMETER_DETECTORS,
    "property_promotion_parameter": _PARAMETER_DETECTORS,
    "variadic_parameter": _PARAMETER_DETECTORS,
    "class_declaration": (detect_class_declaration,),
    "use_declaration": (detect_trait_use,),
    "namespace_use_declaration": (detect_namespace_import,),
    "string": (detect_namespace_string,),
    "encapsed_string": (detect_namespace_string,),
    "method_declaration": (detect_magic_method,),
    **{include: (detect_include,) for include in sorted(INCLUDE_TYPES)},
    "dynamic_variable_name": (detect_variable_variable,),
    "member_access_expression": (detect_dynamic_property,),
    "nullsafe_member_access_expression": (detect_dynamic_property,),
    "scoped_property_access_expression": (detect_dynamic_static_property,),
    "assignment_expression": (detect_assignment_leak,),
    "reference_assignment_expression": (detect_assignment_leak,),
    "function_static_declaration": (detect_static_variable,),
    "return_statement": (detect_return,),
}

FILE_DETECTORS = (detect_file_too_large,)
