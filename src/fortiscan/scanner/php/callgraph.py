"""Call-graph index: bounded, cycle-safe "returns something forbidden" queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator

from tree_sitter import Node

from fortiscan.policy.models import PolicyView
from fortiscan.scanner.php.parser import (
    CLASS_LIKE,
    NameContext,
    ParsedUnit,
    created_class,
    first_argument,
    function_name_node,
    is_name,
    literal_string,
    text,
    unwrap,
    variable_name,
    walk,
    walk_scope,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 7
CALL_CHAIN_DEPTH = 6


@dataclass(frozen=True)
class FunctionDefinition:
    """A function or method body, keyed by lowercase name."""

    name: str
    node: Node
    path: str
    names: NameContext
    class_name: str = ""

    @property
    def body(self) -> Node | None:
        return self.node.child_by_field_name("body")

    def returns(self) -> Iterator[Node]:
        """Expressions returned directly by this body (nested scopes excluded)."""
        body = self.body
        if body is None:
            return
        for node in walk_scope(body):
            if node.type == "return_statement":
                for child in node.named_children:
                    if child.type != "comment":
                        yield child
                        break


def class_key(name: str) -> str:
    return name.strip().strip("\\").lower()


class CallGraphIndex:
    """Every function and method definition of a plugin, indexed by name.

    Built once from all parsed units before any file is scanned and
    read-only afterwards. Queries carry their own visited set.
    """

    def __init__(self, policy: PolicyView, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._policy = policy
        self.max_depth = max_depth
        self.functions: dict[str, FunctionDefinition] = {}
        self.methods: dict[str, dict[str, FunctionDefinition]] = {}
        self.parents: dict[str, str] = {}
        self.traits: dict[str, list[str]] = {}

    @classmethod
    def from_units(
        cls,
        policy: PolicyView,
        units: Iterable[ParsedUnit],
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> CallGraphIndex:
        index = cls(policy, max_depth=max_depth)
        index.collect(units)
        return index

    def collect(self, units: Iterable[ParsedUnit]) -> None:
        for unit in units:
            for node in walk(unit.root):
                if node.type == "function_definition":
                    self._add_function(unit, node)
                elif node.type in CLASS_LIKE:
                    self._add_class(unit, node)
        logger.debug(
            "Indexed %d function(s) and %d class(es)", len(self.functions), len(self.methods)
        )

    def _add_function(self, unit: ParsedUnit, node: Node) -> None:
        name = text(node.child_by_field_name("name"))
        if not name:
            return
        ns = unit.names.namespace_at(node.start_byte)
        key = (f"{ns}\\{name}" if ns else name).lower()
        # First definition wins, as PHP refuses to redeclare
        self.functions.setdefault(
            key, FunctionDefinition(name=key, node=node, path=unit.path, names=unit.names)
        )

    def _add_class(self, unit: ParsedUnit, node: Node) -> None:
        short = text(node.child_by_field_name("name"))
        if not short:
            return
        ns = unit.names.namespace_at(node.start_byte)
        key = class_key(f"{ns}\\{short}" if ns else short)
        table = self.methods.setdefault(key, {})

        for child in node.children:
            if child.type == "base_clause":
                for parent in child.named_children:
                    if is_name(parent):
                        self.parents[key] = class_key(
                            unit.names.resolve_class(text(parent), parent.start_byte)
                        )
                        break

        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in body.named_children:
            if member.type == "method_declaration":
                method = text(member.child_by_field_name("name")).lower()
                if method:
                    table.setdefault(
                        method,
                        FunctionDefinition(
                            name=method,
                            node=member,
                            path=unit.path,
                            names=unit.names,
                            class_name=key,
                        ),
                    )
            elif member.type == "use_declaration":
                for used in member.named_children:
                    if is_name(used):
                        self.traits.setdefault(key, []).append(
                            class_key(unit.names.resolve_class(text(used), used.start_byte))
                        )

    def resolve_function(self, candidates: Iterable[str]) -> str | None:
        """First indexed name among the lookup candidates."""
        for candidate in candidates:
            if candidate in self.functions:
                return candidate
        return None

    def get_method_defs(self, class_name: str) -> dict[str, FunctionDefinition]:
        return self.methods.get(class_key(class_name), {})

    def find_method(self, class_name: str, method: str) -> FunctionDefinition | None:
        """Look a method up through the class, its traits, then its parents."""
        seen: set[str] = set()
        pending = [class_key(class_name)]
        method = method.lower()
        while pending:
            key = pending.pop(0)
            if key in seen:
                continue
            seen.add(key)
            found = self.methods.get(key, {}).get(method)
            if found is not None:
                return found
            pending.extend(self.traits.get(key, ()))
            if key in self.parents:
                pending.append(self.parents[key])
        return None

    def has_method(self, class_name: str, method: str) -> bool:
        return self.find_method(class_name, method) is not None

    def has_forbidden_return_chain(
        self, function_name: str, visited: frozenset[str] = frozenset(), depth: int = 0
    ) -> bool:
        """True when the function returns a forbidden construct, directly or
        through a chain of indexed calls no deeper than ``max_depth``."""
        if depth > self.max_depth:
            return False
        key = function_name.strip().lstrip("\\").lower()
        if key in visited:
            return False
        definition = self.functions.get(key)
        if definition is None:
            return False
        visited = visited | {key}
        return any(
            self._is_forbidden_return(expr, definition, visited, depth)
            for expr in definition.returns()
        )

    def has_forbidden_method_return_chain(
        self,
        class_name: str,
        method: str,
        visited: frozenset[str] = frozenset(),
        depth: int = 0,
    ) -> bool:
        if depth > self.max_depth:
            return False
        key = f"{class_key(class_name)}::{method.lower()}"
        if key in visited:
            return False
        definition = self.find_method(class_name, method)
        if definition is None:
            return False
        visited = visited | {key}
        return any(
            self._is_forbidden_return(expr, definition, visited, depth)
            for expr in definition.returns()
        )

    def is_forbidden_name(self, name: str) -> bool:
        return self._policy.is_forbidden_function(name) or self._policy.is_unsupported_function(
            name
        )

    def is_forbidden_class(self, class_name: str) -> bool:
        return self._policy.is_forbidden_namespace(class_name) or self._policy.is_forbidden_reflection(
            class_name
        )

    def _is_forbidden_return(
        self,
        expr: Node,
        definition: FunctionDefinition,
        visited: frozenset[str],
        depth: int,
    ) -> bool:
        expr = unwrap(expr)
        if expr is None:
            return False
        names = definition.names

        literal = literal_string(expr)
        if literal is not None:
            return self.is_forbidden_name(literal)

        if expr.type == "object_creation_expression":
            cls = created_class(expr)
            return is_name(cls) and self.is_forbidden_class(
                names.resolve_class(text(cls), cls.start_byte)
            )

        if expr.type == "function_call_expression":
            fn = function_name_node(expr)
            if not is_name(fn):
                return False
            plain = names.global_function_name(text(fn), fn.start_byte)
            if self.is_forbidden_name(plain):
                return True
            target = self.resolve_function(names.function_candidates(text(fn), fn.start_byte))
            return target is not None and self.has_forbidden_return_chain(
                target, visited, depth + 1
            )

        if expr.type == "member_call_expression":
            if variable_name(expr.child_by_field_name("object")) != "this":
                return False
            method = expr.child_by_field_name("name")
            if method is None or method.type != "name" or not definition.class_name:
                return False
            return self.has_forbidden_method_return_chain(
                definition.class_name, text(method), visited, depth + 1
            )

        if expr.type == "scoped_call_expression":
            target_class = self.scope_class(
                expr.child_by_field_name("scope"), definition.class_name, names
            )
            method = expr.child_by_field_name("name")
            if not target_class or method is None or method.type != "name":
                return False
            return self.has_forbidden_method_return_chain(
                target_class, text(method), visited, depth + 1
            )

        return False

    def scope_class(self, scope: Node | None, current_class: str, names: NameContext) -> str:
        """Class targeted by ``self::``, ``static::``, ``parent::`` or ``X::``."""
        if scope is None:
            return ""
        label = text(scope).strip().lower()
        if label in ("self", "static"):
            return current_class
        if label == "parent":
            return self.parents.get(current_class, "")
        if is_name(scope):
            return class_key(names.resolve_class(text(scope), scope.start_byte))
        return ""


def collect_func_call_chain(expr: Node | None, max_depth: int = CALL_CHAIN_DEPTH) -> list[str]:
    """Names of a nested call chain ``f(g(h(x)))``, outermost first."""
    chain: list[str] = []
    current = unwrap(expr)
    while current is not None and current.type == "function_call_expression" and len(chain) < max_depth:
        fn = function_name_node(current)
        if not is_name(fn):
            break
        chain.append(text(fn).lstrip("\\").lower())
        current = first_argument(current)
    return chain
