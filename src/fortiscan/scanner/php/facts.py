"""Per-file variable tracking: best-effort values for simple assignments."""

from __future__ import annotations

from dataclasses import dataclass, field

from tree_sitter import Node

from fortiscan.scanner.patterns import DYNAMIC_MARKER, SUPERGLOBAL_MARKER, SUPERGLOBALS
from fortiscan.scanner.php.parser import (
    NameContext,
    concat_parts,
    created_class,
    is_concat,
    is_name,
    literal_string,
    superglobal_of,
    text,
    unwrap,
    variable_name,
)


@dataclass
class VariableFacts:
    """What is known about each variable at the current point of a traversal.

    Owned by the caller, reset at the start of every file and never shared
    across files.
    """

    values: dict[str, str] = field(default_factory=dict)
    class_literals: dict[str, str] = field(default_factory=dict)
    types: dict[str, str] = field(default_factory=dict)
    nodes: dict[str, Node] = field(default_factory=dict)

    def reset(self) -> None:
        self.values.clear()
        self.class_literals.clear()
        self.types.clear()
        self.nodes.clear()

    def forget(self, name: str) -> None:
        self.values.pop(name, None)
        self.class_literals.pop(name, None)
        self.types.pop(name, None)
        self.nodes.pop(name, None)

    def value_of(self, name: str) -> str | None:
        return self.values.get(name)

    def is_superglobal(self, name: str) -> bool:
        return SUPERGLOBAL_MARKER in self.values.get(name, "")

    def observe(self, node: Node, names: NameContext) -> None:
        """Update facts from an assignment, ``.=`` or ``unset`` node."""
        if node.type in ("assignment_expression", "reference_assignment_expression"):
            self._assign(node, names)
        elif node.type == "augmented_assignment_expression":
            self._append(node)
        elif node.type == "unset_statement":
            for target in node.named_children:
                name = variable_name(target)
                if name:
                    self.forget(name)

    def _assign(self, node: Node, names: NameContext) -> None:
        name = variable_name(node.child_by_field_name("left"))
        if not name:
            return
        right = unwrap(node.child_by_field_name("right"))
        self.forget(name)
        if right is None:
            return
        self.nodes[name] = right

        source = variable_name(right)
        if source is not None and source not in SUPERGLOBALS:
            for table in (self.values, self.class_literals, self.types):
                if source in table:
                    table[name] = table[source]
            return

        value = self.describe(right)
        if value is not None:
            self.values[name] = value

        if right.type == "class_constant_access_expression":
            parts = right.named_children
            if len(parts) == 2 and text(parts[1]).lower() == "class" and is_name(parts[0]):
                self.class_literals[name] = names.resolve_class(text(parts[0]), right.start_byte)
        elif right.type == "object_creation_expression":
            cls = created_class(right)
            if is_name(cls):
                self.types[name] = names.resolve_class(text(cls), right.start_byte)
            else:
                held = variable_name(cls)
                if held and held in self.class_literals:
                    self.types[name] = self.class_literals[held]

    def _append(self, node: Node) -> None:
        name = variable_name(node.child_by_field_name("left"))
        if not name:
            return
        op = node.child_by_field_name("operator")
        right = node.child_by_field_name("right")
        known = self.values.get(name)
        extra = literal_string(right)
        if op is not None and text(op) == ".=" and known is not None and extra is not None:
            self.values[name] = known + extra
        else:
            self.forget(name)

    def describe(self, node: Node | None) -> str | None:
        """String value for literals and concatenations; None when unknown.

        Non-literal concatenation operands become ``{dynamic}``; superglobal
        reads become ``{superglobal}``.
        """
        node = unwrap(node)
        if node is None:
            return None
        literal = literal_string(node)
        if literal is not None:
            return literal
        if superglobal_of(node, SUPERGLOBALS):
            return SUPERGLOBAL_MARKER
        if is_concat(node):
            return "".join(self._describe_part(p) for p in concat_parts(node))
        return None

    def _describe_part(self, node: Node) -> str:
        literal = literal_string(node)
        if literal is not None:
            return literal
        if superglobal_of(node, SUPERGLOBALS):
            return SUPERGLOBAL_MARKER
        name = variable_name(node)
        if name and name in self.values:
            return self.values[name]
        return DYNAMIC_MARKER

