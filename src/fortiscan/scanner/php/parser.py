"""tree-sitter PHP parsing plus the node helpers shared by the PHP analyzers."""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import tree_sitter_php as tsphp
from tree_sitter import Language, Node, Parser, Tree

PHP_LANG = Language(tsphp.language_php())

CLASS_LIKE = frozenset(
    {"class_declaration", "trait_declaration", "enum_declaration", "interface_declaration"}
)
FUNCTION_LIKE = frozenset(
    {
        "function_definition",
        "method_declaration",
        "anonymous_function",
        "anonymous_function_creation_expression",
        "arrow_function",
    }
)
CLOSURE_TYPES = frozenset(
    {"anonymous_function", "anonymous_function_creation_expression", "arrow_function"}
)
STRING_TYPES = frozenset({"string", "encapsed_string", "heredoc", "nowdoc"})
INCLUDE_TYPES = frozenset(
    {
        "include_expression",
        "include_once_expression",
        "require_expression",
        "require_once_expression",
    }
)
_PLAIN_STRING_PARTS = frozenset({"string_content", "string_value", "escape_sequence"})

_SINGLE_ESCAPES = re.compile(r"\\([\\'])")
_DOUBLE_ESCAPES = re.compile(r"\\([\\\"$nrt])")
_DOUBLE_MAP = {"n": "\n", "r": "\r", "t": "\t"}
_USE_KIND = re.compile(r"^(function|const)\s+", re.IGNORECASE)
_USE_ALIAS = re.compile(r"\s+as\s+", re.IGNORECASE)


def text(node: Node | None) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def line_of(node: Node) -> int:
    return node.start_point[0] + 1


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal without recursion; long concat chains are common."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def walk_scope(node: Node) -> Iterator[Node]:
    """Pre-order traversal that does not enter nested functions or classes."""
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        yield current
        if current.type in FUNCTION_LIKE or current.type in CLASS_LIKE:
            continue
        if current.type == "anonymous_class":
            continue
        stack.extend(reversed(current.children))


def unwrap(node: Node | None) -> Node | None:
    while node is not None and node.type == "parenthesized_expression" and node.named_children:
        node = node.named_children[0]
    return node


def call_arguments(call: Node) -> list[Node]:
    """Argument value nodes of a call, in order."""
    args = call.child_by_field_name("arguments")
    if args is None:
        for child in call.children:
            if child.type == "arguments":
                args = child
                break
    if args is None:
        return []
    values = []
    for child in args.named_children:
        if child.type == "argument":
            inner = child.named_children
            if inner:
                values.append(inner[-1])
        elif child.type != "comment":
            values.append(child)
    return values


def first_argument(call: Node) -> Node | None:
    args = call_arguments(call)
    return unwrap(args[0]) if args else None


def binary_operator(node: Node) -> str:
    op = node.child_by_field_name("operator")
    if op is not None:
        return text(op).lower()
    for child in node.children:
        if not child.is_named:
            return text(child).lower()
    return ""


def is_concat(node: Node | None) -> bool:
    return node is not None and node.type == "binary_expression" and binary_operator(node) == "."


def concat_parts(node: Node) -> list[Node]:
    """Flatten a left-deep ``a . b . c`` chain into its operands."""
    parts: list[Node] = []
    stack = [node]
    while stack:
        current = unwrap(stack.pop())
        if is_concat(current):
            stack.append(current.child_by_field_name("right"))
            stack.append(current.child_by_field_name("left"))
        elif current is not None:
            parts.append(current)
    return parts


def literal_string(node: Node | None) -> str | None:
    """Value of a non-interpolated string literal, else None."""
    node = unwrap(node)
    if node is None or node.type not in STRING_TYPES:
        return None
    raw = text(node)
    if node.type == "nowdoc":
        return _doc_body(raw)
    if node.type == "heredoc":
        if any(_is_interpolation(n) for n in walk(node) if n is not node):
            return None
        return _doc_body(raw)
    if node.type == "encapsed_string" and any(
        child.type not in _PLAIN_STRING_PARTS for child in node.named_children
    ):
        return None
    if raw[:1] in ("b", "B"):
        raw = raw[1:]
    if len(raw) < 2:
        return None
    quote, body = raw[0], raw[1:-1]
    if quote == "'":
        return _SINGLE_ESCAPES.sub(lambda m: m.group(1), body)
    return _DOUBLE_ESCAPES.sub(lambda m: _DOUBLE_MAP.get(m.group(1), m.group(1)), body)


def _is_interpolation(node: Node) -> bool:
    return node.is_named and (node.type == "variable_name" or node.type.endswith("_expression"))


def _doc_body(raw: str) -> str:
    lines = raw.split("\n")
    return "\n".join(lines[1:-1]) if len(lines) > 2 else ""


def variable_name(node: Node | None) -> str | None:
    """``$foo`` -> ``foo``; None for anything but a plain variable."""
    node = unwrap(node)
    if node is None or node.type != "variable_name":
        return None
    return text(node).lstrip("$")


def superglobal_of(node: Node | None, superglobals: frozenset[str]) -> str | None:
    """Name of the superglobal a (possibly subscripted) expression reads."""
    node = unwrap(node)
    while node is not None and node.type == "subscript_expression" and node.named_children:
        node = node.named_children[0]
    name = variable_name(node)
    return name if name in superglobals else None


def subscript_base(node: Node) -> Node | None:
    while node is not None and node.type == "subscript_expression" and node.named_children:
        node = node.named_children[0]
    return node


def function_name_node(call: Node) -> Node | None:
    fn = call.child_by_field_name("function")
    if fn is None and call.named_children:
        fn = call.named_children[0]
    return fn


def is_name(node: Node | None) -> bool:
    return node is not None and node.type in ("name", "qualified_name", "relative_name")


def enclosing_class_node(node: Node) -> Node | None:
    """Nearest named class-like ancestor; None inside anonymous classes."""
    current = node.parent
    while current is not None:
        if current.type in CLASS_LIKE:
            return current
        if current.type == "anonymous_class" or (
            current.type == "object_creation_expression"
            and any(c.type == "declaration_list" for c in current.children)
        ):
            return None
        current = current.parent
    return None


def parse_use_clause(clause: str) -> list[tuple[str, str, str]]:
    """Expand ``use`` text into ``(kind, fully_qualified, alias)`` triples."""
    clause = clause.strip().rstrip(";").strip()
    if clause[:3].lower() == "use":
        clause = clause[3:].strip()
    kind = "class"
    m = _USE_KIND.match(clause)
    if m:
        kind = m.group(1).lower()
        clause = clause[m.end() :]

    brace = clause.find("{")
    if brace >= 0:
        prefix = clause[:brace].strip().strip("\\")
        inner = clause[brace + 1 : clause.rfind("}")]
        items = [(prefix + "\\" + i.strip()) if prefix else i.strip() for i in inner.split(",")]
    else:
        items = [i.strip() for i in clause.split(",")]

    out = []
    for item in items:
        item_kind = kind
        tail = item.rsplit("\\", 1)
        m = _USE_KIND.match(tail[-1])
        if m:
            item_kind = m.group(1).lower()
            tail[-1] = tail[-1][m.end() :]
            item = "\\".join(tail)
        parts = _USE_ALIAS.split(item)
        name = parts[0].strip().strip("\\")
        if not name:
            continue
        alias = parts[1].strip() if len(parts) > 1 else name.rsplit("\\", 1)[-1]
        out.append((item_kind, name, alias))
    return out


@dataclass
class _Region:
    start: int
    end: int
    namespace: str = ""
    class_aliases: dict[str, str] = field(default_factory=dict)
    function_aliases: dict[str, str] = field(default_factory=dict)


class NameContext:
    """Namespace and ``use`` alias lookup by byte offset."""

    def __init__(self, root: Node) -> None:
        self._regions: list[_Region] = []
        self._build(root)
        self._starts = [r.start for r in self._regions]

    def _build(self, root: Node) -> None:
        current = _Region(start=0, end=root.end_byte)
        self._regions.append(current)
        for child in root.named_children:
            if child.type == "namespace_definition":
                name = text(child.child_by_field_name("name")).strip("\\")
                body = child.child_by_field_name("body")
                if body is not None:
                    current.end = child.start_byte
                    region = _Region(start=child.start_byte, end=child.end_byte, namespace=name)
                    self._regions.append(region)
                    for stmt in body.named_children:
                        if stmt.type == "namespace_use_declaration":
                            self._add_aliases(region, stmt)
                    current = _Region(start=child.end_byte, end=root.end_byte)
                    self._regions.append(current)
                else:
                    current.end = child.start_byte
                    current = _Region(start=child.start_byte, end=root.end_byte, namespace=name)
                    self._regions.append(current)
            elif child.type == "namespace_use_declaration":
                self._add_aliases(current, child)

    @staticmethod
    def _add_aliases(region: _Region, decl: Node) -> None:
        for kind, name, alias in parse_use_clause(text(decl)):
            if kind == "function":
                region.function_aliases[alias.lower()] = name
            elif kind == "class":
                region.class_aliases[alias.lower()] = name

    def _region_at(self, offset: int) -> _Region:
        index = bisect.bisect_right(self._starts, offset) - 1
        while index > 0 and not (self._regions[index].start <= offset < self._regions[index].end):
            index -= 1
        return self._regions[max(index, 0)]

    def namespace_at(self, offset: int) -> str:
        return self._region_at(offset).namespace

    def resolve_class(self, name: str, offset: int) -> str:
        """Fully qualified class name, without the leading backslash."""
        name = name.strip()
        if name.startswith("\\"):
            return name.lstrip("\\")
        region = self._region_at(offset)
        if name.lower().startswith("namespace\\"):
            rest = name[len("namespace\\") :]
            return f"{region.namespace}\\{rest}" if region.namespace else rest
        first, sep, rest = name.partition("\\")
        alias = region.class_aliases.get(first.lower())
        if alias:
            return f"{alias}\\{rest}" if sep else alias
        return f"{region.namespace}\\{name}" if region.namespace else name

    def function_candidates(self, name: str, offset: int) -> list[str]:
        """Lowercase lookup order for a called function name."""
        name = name.strip()
        if name.startswith("\\"):
            return [name.lstrip("\\").lower()]
        region = self._region_at(offset)
        if "\\" in name:
            first, _, rest = name.partition("\\")
            if first.lower() == "namespace":
                ns = region.namespace
                return [(f"{ns}\\{rest}" if ns else rest).lower()]
            alias = region.class_aliases.get(first.lower())
            if alias:
                return [f"{alias}\\{rest}".lower()]
            ns = region.namespace
            return [(f"{ns}\\{name}" if ns else name).lower()]
        alias = region.function_aliases.get(name.lower())
        if alias:
            return [alias.lower()]
        if region.namespace:
            return [f"{region.namespace}\\{name}".lower(), name.lower()]
        return [name.lower()]

    def global_function_name(self, name: str, offset: int) -> str:
        """The name PHP falls back to when no namespaced function exists."""
        return self.function_candidates(name, offset)[-1]


@dataclass
class ParsedUnit:
    """One parsed source file."""

    path: str
    source: bytes
    tree: Tree
    names: NameContext
    lines: list[bytes] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.lines = self.source.split(b"\n")

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def has_error(self) -> bool:
        return self.tree.root_node.has_error

    @property
    def text(self) -> str:
        return self.source.decode("utf-8", errors="ignore")

    def line_text(self, line: int) -> str:
        if 1 <= line <= len(self.lines):
            return self.lines[line - 1].decode("utf-8", errors="replace").strip()
        return ""

    def first_error_line(self) -> int:
        for node in walk(self.root):
            if node.type == "ERROR" or node.is_missing:
                return line_of(node)
        return 1


def parse_php(source: str | bytes, path: str = "[source]") -> ParsedUnit:
    data = source.encode("utf-8") if isinstance(source, str) else source
    tree = Parser(PHP_LANG).parse(data)
    return ParsedUnit(path=path, source=data, tree=tree, names=NameContext(tree.root_node))


def parse_file(path: str | Path) -> ParsedUnit:
    file_path = Path(path)
    return parse_php(file_path.read_bytes(), str(file_path))


def is_anonymous_creation(node: Node) -> bool:
    return node.type == "object_creation_expression" and any(
        c.type in ("anonymous_class", "declaration_list") for c in node.children
    )


def created_class(node: Node) -> Node | None:
    """Class operand of ``new``; None for anonymous classes."""
    if is_anonymous_creation(node):
        return None
    for child in node.named_children:
        if child.type in ("arguments", "attribute_list", "comment"):
            continue
        return child
    return None
