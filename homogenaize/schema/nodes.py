"""
Canonical schema tree.

Every abstract schema is introspected into a tree of the node classes
below. Each class carries a ``kind`` tag and compilers dispatch on it,
so an unknown kind fails loudly instead of being guessed at.

Trees are acyclic. Recursion is expressed with ``RefNode``, a named
back-reference resolved through a ``SchemaRegistry``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple


class NodeKind(str, Enum):
    """Structural kinds of schema nodes."""

    PRIMITIVE = "primitive"
    ARRAY = "array"
    OBJECT = "object"
    OPTIONAL = "optional"
    NULLABLE = "nullable"
    ENUM = "enum"
    LITERAL = "literal"
    UNION = "union"
    DISCRIMINATED_UNION = "discriminated_union"
    REF = "ref"


class PrimitiveType(str, Enum):
    """JSON scalar types."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    NULL = "null"


def primitive_type_of(value: Any) -> PrimitiveType:
    """JSON type of a literal value."""
    if value is None:
        return PrimitiveType.NULL
    if isinstance(value, bool):
        return PrimitiveType.BOOLEAN
    if isinstance(value, int):
        return PrimitiveType.INTEGER
    if isinstance(value, float):
        return PrimitiveType.NUMBER
    if isinstance(value, str):
        return PrimitiveType.STRING
    raise TypeError(f"Not a JSON scalar: {value!r}")


class SchemaNode:
    """Base class for all schema nodes."""

    kind: ClassVar[NodeKind]
    description: Optional[str]


@dataclass
class PrimitiveNode(SchemaNode):
    kind: ClassVar[NodeKind] = NodeKind.PRIMITIVE

    type: PrimitiveType
    description: Optional[str] = None


@dataclass
class ArrayNode(SchemaNode):
    """Homogeneous array with optional length bounds."""

    kind: ClassVar[NodeKind] = NodeKind.ARRAY

    items: SchemaNode
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    description: Optional[str] = None


@dataclass
class ObjectNode(SchemaNode):
    """
    Object with named fields in declaration order.

    Fields wrapped in ``OptionalNode`` may be absent. Whether that makes
    them non-required is decided by each compiler.
    """

    kind: ClassVar[NodeKind] = NodeKind.OBJECT

    fields: Dict[str, SchemaNode] = field(default_factory=dict)
    name: Optional[str] = None
    description: Optional[str] = None

    def add_field(self, name: str, node: SchemaNode) -> None:
        if name in self.fields:
            raise ValueError(f"Duplicate field '{name}' in object {self.name or ''}".rstrip())
        self.fields[name] = node

    def iter_fields(self) -> Iterator[Tuple[str, SchemaNode, bool]]:
        """Yield ``(name, inner_node, is_optional)`` for each field."""
        for name, node in self.fields.items():
            if isinstance(node, OptionalNode):
                yield name, node.inner, True
            else:
                yield name, node, False


@dataclass
class OptionalNode(SchemaNode):
    """Marks an object field that may be omitted."""

    kind: ClassVar[NodeKind] = NodeKind.OPTIONAL

    inner: SchemaNode
    description: Optional[str] = None


@dataclass
class NullableNode(SchemaNode):
    """A value that may also be ``null``."""

    kind: ClassVar[NodeKind] = NodeKind.NULLABLE

    inner: SchemaNode
    description: Optional[str] = None


@dataclass
class EnumNode(SchemaNode):
    kind: ClassVar[NodeKind] = NodeKind.ENUM

    values: List[Any]
    description: Optional[str] = None


@dataclass
class LiteralNode(SchemaNode):
    kind: ClassVar[NodeKind] = NodeKind.LITERAL

    value: Any
    description: Optional[str] = None

    @property
    def type(self) -> PrimitiveType:
        return primitive_type_of(self.value)


@dataclass
class UnionNode(SchemaNode):
    """Ordered alternatives."""

    kind: ClassVar[NodeKind] = NodeKind.UNION

    variants: List[SchemaNode]
    description: Optional[str] = None


@dataclass
class DiscriminatedUnionNode(UnionNode):
    """Union of object variants selected by a shared tag field."""

    kind: ClassVar[NodeKind] = NodeKind.DISCRIMINATED_UNION

    discriminator: Optional[str] = None


class SchemaRegistry:
    """Named definitions targeted by ``RefNode`` back-references."""

    def __init__(self) -> None:
        self._definitions: Dict[str, SchemaNode] = {}

    def register(self, name: str, node: SchemaNode) -> None:
        self._definitions[name] = node

    def resolve(self, name: str) -> SchemaNode:
        try:
            return self._definitions[name]
        except KeyError:
            raise LookupError(f"Unresolved schema reference: {name}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


@dataclass
class RefNode(SchemaNode):
    """Lazy back-reference to a named definition."""

    kind: ClassVar[NodeKind] = NodeKind.REF

    name: str
    registry: SchemaRegistry = field(repr=False, compare=False, default_factory=SchemaRegistry)
    description: Optional[str] = None

    def resolve(self) -> SchemaNode:
        return self.registry.resolve(self.name)


def with_description(node: SchemaNode, description: Optional[str]) -> SchemaNode:
    """Attach a description unless the node already has one."""
    if description and not node.description:
        node.description = description
    return node
