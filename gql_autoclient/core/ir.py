"""Intermediate Representation (IR) for GraphQL schemas.

This module defines the in-memory type graph the query builder walks.
Every named type lives in ``IRSchema.types`` keyed by name, tagged with
its kind. Field and argument types are references by name plus wrapper
flags (list / non-null), so the graph may freely be cyclic.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TypeKind(Enum):
    """Kinds of named GraphQL types."""
    SCALAR = "SCALAR"
    ENUM = "ENUM"
    OBJECT = "OBJECT"
    INTERFACE = "INTERFACE"
    UNION = "UNION"
    INPUT_OBJECT = "INPUT_OBJECT"


BUILTIN_SCALARS = ("String", "Int", "Float", "Boolean", "ID")


def type_signature(type_name: str, is_list: bool, is_optional: bool, is_item_optional: bool = True) -> str:
    """Render a type reference the way it is written in SDL, e.g. ``[Post!]!``."""
    sig = type_name
    if is_list:
        if not is_item_optional:
            sig = f"{sig}!"
        sig = f"[{sig}]"
    if not is_optional:
        sig = f"{sig}!"
    return sig


@dataclass
class IRArgument:
    """Represents an argument to a field or operation."""
    name: str
    type_name: str
    is_list: bool = False
    is_optional: bool = True
    is_item_optional: bool = True
    default_value: Any = None
    description: str | None = None

    @property
    def signature(self) -> str:
        return type_signature(self.type_name, self.is_list, self.is_optional, self.is_item_optional)

    @property
    def is_required(self) -> bool:
        """Non-null arguments without a default must be supplied by the caller."""
        return not self.is_optional and self.default_value is None


@dataclass
class IRField:
    """Represents a field in an object, interface or input type."""
    name: str
    type_name: str
    is_list: bool = False
    is_optional: bool = True  # True if nullable (no ! in GraphQL)
    is_item_optional: bool = True
    description: str | None = None
    arguments: list[IRArgument] = field(default_factory=list)
    default_value: Any = None

    @property
    def signature(self) -> str:
        return type_signature(self.type_name, self.is_list, self.is_optional, self.is_item_optional)

    @property
    def required_arguments(self) -> list[IRArgument]:
        return [arg for arg in self.arguments if arg.is_required]


@dataclass
class IREnumValue:
    """Represents a single value in a GraphQL enum."""
    name: str
    description: str | None = None


@dataclass
class IRType:
    """Represents any named GraphQL type.

    Which of the collections are populated depends on ``kind``: object,
    interface and input types carry ``fields``; enums carry ``values``;
    unions carry ``possible_types``.
    """
    name: str
    kind: TypeKind
    fields: list[IRField] = field(default_factory=list)
    values: list[IREnumValue] = field(default_factory=list)
    possible_types: list[str] = field(default_factory=list)
    interfaces: list[str] = field(default_factory=list)
    description: str | None = None

    @property
    def is_leaf(self) -> bool:
        """Scalars and enums take no sub-selection."""
        return self.kind in (TypeKind.SCALAR, TypeKind.ENUM)

    @property
    def is_composite(self) -> bool:
        return self.kind in (TypeKind.OBJECT, TypeKind.INTERFACE, TypeKind.UNION)

    def get_field(self, name: str) -> IRField | None:
        for ir_field in self.fields:
            if ir_field.name == name:
                return ir_field
        return None


@dataclass
class IRSchema:
    """Complete intermediate representation of a GraphQL schema."""
    types: dict[str, IRType] = field(default_factory=dict)
    query_type: str | None = None
    mutation_type: str | None = None
    subscription_type: str | None = None

    def __post_init__(self):
        for name in BUILTIN_SCALARS:
            self.types.setdefault(name, IRType(name=name, kind=TypeKind.SCALAR))

    def get_type_by_name(self, name: str) -> IRType | None:
        """Look up a named type."""
        return self.types.get(name)

    def add_type(self, ir_type: IRType):
        self.types[ir_type.name] = ir_type

    def root_type_name(self, kind: str) -> str | None:
        """Return the root type name for 'query', 'mutation' or 'subscription'."""
        return {
            "query": self.query_type,
            "mutation": self.mutation_type,
            "subscription": self.subscription_type,
        }[kind]


def to_snake_case(name: str) -> str:
    """Convert camelCase to snake_case."""
    s1 = re.sub('(.)([A-Z][a-z]+)', r'\1_\2', name)
    return re.sub('([a-z0-9])([A-Z])', r'\1_\2', s1).lower()


def to_pascal_case(name: str) -> str:
    """Convert snake_case or camelCase to PascalCase."""
    snake = to_snake_case(name)
    return "".join(word.capitalize() for word in snake.split("_"))
