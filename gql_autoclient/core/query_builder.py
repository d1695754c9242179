"""Query builder for GraphQL operations.

Walks the type graph from a root type and produces one builder per root
field. Each builder renders a complete operation string from call-time
arguments; the selection set itself is computed once, when the builders
are generated.
"""

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from fnmatch import fnmatchcase
from types import MappingProxyType
from typing import Any
from uuid import UUID

from graphql.language import (
    BooleanValueNode,
    EnumValueNode,
    FloatValueNode,
    IntValueNode,
    ListValueNode,
    NameNode,
    NullValueNode,
    ObjectFieldNode,
    ObjectValueNode,
    StringValueNode,
    ValueNode,
    print_ast,
)
from pydantic import BaseModel

from .errors import MissingArgument, SchemaInconsistency
from .ir import IRField, IRSchema, IRType, TypeKind, to_pascal_case
from .scalars import ScalarRegistry

logger = logging.getLogger(__name__)

ExclusionPredicate = Callable[[str, str], bool]

_NAME = re.compile(r"[_A-Za-z][_0-9A-Za-z]*")


def _name_node(name: str) -> NameNode:
    if not _NAME.fullmatch(name):
        raise ValueError(f"{name!r} is not a valid GraphQL name")
    return NameNode(value=name)


class OperationKind(str, Enum):
    """Kinds of root operations."""
    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class OperationDescriptor:
    """A generated operation: its name, kind, argument shape and builder.

    ``args_shape`` maps each declared argument name to its SDL type
    signature, e.g. ``{"id": "ID!"}``.
    """
    name: str
    kind: OperationKind
    args_shape: Mapping[str, str]
    build: Callable[[Mapping[str, Any] | None], str] = field(repr=False, compare=False)
    return_type: str = ""
    description: str | None = None

    def __call__(self, args: Mapping[str, Any] | None = None) -> str:
        return self.build(args)

    @property
    def required_args(self) -> list[str]:
        return [name for name, sig in self.args_shape.items() if sig.endswith("!")]


def include_all(type_name: str, field_name: str) -> bool:
    """Exclusion predicate that keeps every field."""
    return False


class FieldExclusion:
    """Exclusion predicate built from ``Type.field`` patterns.

    Both halves accept shell-style wildcards, so ``*.password`` drops the
    ``password`` field from every type.

    Example:
        exclude = FieldExclusion(["User.password", "*.internalNotes"])
        exclude("User", "password")  # True
    """

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns: list[tuple[str, str]] = []
        for pattern in patterns:
            type_pattern, sep, field_pattern = pattern.partition(".")
            if not sep or not type_pattern or not field_pattern:
                raise ValueError(f"Invalid exclusion pattern '{pattern}', expected Type.field")
            self.patterns.append((type_pattern, field_pattern))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "FieldExclusion":
        """Create from ``{"User": ["password"], ...}``."""
        return cls(f"{type_name}.{name}" for type_name, names in mapping.items() for name in names)

    def __call__(self, type_name: str, field_name: str) -> bool:
        return any(
            fnmatchcase(type_name, type_pattern) and fnmatchcase(field_name, field_pattern)
            for type_pattern, field_pattern in self.patterns
        )


class QueryBuilder:
    """Builds operation builders from a schema's type graph."""

    indent = "  "

    def __init__(
        self,
        schema: IRSchema,
        exclude: ExclusionPredicate | None = None,
        scalars: ScalarRegistry | None = None,
        max_depth: int | None = None,
    ):
        """Initialize with schema for type lookups.

        Args:
            schema: The type graph to walk
            exclude: Predicate ``(type_name, field_name) -> bool`` deciding which
                fields are left out of selection sets; an excluded root field
                gets no builder at all
            scalars: Serializers for custom scalar argument values
            max_depth: Maximum nesting of object selections below an operation field
        """
        self.schema = schema
        self.exclude = exclude or include_all
        self.scalars = scalars or ScalarRegistry()
        self.max_depth = max_depth

    def build_operations(self, root_name: str, kind: OperationKind) -> dict[str, OperationDescriptor]:
        """Generate one descriptor per field of the root type.

        Raises:
            SchemaInconsistency: If the root type is missing or any type
                reachable from it cannot be resolved
        """
        root = self.schema.get_type_by_name(root_name)
        if root is None:
            raise SchemaInconsistency(f"Root type '{root_name}' does not exist in the schema")
        if root.kind is not TypeKind.OBJECT:
            raise SchemaInconsistency(f"Root type '{root_name}' is a {root.kind.value}, not an object type")

        self._check_references(root)

        operations = {}
        for ir_field in root.fields:
            if self.exclude(root.name, ir_field.name):
                logger.debug("skipping excluded root field %s.%s", root.name, ir_field.name)
                continue
            operations[ir_field.name] = self._build_descriptor(ir_field, kind)
        logger.debug("generated %d %s builders from %s", len(operations), kind.value, root_name)
        return operations

    def _check_references(self, root: IRType):
        """Resolve every type reachable from the root, failing on the first dangling one."""
        seen = {root.name}
        pending = [root]
        while pending:
            ir_type = pending.pop()
            refs = [(f.type_name, f"{ir_type.name}.{f.name}") for f in ir_type.fields]
            refs += [
                (arg.type_name, f"{ir_type.name}.{f.name}({arg.name})")
                for f in ir_type.fields
                for arg in f.arguments
            ]
            refs += [(name, f"{ir_type.name} member") for name in ir_type.possible_types]
            for type_name, where in refs:
                if type_name not in seen:
                    seen.add(type_name)
                    pending.append(self._resolve(type_name, where))

    def _resolve(self, type_name: str, where: str) -> IRType:
        ir_type = self.schema.get_type_by_name(type_name)
        if ir_type is None:
            raise SchemaInconsistency(f"{where} references unknown type '{type_name}'")
        return ir_type

    def _build_descriptor(self, ir_field: IRField, kind: OperationKind) -> OperationDescriptor:
        return_type = self._resolve(ir_field.type_name, ir_field.name)
        selection: list[str] = []
        if return_type.is_composite:
            selection = self._build_return_fields(return_type, path=(), depth=2)
            if not selection:
                selection = [f"{self.indent * 2}__typename"]
        elif not return_type.is_leaf:
            raise SchemaInconsistency(f"{ir_field.name} returns input type '{return_type.name}'")

        op_name = to_pascal_case(ir_field.name)

        def build(args: Mapping[str, Any] | None = None) -> str:
            return self._render_operation(kind, op_name, ir_field, selection, args or {})

        return OperationDescriptor(
            name=ir_field.name,
            kind=kind,
            args_shape=MappingProxyType({arg.name: arg.signature for arg in ir_field.arguments}),
            build=build,
            return_type=ir_field.signature,
            description=ir_field.description,
        )

    def _render_operation(
        self,
        kind: OperationKind,
        op_name: str,
        ir_field: IRField,
        selection: list[str],
        args: Mapping[str, Any],
    ) -> str:
        """Assemble the operation: header, root field with arguments, selection."""
        rendered = []
        for arg in ir_field.arguments:
            value = args.get(arg.name)
            if value is None:
                if arg.is_required:
                    raise MissingArgument(ir_field.name, arg.name)
                continue
            node = self._value_node(value, arg.type_name, arg.is_list)
            rendered.append(f"{arg.name}: {print_ast(node)}")

        field_call = ir_field.name
        if rendered:
            field_call = f"{field_call}({', '.join(rendered)})"

        lines = [f"{kind.value} {op_name} {{"]
        if selection:
            lines.append(f"{self.indent}{field_call} {{")
            lines.extend(selection)
            lines.append(f"{self.indent}}}")
        else:
            lines.append(f"{self.indent}{field_call}")
        lines.append("}")
        return "\n".join(lines)

    def _build_return_fields(self, type_def: IRType, path: tuple[str, ...], depth: int) -> list[str]:
        """Build the selection lines for a composite type.

        ``path`` holds the types already on the current recursion path; a
        field leading back into one of them is left out.
        """
        indent = self.indent * depth
        path = path + (type_def.name,)
        level = depth - 1

        if type_def.kind is TypeKind.UNION:
            lines = [f"{indent}__typename"]
            for member_name in type_def.possible_types:
                member = self._resolve(member_name, f"{type_def.name} member")
                if member.name in path:
                    continue
                sub = self._build_return_fields(member, path, depth + 1)
                if sub:
                    lines.append(f"{indent}... on {member.name} {{")
                    lines.extend(sub)
                    lines.append(f"{indent}}}")
            return lines

        lines = []
        for ir_field in type_def.fields:
            if self.exclude(type_def.name, ir_field.name):
                continue
            if ir_field.required_arguments:
                continue

            field_type = self._resolve(ir_field.type_name, f"{type_def.name}.{ir_field.name}")
            if field_type.is_leaf:
                lines.append(f"{indent}{ir_field.name}")
                continue
            if not field_type.is_composite:
                raise SchemaInconsistency(
                    f"{type_def.name}.{ir_field.name} returns input type '{field_type.name}'"
                )
            if field_type.name in path:
                logger.debug("truncating cyclic field %s.%s", type_def.name, ir_field.name)
                continue
            if self.max_depth is not None and level >= self.max_depth:
                continue

            sub = self._build_return_fields(field_type, path, depth + 1)
            if sub:
                lines.append(f"{indent}{ir_field.name} {{")
                lines.extend(sub)
                lines.append(f"{indent}}}")
        return lines

    def _value_node(self, value: Any, type_name: str, is_list: bool) -> ValueNode:
        """Render a value against its declared argument type."""
        if value is None:
            return NullValueNode()
        if isinstance(value, BaseModel):
            value = value.model_dump(by_alias=True, exclude_none=True)

        if is_list and isinstance(value, (list, tuple)):
            return ListValueNode(values=tuple(self._value_node(v, type_name, False) for v in value))

        ir_type = self.schema.get_type_by_name(type_name)
        if ir_type is None:
            return self._literal(value)

        if ir_type.kind is TypeKind.ENUM:
            if isinstance(value, Enum):
                value = value.value if isinstance(value.value, str) else value.name
            if not isinstance(value, str) or value not in {v.name for v in ir_type.values}:
                raise ValueError(f"{value!r} is not a value of enum {ir_type.name}")
            return EnumValueNode(value=value)

        if ir_type.kind is TypeKind.INPUT_OBJECT and isinstance(value, Mapping):
            fields = []
            for key, item in value.items():
                input_field = ir_type.get_field(key)
                if input_field is None:
                    node = self._literal(item)
                else:
                    node = self._value_node(item, input_field.type_name, input_field.is_list)
                fields.append(ObjectFieldNode(name=_name_node(key), value=node))
            return ObjectValueNode(fields=tuple(fields))

        return self._literal(self.scalars.serialize(type_name, value))

    def _literal(self, value: Any) -> ValueNode:
        """Render a value whose GraphQL type is not known from the schema."""
        if value is None:
            return NullValueNode()
        if isinstance(value, BaseModel):
            value = value.model_dump(by_alias=True, exclude_none=True)
        if isinstance(value, bool):
            return BooleanValueNode(value=value)
        if isinstance(value, int):
            return IntValueNode(value=str(value))
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError(f"Cannot render non-finite float {value!r} as a GraphQL literal")
            return FloatValueNode(value=repr(value))
        if isinstance(value, str):
            return StringValueNode(value=value)
        if isinstance(value, Enum):
            return EnumValueNode(value=_name_node(value.name).value)
        if isinstance(value, (datetime, date)):
            return StringValueNode(value=value.isoformat())
        if isinstance(value, UUID):
            return StringValueNode(value=str(value))
        if isinstance(value, Mapping):
            return ObjectValueNode(
                fields=tuple(
                    ObjectFieldNode(name=_name_node(str(k)), value=self._literal(v))
                    for k, v in value.items()
                )
            )
        if isinstance(value, (list, tuple)):
            return ListValueNode(values=tuple(self._literal(v) for v in value))
        raise TypeError(f"Cannot render {type(value).__name__} as a GraphQL literal")


def build_operations(
    schema: IRSchema,
    root_name: str,
    exclude: ExclusionPredicate | None = None,
    *,
    kind: OperationKind | None = None,
    scalars: ScalarRegistry | None = None,
    max_depth: int | None = None,
) -> dict[str, OperationDescriptor]:
    """Generate operation descriptors for every field of ``root_name``.

    When ``kind`` is omitted it is taken from whichever schema root
    ``root_name`` is declared as, defaulting to query.
    """
    if kind is None:
        kind = OperationKind.QUERY
        for candidate in OperationKind:
            if schema.root_type_name(candidate.value) == root_name:
                kind = candidate
                break
    builder = QueryBuilder(schema, exclude=exclude, scalars=scalars, max_depth=max_depth)
    return builder.build_operations(root_name, kind)
