"""GraphQL schema loading using graphql-core.

Parses SDL files (``.graphql`` / ``.graphqls``) or introspection JSON
and produces an IRSchema.
"""

import json
import logging
import os
from typing import Any

from graphql import (
    EnumTypeDefinitionNode,
    EnumTypeExtensionNode,
    GraphQLError,
    InputObjectTypeDefinitionNode,
    InputObjectTypeExtensionNode,
    InterfaceTypeDefinitionNode,
    InterfaceTypeExtensionNode,
    ListTypeNode,
    NamedTypeNode,
    NonNullTypeNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    ScalarTypeDefinitionNode,
    SchemaDefinitionNode,
    SchemaExtensionNode,
    TypeNode,
    UnionTypeDefinitionNode,
    UnionTypeExtensionNode,
    parse,
    parse_value,
)
from graphql.utilities import value_from_ast_untyped

from .ir import IRArgument, IREnumValue, IRField, IRSchema, IRType, TypeKind

logger = logging.getLogger(__name__)

SDL_SUFFIXES = (".graphql", ".graphqls")

_DEFAULT_ROOTS = {
    "query": "Query",
    "mutation": "Mutation",
    "subscription": "Subscription",
}

_EXTENSION_KINDS = {
    ObjectTypeExtensionNode: TypeKind.OBJECT,
    InterfaceTypeExtensionNode: TypeKind.INTERFACE,
    InputObjectTypeExtensionNode: TypeKind.INPUT_OBJECT,
    EnumTypeExtensionNode: TypeKind.ENUM,
    UnionTypeExtensionNode: TypeKind.UNION,
}


class SchemaParser:
    """Parses GraphQL SDL schema files into IR."""

    def __init__(self, schema_path: str):
        """Initialize a parser with a path to a schema file or directory."""
        self.schema_path = schema_path
        self.ir = IRSchema()
        self.current_file = ""
        self._roots: dict[str, str] = {}

    def parse_all(self) -> IRSchema:
        """Parse all schema files and return the complete IR."""
        for file_path in self._collect_schema_files():
            self.current_file = os.path.basename(file_path)
            with open(file_path) as f:
                self.parse_text(f.read())
        return self.finish()

    def parse_text(self, content: str):
        """Parse one SDL document into the IR being built."""
        try:
            ast = parse(content)
        except GraphQLError as e:
            logger.error("Error parsing %s: %s", self.current_file or "<sdl>", e)
            raise
        self._process_ast(ast)

    def finish(self) -> IRSchema:
        """Resolve root operation types once every document is parsed."""
        for kind, default_name in _DEFAULT_ROOTS.items():
            name = self._roots.get(kind)
            if name is None and default_name in self.ir.types:
                name = default_name
            setattr(self.ir, f"{kind}_type", name)
        logger.debug(
            "parsed schema: %d types, roots query=%s mutation=%s subscription=%s",
            len(self.ir.types), self.ir.query_type, self.ir.mutation_type, self.ir.subscription_type,
        )
        return self.ir

    def _collect_schema_files(self) -> list[str]:
        """Collect all SDL files from path."""
        files = []
        if os.path.isfile(self.schema_path):
            if self.schema_path.endswith(SDL_SUFFIXES):
                files.append(self.schema_path)
        else:
            for root, _, filenames in os.walk(self.schema_path):
                for filename in filenames:
                    if filename.endswith(SDL_SUFFIXES):
                        files.append(os.path.join(root, filename))
        return sorted(files)

    def _process_ast(self, ast):
        """Process GraphQL AST and populate IR."""
        for definition in ast.definitions:
            if isinstance(definition, (SchemaDefinitionNode, SchemaExtensionNode)):
                for op_type in definition.operation_types or ():
                    self._roots[op_type.operation.value] = op_type.type.name.value
            elif isinstance(definition, ScalarTypeDefinitionNode):
                self._add(definition, TypeKind.SCALAR)
            elif isinstance(definition, EnumTypeDefinitionNode):
                self._add(definition, TypeKind.ENUM)
            elif isinstance(definition, InterfaceTypeDefinitionNode):
                self._add(definition, TypeKind.INTERFACE)
            elif isinstance(definition, ObjectTypeDefinitionNode):
                self._add(definition, TypeKind.OBJECT)
            elif isinstance(definition, UnionTypeDefinitionNode):
                self._add(definition, TypeKind.UNION)
            elif isinstance(definition, InputObjectTypeDefinitionNode):
                self._add(definition, TypeKind.INPUT_OBJECT)
            elif type(definition) in _EXTENSION_KINDS:
                self._add(definition, _EXTENSION_KINDS[type(definition)])

    def _add(self, node, kind: TypeKind):
        """Add a type definition, merging into an existing one from an extension."""
        name = node.name.value
        existing = self.ir.types.get(name)
        if existing is None:
            existing = IRType(name=name, kind=kind)
            self.ir.add_type(existing)
        if getattr(node, "description", None):
            existing.description = node.description.value

        existing_names = {f.name for f in existing.fields}
        for ir_field in self._process_fields(getattr(node, "fields", None) or ()):
            if ir_field.name not in existing_names:
                existing.fields.append(ir_field)
                existing_names.add(ir_field.name)

        for value in getattr(node, "values", None) or ():
            existing.values.append(
                IREnumValue(
                    name=value.name.value,
                    description=value.description.value if value.description else None,
                )
            )
        if kind is TypeKind.UNION:
            existing.possible_types.extend(t.name.value for t in node.types or ())
        else:
            existing.interfaces.extend(i.name.value for i in getattr(node, "interfaces", None) or ())

    def _process_fields(self, field_nodes) -> list[IRField]:
        """Process field (or input value) definitions into the IRField list."""
        fields = []
        for node in field_nodes:
            type_info = self._get_type_info(node.type)
            args = [
                IRArgument(
                    name=arg_node.name.value,
                    default_value=self._default_value(arg_node),
                    description=arg_node.description.value if arg_node.description else None,
                    **self._get_type_info(arg_node.type),
                )
                for arg_node in getattr(node, "arguments", None) or ()
            ]
            fields.append(
                IRField(
                    name=node.name.value,
                    description=node.description.value if node.description else None,
                    arguments=args,
                    default_value=self._default_value(node),
                    **type_info,
                )
            )
        return fields

    @staticmethod
    def _default_value(node) -> Any:
        default = getattr(node, "default_value", None)
        if default is None:
            return None
        return value_from_ast_untyped(default)

    @staticmethod
    def _get_type_info(type_node: TypeNode) -> dict[str, Any]:
        """Extract the type name and list / non-null flags from a type node."""
        is_optional = True
        is_item_optional = True
        is_list = False

        # NonNull wrapper means not optional
        if isinstance(type_node, NonNullTypeNode):
            is_optional = False
            type_node = type_node.type

        # List wrapper; nested lists [[Type]] collapse into one level
        while isinstance(type_node, ListTypeNode):
            is_list = True
            type_node = type_node.type
            if isinstance(type_node, NonNullTypeNode):
                is_item_optional = False
                type_node = type_node.type

        assert isinstance(type_node, NamedTypeNode), f"Expected NamedTypeNode, got {type(type_node)}"

        return {
            "type_name": type_node.name.value,
            "is_list": is_list,
            "is_optional": is_optional,
            "is_item_optional": is_item_optional,
        }


def parse_sdl(*documents: str) -> IRSchema:
    """Build an IRSchema from one or more SDL strings."""
    parser = SchemaParser("")
    for document in documents:
        parser.parse_text(document)
    return parser.finish()


def parse_introspection(result: dict[str, Any]) -> IRSchema:
    """Build an IRSchema from an introspection query result.

    Accepts the full response (``{"data": {"__schema": ...}}``), the
    ``data`` object, or the ``__schema`` object itself.
    """
    schema = result.get("data", result)
    schema = schema.get("__schema", schema)

    def root(key: str) -> str | None:
        entry = schema.get(key)
        return entry["name"] if entry else None

    ir = IRSchema(
        query_type=root("queryType"),
        mutation_type=root("mutationType"),
        subscription_type=root("subscriptionType"),
    )
    for type_data in schema.get("types", []):
        name = type_data["name"]
        if name.startswith("__"):
            continue
        ir.add_type(
            IRType(
                name=name,
                kind=TypeKind(type_data["kind"]),
                fields=[
                    _introspected_field(f)
                    for f in (type_data.get("fields") or []) + (type_data.get("inputFields") or [])
                ],
                values=[
                    IREnumValue(name=v["name"], description=v.get("description"))
                    for v in type_data.get("enumValues") or []
                ],
                possible_types=[t["name"] for t in type_data.get("possibleTypes") or []],
                interfaces=[t["name"] for t in type_data.get("interfaces") or []],
                description=type_data.get("description"),
            )
        )
    return ir


def _introspected_type_info(type_ref: dict[str, Any]) -> dict[str, Any]:
    is_optional = True
    is_item_optional = True
    is_list = False
    if type_ref["kind"] == "NON_NULL":
        is_optional = False
        type_ref = type_ref["ofType"]
    while type_ref["kind"] == "LIST":
        is_list = True
        type_ref = type_ref["ofType"]
        if type_ref["kind"] == "NON_NULL":
            is_item_optional = False
            type_ref = type_ref["ofType"]
    return {
        "type_name": type_ref["name"],
        "is_list": is_list,
        "is_optional": is_optional,
        "is_item_optional": is_item_optional,
    }


def _introspected_default(value: str | None) -> Any:
    if value is None:
        return None
    return value_from_ast_untyped(parse_value(value))


def _introspected_field(data: dict[str, Any]) -> IRField:
    return IRField(
        name=data["name"],
        description=data.get("description"),
        arguments=[
            IRArgument(
                name=arg["name"],
                default_value=_introspected_default(arg.get("defaultValue")),
                description=arg.get("description"),
                **_introspected_type_info(arg["type"]),
            )
            for arg in data.get("args") or []
        ],
        default_value=_introspected_default(data.get("defaultValue")),
        **_introspected_type_info(data["type"]),
    )


def load_schema(path: str) -> IRSchema:
    """Load a schema from an introspection ``.json`` file or SDL file/directory."""
    if os.path.isfile(path) and path.endswith(".json"):
        with open(path) as f:
            return parse_introspection(json.load(f))
    return SchemaParser(path).parse_all()
