"""Unit tests for the query builder engine."""

from datetime import datetime
from enum import Enum

import pytest
from graphql import FieldNode, InlineFragmentNode, parse
from graphql.language import EnumValueNode
from graphql.utilities import value_from_ast_untyped
from pydantic import BaseModel, ConfigDict, Field

from gql_autoclient.core.errors import MissingArgument, SchemaInconsistency
from gql_autoclient.core.parser import parse_sdl
from gql_autoclient.core.query_builder import (
    FieldExclusion,
    OperationKind,
    QueryBuilder,
    build_operations,
)


# =============================================================================
# Helpers
# =============================================================================


def root_field(query: str) -> FieldNode:
    """Parse an operation and return its single root field."""
    document = parse(query)
    return document.definitions[0].selection_set.selections[0]


def field_names(node) -> list[str]:
    if node.selection_set is None:
        return []
    return [s.name.value for s in node.selection_set.selections if isinstance(s, FieldNode)]


def child(node, name: str) -> FieldNode:
    for selection in node.selection_set.selections:
        if isinstance(selection, FieldNode) and selection.name.value == name:
            return selection
    raise AssertionError(f"{name} not selected")


def argument_values(node: FieldNode) -> dict:
    return {arg.name.value: value_from_ast_untyped(arg.value) for arg in node.arguments}


class Role(Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class PostFilterModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    author_id: str | None = Field(default=None, alias="authorId")
    roles: list[str] | None = None


@pytest.fixture
def queries(blog_schema):
    return build_operations(blog_schema, "Query", FieldExclusion(["User.password"]))


# =============================================================================
# Tests: Operation rendering
# =============================================================================


class TestGetUser:
    """The getUser(id: ID!): User example."""

    def test_missing_required_argument(self, queries):
        with pytest.raises(MissingArgument) as excinfo:
            queries["getUser"].build({})
        assert excinfo.value.operation == "getUser"
        assert excinfo.value.argument == "id"

    def test_none_counts_as_missing(self, queries):
        with pytest.raises(MissingArgument):
            queries["getUser"].build({"id": None})

    def test_exact_rendering(self, queries):
        assert queries["getUser"].build({"id": "42"}) == (
            "query GetUser {\n"
            '  getUser(id: "42") {\n'
            "    id\n"
            "    name\n"
            "    role\n"
            "    posts {\n"
            "      id\n"
            "      title\n"
            "      createdAt\n"
            "    }\n"
            "  }\n"
            "}"
        )

    def test_selection_excludes_ignored_field(self, queries):
        node = root_field(queries["getUser"].build({"id": "42"}))
        assert field_names(node) == ["id", "name", "role", "posts"]
        assert "password" not in field_names(node)

    def test_fields_with_required_arguments_are_skipped(self, queries):
        node = root_field(queries["getUser"].build({"id": "42"}))
        assert "secret" not in field_names(node)

    def test_descriptor_metadata(self, queries):
        descriptor = queries["getUser"]
        assert descriptor.kind is OperationKind.QUERY
        assert dict(descriptor.args_shape) == {"id": "ID!"}
        assert descriptor.required_args == ["id"]
        assert descriptor.return_type == "User"

    def test_descriptor_is_callable(self, queries):
        assert queries["getUser"]({"id": "1"}) == queries["getUser"].build({"id": "1"})


class TestCycles:
    """Traversal must terminate on cyclic type graphs."""

    def test_self_referential_type(self):
        schema = parse_sdl("""
            type Node { id: ID! parent: Node children: [Node] }
            type Query { node(id: ID!): Node }
        """)
        operations = build_operations(schema, "Query")
        node = root_field(operations["node"].build({"id": "1"}))
        assert field_names(node) == ["id"]

    def test_mutual_recursion_truncates_at_reentry(self):
        schema = parse_sdl("""
            type A { id: ID! b: B }
            type B { id: ID! a: A }
            type Query { a: A }
        """)
        node = root_field(build_operations(schema, "Query")["a"].build())
        assert field_names(node) == ["id", "b"]
        assert field_names(child(node, "b")) == ["id"]

    def test_cyclic_field_is_omitted_not_emptied(self, queries):
        node = root_field(queries["getUser"].build({"id": "1"}))
        assert "friends" not in field_names(node)
        assert "bestFriend" not in field_names(node)
        assert "author" not in field_names(child(node, "posts"))

    def test_type_with_only_cyclic_fields_falls_back_to_typename(self):
        schema = parse_sdl("""
            type Loop { next: Loop }
            type Query { loop: Loop }
        """)
        query = build_operations(schema, "Query")["loop"].build()
        assert field_names(root_field(query)) == ["__typename"]


class TestExclusion:
    """Exclusion predicates are consulted at every traversal step."""

    def test_excluded_field_never_selected(self, blog_schema):
        exclude = FieldExclusion(["User.password"])
        for name, descriptor in build_operations(blog_schema, "Query", exclude).items():
            args = {"id": "1", "term": "x", "role": "ADMIN"}
            assert "password" not in descriptor.build(args), name

    def test_wildcard_type(self):
        exclude = FieldExclusion(["*.password"])
        assert exclude("User", "password")
        assert exclude("Admin", "password")
        assert not exclude("User", "name")

    def test_from_mapping(self):
        exclude = FieldExclusion.from_mapping({"User": ["password", "role"]})
        assert exclude("User", "role")
        assert not exclude("Post", "role")

    def test_invalid_pattern(self):
        with pytest.raises(ValueError):
            FieldExclusion(["password"])

    def test_custom_predicate_sees_type_and_field(self, blog_schema):
        seen = set()

        def exclude(type_name, field_name):
            seen.add((type_name, field_name))
            return field_name == "title"

        operations = build_operations(blog_schema, "Query", exclude)
        assert ("Post", "title") in seen
        assert "title" not in operations["listPosts"].build()

    def test_excluded_root_field_gets_no_builder(self, blog_schema):
        operations = build_operations(blog_schema, "Query", FieldExclusion(["Query.getUser"]))
        assert "getUser" not in operations
        assert "listPosts" in operations

    def test_no_caching_across_predicates(self, blog_schema):
        first = build_operations(blog_schema, "Query", FieldExclusion(["User.name"]))
        second = build_operations(blog_schema, "Query", FieldExclusion(["User.role"]))
        assert "name" not in field_names(root_field(first["getUser"].build({"id": "1"})))
        assert "name" in field_names(root_field(second["getUser"].build({"id": "1"})))


class TestArguments:
    """Argument values are rendered as GraphQL literals."""

    def test_optional_arguments_are_omitted(self, queries):
        node = root_field(queries["listPosts"].build())
        assert not node.arguments

    def test_input_object_literal(self, queries):
        query = queries["listPosts"].build({
            "filter": {"authorId": "1", "roles": ["ADMIN"], "since": datetime(2024, 1, 15, 10, 30)},
            "limit": 5,
        })
        node = root_field(query)
        assert argument_values(node) == {
            "filter": {"authorId": "1", "roles": ["ADMIN"], "since": "2024-01-15T10:30:00"},
            "limit": 5,
        }
        roles = node.arguments[0].value.fields[1].value
        assert isinstance(roles.values[0], EnumValueNode)

    def test_enum_argument(self, queries):
        node = root_field(queries["usersByRole"].build({"role": Role.ADMIN}))
        assert isinstance(node.arguments[0].value, EnumValueNode)
        assert node.arguments[0].value.value == "ADMIN"

    def test_enum_argument_as_string(self, queries):
        node = root_field(queries["usersByRole"].build({"role": "MEMBER"}))
        assert node.arguments[0].value.value == "MEMBER"

    @pytest.mark.parametrize("role", ["OWNER", "ADMIN) { id } evil(x: 1", 1])
    def test_enum_argument_outside_enum_rejected(self, queries, role):
        with pytest.raises(ValueError, match="enum Role"):
            queries["usersByRole"].build({"role": role})

    def test_enum_inside_input_object_rejected(self, queries):
        with pytest.raises(ValueError, match="enum Role"):
            queries["listPosts"].build({"filter": {"roles": ["ADMIN", "ADMIN } x"]}})

    def test_input_object_key_must_be_a_name(self, queries):
        with pytest.raises(ValueError, match="not a valid GraphQL name"):
            queries["listPosts"].build({"filter": {"authorId": "1", "x: 1) { id } evil": 2}})

    def test_single_value_for_list_argument(self, queries):
        node = root_field(queries["listPosts"].build({"filter": {"roles": "MEMBER"}}))
        assert argument_values(node) == {"filter": {"roles": "MEMBER"}}

    def test_pydantic_input(self, queries):
        node = root_field(queries["listPosts"].build({"filter": PostFilterModel(author_id="7")}))
        assert argument_values(node) == {"filter": {"authorId": "7"}}

    def test_strings_are_escaped(self, queries):
        tricky = 'a "quoted"\nvalue \\ with backslash'
        node = root_field(queries["getUser"].build({"id": tricky}))
        assert argument_values(node) == {"id": tricky}

    def test_numbers_and_booleans(self):
        schema = parse_sdl("type Query { f(a: Int, b: Float, c: Boolean, d: [Int]): String }")
        query = build_operations(schema, "Query")["f"].build({"a": 3, "b": 2.5, "c": False, "d": [1, 2]})
        assert argument_values(root_field(query)) == {"a": 3, "b": 2.5, "c": False, "d": [1, 2]}

    def test_arguments_follow_declared_order(self):
        schema = parse_sdl("type Query { f(first: Int, second: Int): String }")
        query = build_operations(schema, "Query")["f"].build({"second": 2, "first": 1})
        assert "f(first: 1, second: 2)" in query

    def test_undeclared_arguments_are_ignored(self, queries):
        node = root_field(queries["getUser"].build({"id": "1", "bogus": True}))
        assert argument_values(node) == {"id": "1"}

    def test_non_finite_float_rejected(self):
        schema = parse_sdl("type Query { f(x: Float): String }")
        with pytest.raises(ValueError):
            build_operations(schema, "Query")["f"].build({"x": float("nan")})

    def test_builders_keep_no_state(self, queries):
        first = queries["getUser"].build({"id": "1"})
        queries["getUser"].build({"id": "2"})
        assert queries["getUser"].build({"id": "1"}) == first


class TestShapes:
    """Rendering of non-object return types and other root kinds."""

    def test_scalar_root_field(self, queries):
        assert queries["serverTime"].build() == "query ServerTime {\n  serverTime\n}"

    def test_union_uses_inline_fragments(self, queries):
        node = root_field(queries["search"].build({"term": "graph"}))
        fragments = [s for s in node.selection_set.selections if isinstance(s, InlineFragmentNode)]
        assert field_names(node) == ["__typename"]
        assert [f.type_condition.name.value for f in fragments] == ["User", "Post"]

    def test_mutation_kind_inferred(self, blog_schema):
        operations = build_operations(blog_schema, "Mutation")
        query = operations["createPost"].build({"title": "Hi", "authorId": "1"})
        assert operations["createPost"].kind is OperationKind.MUTATION
        assert query.startswith("mutation CreatePost {")
        parse(query)

    def test_subscription_kind(self, blog_schema):
        operations = build_operations(blog_schema, "Subscription")
        assert operations["postAdded"].build().startswith("subscription PostAdded {")

    def test_max_depth_limits_nesting(self, blog_schema):
        builder = QueryBuilder(blog_schema, max_depth=1)
        operations = builder.build_operations("Query", OperationKind.QUERY)
        node = root_field(operations["getUser"].build({"id": "1"}))
        assert field_names(node) == ["id", "name", "password", "role"]

    def test_every_output_reparses(self, blog_schema):
        args = {"id": "1", "term": "x", "role": "ADMIN", "title": "t", "authorId": "2"}
        for root in ("Query", "Mutation", "Subscription"):
            for descriptor in build_operations(blog_schema, root).values():
                parse(descriptor.build(args))


class TestSchemaInconsistency:
    """Generation fails fast on broken schemas."""

    def test_missing_root(self, blog_schema):
        with pytest.raises(SchemaInconsistency):
            build_operations(blog_schema, "Nope")

    def test_root_must_be_object(self, blog_schema):
        with pytest.raises(SchemaInconsistency):
            build_operations(blog_schema, "Role")

    def test_dangling_return_type(self):
        schema = parse_sdl("type Query { ok: String broken: Missing }")
        with pytest.raises(SchemaInconsistency, match="Missing"):
            build_operations(schema, "Query")

    def test_dangling_nested_type(self):
        schema = parse_sdl("type User { id: ID! team: Team } type Query { me: User }")
        with pytest.raises(SchemaInconsistency, match="User.team"):
            build_operations(schema, "Query")

    def test_dangling_argument_type(self):
        schema = parse_sdl("type Query { find(filter: NoSuchInput): String }")
        with pytest.raises(SchemaInconsistency):
            build_operations(schema, "Query")

    def test_dangling_reference_behind_excluded_field(self):
        schema = parse_sdl("type User { id: ID! team: Team } type Query { me: User }")
        with pytest.raises(SchemaInconsistency):
            build_operations(schema, "Query", FieldExclusion(["User.team"]))
