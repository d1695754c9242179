"""Registry of generated operations.

Holds the descriptors produced by the query builder, grouped by kind,
for invocation and for capability introspection ("what queries does
this client support").
"""

from collections.abc import Iterable, Iterator

from .ir import IRSchema
from .query_builder import ExclusionPredicate, OperationDescriptor, OperationKind, build_operations
from .scalars import ScalarRegistry


class OperationRegistry:
    """Read-only mapping from operation name to OperationDescriptor.

    Names are unique within a kind. A schema may reuse a name across kinds
    (a ``user`` query and a ``user`` subscription); ``get`` without a kind
    then resolves in query, mutation, subscription order.
    """

    def __init__(self, descriptors: Iterable[OperationDescriptor] = ()):
        self._by_kind: dict[OperationKind, dict[str, OperationDescriptor]] = {
            kind: {} for kind in OperationKind
        }
        for descriptor in descriptors:
            bucket = self._by_kind[descriptor.kind]
            if descriptor.name in bucket:
                raise ValueError(f"Duplicate {descriptor.kind.value} operation '{descriptor.name}'")
            bucket[descriptor.name] = descriptor

    @classmethod
    def from_schema(
        cls,
        schema: IRSchema,
        exclude: ExclusionPredicate | None = None,
        *,
        kinds: Iterable[OperationKind] = tuple(OperationKind),
        scalars: ScalarRegistry | None = None,
        max_depth: int | None = None,
    ) -> "OperationRegistry":
        """Generate every enabled kind whose root type the schema declares.

        Raises:
            SchemaInconsistency: If any enabled root cannot be generated; no
                partial registry is returned.
        """
        descriptors: list[OperationDescriptor] = []
        for kind in kinds:
            root_name = schema.root_type_name(kind.value)
            if root_name is None:
                continue
            operations = build_operations(
                schema, root_name, exclude, kind=kind, scalars=scalars, max_depth=max_depth
            )
            descriptors.extend(operations.values())
        return cls(descriptors)

    def list_by_kind(self, kind: OperationKind | str) -> list[str]:
        """Return operation names of one kind, in schema order."""
        return list(self._by_kind[OperationKind(kind)])

    def get(self, name: str, kind: OperationKind | str | None = None) -> OperationDescriptor | None:
        if kind is not None:
            return self._by_kind[OperationKind(kind)].get(name)
        for bucket in self._by_kind.values():
            if name in bucket:
                return bucket[name]
        return None

    def __getitem__(self, name: str) -> OperationDescriptor:
        descriptor = self.get(name)
        if descriptor is None:
            raise KeyError(name)
        return descriptor

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self) -> Iterator[OperationDescriptor]:
        for bucket in self._by_kind.values():
            yield from bucket.values()

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._by_kind.values())
