"""
Schema Builder — the declaration surface for resource types.

    builder = SchemaBuilder("file")
    builder.attribute("path", PathKind, identity=True)
    builder.attribute("content", String)
    builder.load(load_file)
    builder.converge("content", write_content)
    File = builder.build()

Calls are recorded in order. include() merges a shared AttributeSet at
the point it is called; later declarations of the same name replace it.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from resource_kernel.errors import SchemaError
from resource_kernel.schema.attribute import AttributeDescriptor, declare
from resource_kernel.schema.kinds import Kind
from resource_kernel.schema.resource_type import (
    AttributeSet,
    ConvergenceAction,
    NestedType,
    ResourceType,
    compose_descriptors,
)


class SchemaBuilder:
    """Collects declarations and compiles them into an immutable ResourceType."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._tables: List[List[AttributeDescriptor]] = []
        self._actions: List[ConvergenceAction] = []
        self._nested: List[NestedType] = []
        self._loader: Optional[Callable[[Any], Any]] = None

    def attribute(self, name: str, kind: Optional[Kind] = None, **options: Any) -> "SchemaBuilder":
        """Declare an attribute. See resource_kernel.schema.attribute.declare."""
        self._tables.append([declare(name, kind, **options)])
        return self

    def add(self, descriptor: AttributeDescriptor) -> "SchemaBuilder":
        """Add an already-declared descriptor."""
        self._tables.append([descriptor])
        return self

    def include(self, *attribute_sets: AttributeSet) -> "SchemaBuilder":
        """Compose shared descriptor sets; later sets override earlier same-named ones."""
        for attribute_set in attribute_sets:
            self._tables.append(list(attribute_set))
        return self

    def load(self, loader: Callable[[Any], Any]) -> "SchemaBuilder":
        """Register the adapter that reads current state into an observed record."""
        self._loader = loader
        return self

    def converge(
        self,
        owns: Union[str, Sequence[str]],
        body: Callable[[Any, Any], Any],
        name: Optional[str] = None,
    ) -> "SchemaBuilder":
        """
        Declare a convergence action owning one or more attributes.
        An empty owns list means the action owns every attribute.
        """
        if isinstance(owns, str):
            owned = (owns,)
        else:
            owned = tuple(owns)
        if name is None:
            name = "_".join(owned) if owned else "all"
        self._actions.append(ConvergenceAction(name, owned, body))
        return self

    def nested(
        self,
        name: str,
        resource_type: ResourceType,
        inherit: Optional[Dict[str, str]] = None,
    ) -> "SchemaBuilder":
        """Expose a child resource type as an accessor on instances of this type."""
        if not name.isidentifier():
            raise SchemaError(f"Nested type name {name!r} is not a valid identifier")
        self._nested.append(NestedType(name, resource_type, inherit))
        return self

    def build(self) -> ResourceType:
        return ResourceType(
            name=self.name,
            attributes=compose_descriptors(*self._tables),
            actions=self._actions,
            nested=self._nested,
            loader=self._loader,
            description=self.description,
        )


def resource_type(
    name: str,
    attributes: Sequence[AttributeDescriptor] = (),
    includes: Sequence[AttributeSet] = (),
    actions: Sequence[tuple] = (),
    load: Optional[Callable[[Any], Any]] = None,
    description: str = "",
) -> ResourceType:
    """
    One-call form of SchemaBuilder. Included sets come first, then the
    type's own attributes; actions are (owns, body) or (owns, body, name).
    """
    builder = SchemaBuilder(name, description)
    builder.include(*includes)
    for descriptor in attributes:
        builder.add(descriptor)
    for action in actions:
        builder.converge(*action)
    if load is not None:
        builder.load(load)
    return builder.build()
