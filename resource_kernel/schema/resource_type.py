"""
Resource Types — named, immutable schemas.

A ResourceType is an ordered table of AttributeDescriptors, an ordered list
of ConvergenceActions, the nested child types reachable from its instances,
and the adapter that loads current state.

Composition contract: descriptor tables are merged in order, and a later
descriptor with the same name replaces the earlier one entirely (no merging
of individual options). The replaced descriptor keeps its original position.
"""

from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from resource_kernel.errors import SchemaError, UnknownAttributeError
from resource_kernel.schema.attribute import AttributeDescriptor


class AttributeSet:
    """An immutable, named table of descriptors that types can include."""

    def __init__(self, name: str, descriptors: Iterable[AttributeDescriptor] = ()):
        self.name = name
        self.descriptors: Tuple[AttributeDescriptor, ...] = tuple(
            compose_descriptors(descriptors)
        )

    def __iter__(self):
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    def __repr__(self) -> str:
        return f"<AttributeSet {self.name}: {', '.join(d.name for d in self.descriptors)}>"


def compose_descriptors(*tables: Iterable[AttributeDescriptor]) -> List[AttributeDescriptor]:
    """Merge descriptor tables; the last descriptor declared under a name wins."""
    merged: Dict[str, AttributeDescriptor] = {}
    for table in tables:
        for descriptor in table:
            merged[descriptor.name] = descriptor
    return list(merged.values())


class ConvergenceAction:
    """An ordered unit of side effects, triggered when an owned attribute changes."""

    def __init__(
        self,
        name: str,
        owns: Tuple[str, ...],
        body: Callable[[Any, Any], Any],
    ):
        self.name = name
        self.owns = owns
        self.body = body

    def __repr__(self) -> str:
        return f"<ConvergenceAction {self.name} owns={list(self.owns)}>"

    @property
    def owns_everything(self) -> bool:
        return not self.owns

    def triggered_by(self, changed: Iterable[str], all_names: Iterable[str]) -> List[str]:
        """The changed attributes this action owns, in change order."""
        owned: FrozenSet[str] = frozenset(self.owns or all_names)
        return [name for name in changed if name in owned]


class NestedType:
    """A child resource type exposed as an accessor on parent instances."""

    def __init__(
        self,
        name: str,
        resource_type: "ResourceType",
        inherit: Optional[Dict[str, str]] = None,
    ):
        self.name = name
        self.resource_type = resource_type
        self.inherit = dict(inherit or {})


class ResourceType:
    """A compiled resource schema. Build these with SchemaBuilder."""

    def __init__(
        self,
        name: str,
        attributes: Iterable[AttributeDescriptor],
        actions: Iterable[ConvergenceAction] = (),
        nested: Iterable[NestedType] = (),
        loader: Optional[Callable[[Any], Any]] = None,
        description: str = "",
    ):
        self.name = name
        self.description = description
        self.attributes: Tuple[AttributeDescriptor, ...] = tuple(attributes)
        self.actions: Tuple[ConvergenceAction, ...] = tuple(actions)
        self.loader = loader
        self._by_name: Dict[str, AttributeDescriptor] = {
            d.name: d for d in self.attributes
        }
        self.nested: Dict[str, NestedType] = {}
        for child in nested:
            self.nested[child.name] = child
        self._validate()

    def __repr__(self) -> str:
        return f"<ResourceType {self.name}>"

    def _validate(self) -> None:
        if len(self._by_name) != len(self.attributes):
            raise SchemaError(f"{self.name}: duplicate attribute names")

        action_names = set()
        for action in self.actions:
            if action.name in action_names:
                raise SchemaError(f"{self.name}: duplicate convergence action {action.name!r}")
            action_names.add(action.name)
            for owned in action.owns:
                if owned not in self._by_name:
                    raise SchemaError(
                        f"{self.name}: action {action.name!r} owns unknown attribute {owned!r}"
                    )
                if self._by_name[owned].identity:
                    raise SchemaError(
                        f"{self.name}: action {action.name!r} cannot own identity attribute {owned!r}"
                    )

        for descriptor in self.attributes:
            if descriptor.relative_to and descriptor.relative_to not in self._by_name:
                raise SchemaError(
                    f"{self.name}.{descriptor.name}: relative_to names unknown attribute "
                    f"{descriptor.relative_to!r}"
                )

        for child in self.nested.values():
            if child.name in self._by_name:
                raise SchemaError(
                    f"{self.name}: nested type {child.name!r} clashes with an attribute"
                )
            for child_attr, parent_attr in child.inherit.items():
                if parent_attr not in self._by_name:
                    raise SchemaError(
                        f"{self.name}: nested {child.name!r} inherits unknown attribute {parent_attr!r}"
                    )
                if not child.resource_type.has_attribute(child_attr):
                    raise SchemaError(
                        f"{child.resource_type.name} has no attribute {child_attr!r} to inherit into"
                    )

    def has_attribute(self, name: str) -> bool:
        return name in self._by_name

    def attribute(self, name: str) -> AttributeDescriptor:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownAttributeError(self.name, name) from None

    @property
    def attribute_names(self) -> List[str]:
        return [d.name for d in self.attributes]

    @property
    def identity_attributes(self) -> List[AttributeDescriptor]:
        return [d for d in self.attributes if d.identity]

    @property
    def required_identity_attributes(self) -> List[AttributeDescriptor]:
        return [d for d in self.attributes if d.identity and d.is_required]

    def action(self, name: str) -> ConvergenceAction:
        for action in self.actions:
            if action.name == name:
                return action
        raise KeyError(f"{self.name} has no convergence action {name!r}")

    def route_scalar(
        self, value: Any, instance: Any = None, exclude: Iterable[str] = ()
    ) -> Optional[AttributeDescriptor]:
        """
        Pick the identity attribute a lone scalar refers to. Attributes with a
        shape predicate are tried first, then the rest, each in declaration
        order; the first whose predicate and type constraint accept it wins.
        """
        skip = set(exclude)
        candidates = [d for d in self.identity_attributes if d.name not in skip]
        if len(candidates) == 1 and candidates[0].matches is None:
            return candidates[0]
        candidates.sort(key=lambda d: d.matches is None)
        for descriptor in candidates:
            if descriptor.accepts(value, instance):
                return descriptor
        return None
