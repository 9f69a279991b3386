"""
Diff — desired versus observed, attribute by attribute.

Only dirty (explicitly set, non-identity) attributes are compared. Equality
is structural and follows the attribute's kind: scalars by value, "set"
collections by element set, "sequence" collections element by element.
When the entity does not exist, every dirty attribute is a change.
"""

from typing import Any, List, Set, Tuple

from resource_kernel.models.report import AttributeChange
from resource_kernel.schema.attribute import ABSENT


def values_equal(descriptor: Any, desired: Any, observed: Any) -> bool:
    """Structural equality under the attribute's declared collection semantics."""
    if observed is ABSENT:
        return False
    if desired is None or observed is None:
        return desired is observed
    return descriptor.kind.equal(desired, observed)


def compute_changes(instance: Any) -> List[AttributeChange]:
    """Changed attributes of an instance, in declaration order. Loads observed state."""
    observed = instance.observed()
    changes = []
    for name in instance.dirty:
        descriptor = instance.resource_type.attribute(name)
        desired = instance.desired_values[name]
        current = observed.get(name) if observed.exists else ABSENT
        if values_equal(descriptor, desired, current):
            continue
        changes.append(
            AttributeChange(
                name=name,
                desired=to_plain(desired),
                observed=None if current is ABSENT else to_plain(current),
                observed_absent=current is ABSENT,
            )
        )
    return changes


def set_delta(desired: Any, observed: Any, name: str) -> Tuple[Set[Any], Set[Any]]:
    """
    (additions, removals) between the desired and observed values of a
    collection attribute. An absent observed value counts as empty.
    """
    wanted = desired.get(name)
    current = observed.get(name)
    wanted_set = set() if wanted is ABSENT or wanted is None else set(wanted)
    current_set = set() if current is ABSENT or current is None else set(current)
    return wanted_set - current_set, current_set - wanted_set


def to_plain(value: Any) -> Any:
    """A JSON-friendly rendering of an attribute value for reports."""
    from resource_kernel.runtime.instance import ResourceInstance

    if isinstance(value, ResourceInstance):
        return value.label
    if isinstance(value, (set, frozenset)):
        items = [to_plain(v) for v in value]
        try:
            return sorted(items)
        except TypeError:
            return items
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    return value
