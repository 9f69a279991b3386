"""
Identity Cache — one live instance per identity per run.

Keys are (resource type, ordered tuple of coerced identity values). The
type object itself is part of the key, so two types that happen to share
a name never share instances. Equal tuples of one type map to the same
instance for the lifetime of the run.

Single-threaded: the cache is mutated only by RunContext.resolve. If
resolution is ever made concurrent, insertion must become
create-at-most-once per key.
"""

from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from resource_kernel.errors import ResourceKernelError

IdentityKey = Tuple[Any, Tuple[Any, ...]]


class IdentityCache:
    """Run-scoped map from identity key to resource instance."""

    def __init__(self):
        self._instances: Dict[IdentityKey, Any] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, key: IdentityKey) -> bool:
        return key in self._instances

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._instances.values()))

    def get(self, key: IdentityKey) -> Optional[Any]:
        return self._instances.get(key)

    def get_or_create(self, key: IdentityKey, factory: Callable[[], Any]) -> Tuple[Any, bool]:
        """Return (instance, created)."""
        _check_hashable(key)
        existing = self._instances.get(key)
        if existing is not None:
            return existing, False
        instance = factory()
        self._instances[key] = instance
        return instance, True

    def evict(self, key: IdentityKey) -> bool:
        """Forget an instance so the next resolve creates a fresh one."""
        if key in self._instances:
            del self._instances[key]
            return True
        return False

    def of_type(self, type_name: str) -> List[Any]:
        """Instances of every type declared under a name."""
        return [
            i for (resource_type, _), i in self._instances.items()
            if resource_type.name == type_name
        ]

    def clear(self) -> None:
        self._instances.clear()


def _check_hashable(key: Hashable) -> None:
    try:
        hash(key)
    except TypeError as e:
        raise ResourceKernelError(
            f"Identity values must be hashable after coercion: {key!r}"
        ) from e
