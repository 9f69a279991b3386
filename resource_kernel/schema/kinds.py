"""
Kinds — type constraints for resource attributes.

A Kind normalizes a raw input (coerce) and then checks it (check). Coercion
failures raise TypeError or ValueError, which the attribute descriptor turns
into a CoercionError; check() returns a failure description, which the
descriptor turns into a TypeMismatchError naming the expected kinds.

Collection kinds declare their diff semantics: "set" compares by element
set, "sequence" by element order.

Each kind also owns relative_to resolution: paths are joined and
normalized, URIs are resolved with urljoin.
"""

import posixpath
import re
from pathlib import PurePath
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import ParseResult, SplitResult, urljoin, urlsplit


class Kind:
    """A named type constraint with coercion and extra validators."""

    collection: Optional[str] = None

    def __init__(
        self,
        name: str,
        python_types: Tuple[type, ...] = (),
        validators: Optional[List[Tuple[str, Callable[[Any], bool]]]] = None,
    ):
        self.name = name
        self.python_types = python_types
        self.validators = list(validators or [])

    def __repr__(self) -> str:
        return f"<Kind {self.name}>"

    # Kinds are shared, never mutated in place; must() returns a new one.
    def __copy__(self) -> "Kind":
        return self

    def __deepcopy__(self, memo: dict) -> "Kind":
        return self

    @property
    def expected(self) -> List[str]:
        """Names of the kinds a value may be, for error messages."""
        return [self.name]

    def coerce(self, value: Any, instance: Any = None) -> Any:
        return value

    def check(self, value: Any) -> Optional[str]:
        """Return None if value is valid, otherwise a failure description."""
        if self.python_types and not isinstance(value, self.python_types):
            return f"must be {self.name}"
        for description, predicate in self.validators:
            if not predicate(value):
                return f"must {description}"
        return None

    def must(self, description: str, predicate: Callable[[Any], bool]) -> "Kind":
        """Return a copy of this kind with an extra validation rule."""
        clone = self._copy()
        clone.validators = self.validators + [(description, predicate)]
        return clone

    def equal(self, desired: Any, observed: Any) -> bool:
        return desired == observed

    def resolve_relative(self, base: Any, value: Any) -> Any:
        """Absolutize value against base (relative_to). Paths join and normalize."""
        return posixpath.normpath(posixpath.join(str(base), str(value)))

    def _copy(self) -> "Kind":
        clone = object.__new__(type(self))
        clone.__dict__.update(self.__dict__)
        return clone


class _Anything(Kind):
    def __init__(self):
        super().__init__("anything")


class _String(Kind):
    def __init__(self):
        super().__init__("string", (str,))


class _Boolean(Kind):
    def __init__(self):
        super().__init__("boolean", (bool,))


class _Float(Kind):
    def __init__(self):
        super().__init__("float", (float,))

    def coerce(self, value: Any, instance: Any = None) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, str):
            return float(value)
        return value


class Integer(Kind):
    """
    Integers. Strings are parsed in `base` (10 if unset), so a file mode
    may be written as Integer(base=8) and set to "0644".
    """

    def __init__(self, base: Optional[int] = None):
        if base is not None and not 2 <= base <= 36:
            raise ValueError(f"Base {base} strings not supported")
        name = "integer" if base is None else f"base-{base} integer"
        super().__init__(name, (int,))
        self.base = base

    def _pattern(self) -> "re.Pattern":
        base = self.base or 10
        if base <= 10:
            return re.compile(rf"^[-+]?[0-{base - 1}]+$")
        top = chr(ord("a") + base - 11)
        return re.compile(rf"^[-+]?[0-9a-{top}]+$", re.IGNORECASE)

    def coerce(self, value: Any, instance: Any = None) -> Any:
        if isinstance(value, str):
            if not self._pattern().match(value.strip()):
                raise ValueError(f"must be a base {self.base or 10} string")
            return int(value.strip(), self.base or 10)
        return value

    def check(self, value: Any) -> Optional[str]:
        if isinstance(value, bool):
            return f"must be {self.name}"
        return super().check(value)


class _Path(Kind):
    """Filesystem-like paths, stored as str."""

    def __init__(self):
        super().__init__("path", (str,))

    def coerce(self, value: Any, instance: Any = None) -> Any:
        if isinstance(value, PurePath):
            return str(value)
        return value


class _Uri(Kind):
    """
    URLs, stored as str. Relative references resolve against a base URL,
    which is treated as a directory: "https://host/api" + "v1" gives
    "https://host/api/v1". Absolute URLs and "/rooted" paths follow urljoin.
    """

    def __init__(self):
        super().__init__("uri", (str,))

    def coerce(self, value: Any, instance: Any = None) -> Any:
        if isinstance(value, (SplitResult, ParseResult)):
            return value.geturl()
        return value

    def check(self, value: Any) -> Optional[str]:
        failure = super().check(value)
        if failure:
            return failure
        try:
            urlsplit(value)
        except ValueError:
            return "must be a valid URI"
        return None

    def resolve_relative(self, base: Any, value: Any) -> Any:
        base = str(base)
        if not base.endswith("/"):
            base += "/"
        return urljoin(base, str(self.coerce(value)))


def _iterable_items(value: Any) -> Iterable:
    if isinstance(value, (str, bytes)) or isinstance(value, dict):
        raise TypeError(f"expected a collection, got {type(value).__name__}")
    try:
        return iter(value)
    except TypeError:
        raise TypeError(f"expected a collection, got {type(value).__name__}")


class SetOf(Kind):
    """Unordered collection; stored as frozenset, compared by element set."""

    collection = "set"

    def __init__(self, item: Optional[Kind] = None):
        self.item = item or Anything
        super().__init__(f"set of {self.item.name}", (frozenset,))

    def coerce(self, value: Any, instance: Any = None) -> Any:
        if isinstance(value, frozenset) and self.item is Anything:
            return value
        return frozenset(
            _coerce_item(self.item, v, instance) for v in _iterable_items(value)
        )

    def check(self, value: Any) -> Optional[str]:
        failure = super().check(value)
        if failure:
            return failure
        return _check_items(self.item, value)

    def equal(self, desired: Any, observed: Any) -> bool:
        try:
            return set(desired) == set(observed)
        except TypeError:
            return False


class ListOf(Kind):
    """Ordered collection; stored as tuple, compared element by element."""

    collection = "sequence"

    def __init__(self, item: Optional[Kind] = None):
        self.item = item or Anything
        super().__init__(f"list of {self.item.name}", (tuple,))

    def coerce(self, value: Any, instance: Any = None) -> Any:
        return tuple(
            _coerce_item(self.item, v, instance) for v in _iterable_items(value)
        )

    def check(self, value: Any) -> Optional[str]:
        failure = super().check(value)
        if failure:
            return failure
        return _check_items(self.item, value)

    def equal(self, desired: Any, observed: Any) -> bool:
        try:
            return tuple(desired) == tuple(observed)
        except TypeError:
            return False


class MapOf(Kind):
    """Mapping of string keys to values of one kind."""

    def __init__(self, item: Optional[Kind] = None):
        self.item = item or Anything
        super().__init__(f"map of {self.item.name}", (dict,))

    def coerce(self, value: Any, instance: Any = None) -> Any:
        if not hasattr(value, "items"):
            raise TypeError(f"expected a mapping, got {type(value).__name__}")
        return {str(k): _coerce_item(self.item, v, instance) for k, v in value.items()}

    def check(self, value: Any) -> Optional[str]:
        failure = super().check(value)
        if failure:
            return failure
        return _check_items(self.item, value.values())


class OneOf(Kind):
    """A value of any of several kinds; the first kind that accepts it wins."""

    def __init__(self, *kinds: Kind):
        if not kinds:
            raise ValueError("OneOf needs at least one kind")
        self.kinds = kinds
        super().__init__(" or ".join(k.name for k in kinds))

    @property
    def expected(self) -> List[str]:
        names: List[str] = []
        for kind in self.kinds:
            names.extend(kind.expected)
        return names

    def coerce(self, value: Any, instance: Any = None) -> Any:
        for kind in self.kinds:
            try:
                candidate = kind.coerce(value, instance)
            except (TypeError, ValueError):
                continue
            if kind.check(candidate) is None:
                return candidate
        return value

    def check(self, value: Any) -> Optional[str]:
        if any(kind.check(value) is None for kind in self.kinds):
            return super().check(value)
        return f"must be {self.name}"


class Reference(Kind):
    """
    A reference to another resource. Scalars, tuples and mappings are
    resolved through the referring instance's run context, so references
    to the same identity share one instance.
    """

    def __init__(self, resource_type: Any):
        self.resource_type = resource_type
        super().__init__(f"{resource_type.name} resource")

    def coerce(self, value: Any, instance: Any = None) -> Any:
        from resource_kernel.runtime.instance import ResourceInstance

        if value is None or isinstance(value, ResourceInstance):
            return value
        if instance is None:
            raise TypeError(f"cannot resolve {self.resource_type.name} without a run context")
        context = instance.context
        if isinstance(value, dict):
            return context.resolve(self.resource_type, **value)
        if isinstance(value, tuple):
            return context.resolve(self.resource_type, *value)
        return context.resolve(self.resource_type, value)

    def check(self, value: Any) -> Optional[str]:
        from resource_kernel.runtime.instance import ResourceInstance

        if not isinstance(value, ResourceInstance) or value.resource_type is not self.resource_type:
            return f"must be a {self.name}"
        return super().check(value)


def _coerce_item(kind: Kind, value: Any, instance: Any) -> Any:
    value = kind.coerce(value, instance)
    failure = kind.check(value)
    if failure:
        raise TypeError(f"element {value!r} {failure}")
    return value


def _check_items(kind: Kind, values: Iterable) -> Optional[str]:
    for value in values:
        failure = kind.check(value)
        if failure:
            return f"contain only {kind.name} ({value!r} {failure})"
    return None


Anything = _Anything()
String = _String()
Boolean = _Boolean()
Float = _Float()
PathKind = _Path()
Uri = _Uri()

KINDS: Dict[str, Kind] = {
    "anything": Anything,
    "string": String,
    "boolean": Boolean,
    "float": Float,
    "integer": Integer(),
    "path": PathKind,
    "uri": Uri,
}
