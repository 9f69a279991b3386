"""
Attribute Descriptors — the compiled form of one declared attribute.

Behavioral Contract:
- Setting a value runs relative_to resolution, then the custom coerce
  function, then the kind's own coercion, then the kind's check.
- Coercion failures raise CoercionError; check failures raise
  TypeMismatchError naming the attribute, expected kinds and actual value.
- Defaults are literals or lazy() thunks. A thunk receives the instance as
  its execution context; memoization happens on the instance.
- Descriptors are immutable. Composition replaces them, never edits them.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict

from resource_kernel.errors import CoercionError, TypeMismatchError
from resource_kernel.schema.kinds import Anything, Kind


class _Absent:
    """Sentinel for "no value": unset attribute or non-existent resource."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_Absent, ())

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


ABSENT = _Absent()


class Lazy:
    """A default computed on first read, given the instance as context."""

    def __init__(self, fn: Callable[[Any], Any]):
        if not callable(fn):
            raise TypeError("lazy() needs a callable")
        self.fn = fn

    def __repr__(self) -> str:
        return f"lazy({getattr(self.fn, '__name__', 'fn')})"

    def evaluate(self, instance: Any) -> Any:
        return self.fn(instance)


def lazy(fn: Callable[[Any], Any]) -> Lazy:
    """Wrap fn(instance) as a lazily evaluated, memoized default."""
    return Lazy(fn)


class AttributeDescriptor(BaseModel):
    """One declared attribute of a resource type."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    kind: Kind = Anything
    identity: bool = False
    default: Any = ABSENT
    coerce: Optional[Callable[[Any], Any]] = None
    load_value: Optional[Callable[[Any], Any]] = None
    relative_to: Optional[str] = None
    matches: Optional[Callable[[Any], bool]] = None   # Scalar shape test for identity routing
    required: Optional[bool] = None
    nullable: Optional[bool] = None
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not ABSENT

    @property
    def is_required(self) -> bool:
        """Identity attributes without a default are required unless told otherwise."""
        if self.required is not None:
            return self.required
        return self.identity and not self.has_default

    @property
    def is_nullable(self) -> bool:
        if self.nullable is not None:
            return self.nullable
        return self.default is None

    @property
    def collection(self) -> Optional[str]:
        return self.kind.collection

    def coerce_value(self, value: Any, instance: Any = None) -> Any:
        """Normalize and validate a value for this attribute."""
        if value is None:
            if self.is_nullable:
                return None
            raise TypeMismatchError(self.name, self.kind.expected, value)

        try:
            if self.relative_to and instance is not None:
                value = self._resolve_relative(value, instance)
            if self.coerce is not None:
                value = self.coerce(value)
            value = self.kind.coerce(value, instance)
        except (TypeError, ValueError) as e:
            if isinstance(e, (CoercionError, TypeMismatchError)):
                raise
            raise CoercionError(self.name, value, str(e)) from e

        failure = self.kind.check(value)
        if failure:
            raise TypeMismatchError(self.name, self.kind.expected, value)
        return value

    def accepts(self, value: Any, instance: Any = None) -> bool:
        """Whether a raw scalar could be assigned to this attribute."""
        if self.matches is not None:
            try:
                if not self.matches(value):
                    return False
            except (TypeError, ValueError):
                return False
        try:
            self.coerce_value(value, instance)
        except (CoercionError, TypeMismatchError):
            return False
        return True

    def compute_default(self, instance: Any) -> Any:
        """Evaluate the default. The caller memoizes the result."""
        if isinstance(self.default, Lazy):
            return self.default.evaluate(instance)
        return self.default

    def _resolve_relative(self, value: Any, instance: Any) -> Any:
        base = instance.get(self.relative_to)
        if base is ABSENT or base is None:
            return value
        return self.kind.resolve_relative(base, value)


def declare(name: str, kind: Optional[Kind] = None, **options: Any) -> AttributeDescriptor:
    """
    Declare an attribute.

    Options: identity, default, coerce, load_value, relative_to, matches,
    required, nullable, description.
    """
    if not name or not name.isidentifier():
        raise ValueError(f"Attribute name {name!r} is not a valid identifier")
    return AttributeDescriptor(name=name, kind=kind or Anything, **options)
