"""
Resource Instance — desired state for one identity.

Behavioral Contract:
- Identity values are fixed when the instance is created by RunContext.
  Changing one afterwards raises IdentityImmutableError.
- Only explicitly set, non-identity attributes are dirty; only dirty
  attributes take part in the diff.
- Reading an attribute that was not set returns its current value (from the
  observed record, loading it if needed), else its default, else ABSENT.
- Defaults are evaluated at most once per instance and memoized.
- Setting values is not allowed while the instance is converging.

Within one run, instances are only ever created through RunContext.resolve,
so two references to the same identity are the same object.
"""

from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from resource_kernel.errors import (
    IdentityImmutableError,
    ResourceStateError,
    UnknownAttributeError,
)
from resource_kernel.models.policy import ConvergePolicy
from resource_kernel.models.report import ResourceState
from resource_kernel.runtime.observed import ObservedInstance, load_observed
from resource_kernel.schema.attribute import ABSENT, Lazy

_REOPENED_STATES = (
    ResourceState.CREATED,
    ResourceState.CONVERGED,
    ResourceState.CONVERGED_WITH_WARNINGS,
    ResourceState.CONVERGE_FAILED,
)


class ResourceInstance:
    """A mutable bag of desired values, backed by a lazily loaded observed record."""

    def __init__(
        self,
        resource_type: Any,
        context: Any,
        parent: Optional["ResourceInstance"] = None,
        inherit: Optional[Dict[str, str]] = None,
    ):
        self.resource_type = resource_type
        self.context = context
        self.parent = parent
        self.state = ResourceState.CREATED
        self._settled_state = ResourceState.CREATED
        self._settled_desired: Dict[str, Any] = {}
        self._inherit = dict(inherit or {})
        self._identity: Dict[str, Any] = {}
        self._identity_defined = False
        self._desired: Dict[str, Any] = {}
        self._defaults: Dict[str, Any] = {}
        self._observed: Optional[ObservedInstance] = None
        self._load_error = None
        self._policy: ConvergePolicy = context.config.default_policy

    def __repr__(self) -> str:
        return f"<ResourceInstance {self.label} ({self.state.value})>"

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __getattr__(self, name: str) -> Any:
        # Nested resource types are exposed as accessors: registry.account("bob")
        if name.startswith("_"):
            raise AttributeError(name)
        resource_type = self.__dict__.get("resource_type")
        if resource_type is not None and name in resource_type.nested:
            return partial(self.child, name)
        raise AttributeError(
            f"{type(self).__name__} has no attribute {name!r}; "
            "use instance[name] for resource attributes"
        )

    # --- Identity ---

    @property
    def identity(self) -> Dict[str, Any]:
        return dict(self._identity)

    @property
    def identity_key(self) -> Tuple[Any, ...]:
        return tuple(self._identity[d.name] for d in self.resource_type.identity_attributes)

    @property
    def label(self) -> str:
        """Short display name, e.g. file[/tmp/x.txt] or user[username=bob, email=None]."""
        values = [
            (name, value.label if isinstance(value, ResourceInstance) else value)
            for name, value in self._identity.items()
        ]
        if len(values) == 1:
            return f"{self.resource_type.name}[{values[0][1]}]"
        inner = ", ".join(f"{name}={value!r}" for name, value in values)
        return f"{self.resource_type.name}[{inner}]"

    def _define_identity(self, values: Dict[str, Any]) -> None:
        """Bind identity values (coerced) and defaults. Called once, by RunContext."""
        for descriptor in self.resource_type.identity_attributes:
            if descriptor.name in values:
                value = descriptor.coerce_value(values[descriptor.name], self)
            elif descriptor.has_default:
                value = self.default_value(descriptor.name)
                if value is not None:
                    value = descriptor.coerce_value(value, self)
            else:
                raise TypeError(
                    f"{self.resource_type.name}: required identity attribute "
                    f"{descriptor.name!r} was not given"
                )
            self._identity[descriptor.name] = value
        self._identity_defined = True

    # --- Desired values ---

    def get(self, name: str) -> Any:
        descriptor = self.resource_type.attribute(name)
        if descriptor.identity:
            if name in self._identity:
                value = self._identity[name]
                if value is None and self.resource_type.loader is not None:
                    # The loader may fill in identity values the caller left unset.
                    return self.observed().get(name)
                return value
            return self.default_value(name)
        if name in self._desired:
            return self._desired[name]
        return self.current_value(name)

    def set(self, name: str, value: Any) -> Any:
        descriptor = self.resource_type.attribute(name)
        if self.state == ResourceState.CONVERGING:
            raise ResourceStateError(
                f"{self.label}: cannot set {name} while converging", self
            )
        coerced = descriptor.coerce_value(value, self)
        if descriptor.identity:
            if not self._identity_defined or coerced != self._identity.get(name):
                raise IdentityImmutableError(
                    f"{self.label}: identity attribute {name} cannot be changed "
                    f"after the resource is created",
                    attribute=name,
                )
            return coerced
        if self.state in _REOPENED_STATES:
            self._settled_state = self.state
            self._settled_desired = dict(self._desired)
            self.state = ResourceState.DESIRED_SET
        self._desired[name] = coerced
        return coerced

    def update(self, **values: Any) -> "ResourceInstance":
        for name, value in values.items():
            self.set(name, value)
        return self

    def is_set(self, name: str) -> bool:
        self.resource_type.attribute(name)
        return name in self._desired

    @property
    def dirty(self) -> List[str]:
        """Explicitly set, non-identity attributes, in declaration order."""
        return [d.name for d in self.resource_type.attributes if d.name in self._desired]

    @property
    def desired_values(self) -> Dict[str, Any]:
        return dict(self._desired)

    def reset(self, name: Optional[str] = None) -> None:
        """
        Forget desired values (one, or all). Identity values are never reset.
        Once the desired values are back to what they were when the instance
        last settled (or none are left), it returns to that settled state.
        """
        if self.state == ResourceState.CONVERGING:
            raise ResourceStateError(f"{self.label}: cannot reset while converging", self)
        if name is None:
            self._desired.clear()
        elif self.resource_type.attribute(name).identity:
            raise IdentityImmutableError(
                f"{self.label}: identity attribute {name} cannot be reset", attribute=name
            )
        else:
            self._desired.pop(name, None)
        if self.state == ResourceState.DESIRED_SET and (
            not self._desired or self._desired == self._settled_desired
        ):
            self.state = self._settled_state

    def default_value(self, name: str) -> Any:
        """
        The attribute's default, evaluated at most once per instance.

        Values inherited from the parent and lazy() results go through the
        attribute's coercion and type check, like assigned values.
        """
        if name in self._defaults:
            return self._defaults[name]
        descriptor = self.resource_type.attribute(name)
        value = ABSENT
        computed = False
        parent_attr = self._inherit.get(name)
        if parent_attr is not None and self.parent is not None:
            value = self.parent.get(parent_attr)
            computed = True
        if value is ABSENT and descriptor.has_default:
            value = descriptor.compute_default(self)
            computed = isinstance(descriptor.default, Lazy)
        if computed and value is not ABSENT:
            value = descriptor.coerce_value(value, self)
        self._defaults[name] = value
        return value

    def current_value(self, name: str) -> Any:
        """The value ignoring what was set here: observed, else default."""
        value = self.observed().get(name)
        if value is ABSENT:
            return self.default_value(name)
        return value

    # --- Observed state ---

    def observed(self) -> ObservedInstance:
        """The observed record, loaded on first call and memoized."""
        if self._observed is not None:
            return self._observed
        return load_observed(self)

    @property
    def observed_loaded(self) -> bool:
        return self._observed is not None or self._load_error is not None

    @property
    def exists(self) -> bool:
        return self.observed().exists

    # --- Policy ---

    @property
    def policy(self) -> ConvergePolicy:
        return self._policy

    def configure(self, **options: Any) -> "ResourceInstance":
        """Set policy options, e.g. configure(never_remove=True)."""
        merged = self._policy.model_dump()
        merged.update(options)
        self._policy = ConvergePolicy(**merged)
        return self

    # --- Nesting ---

    def child(self, name: str, *args: Any, **values: Any) -> "ResourceInstance":
        """Resolve a nested resource in this run, with identity defaults from this instance."""
        nested = self.resource_type.nested.get(name)
        if nested is None:
            raise UnknownAttributeError(self.resource_type.name, name)
        child_type = nested.resource_type
        for child_attr, parent_attr in nested.inherit.items():
            if child_type.attribute(child_attr).identity and child_attr not in values:
                values[child_attr] = self.get(parent_attr)
        return self.context.resolve_nested(self, nested, args, values)

    # --- Converge ---

    def converge(self) -> Any:
        """Converge this instance through its run context."""
        return self.context.converge(self)

    def to_dict(self, only: str = "known") -> Dict[str, Any]:
        """
        Attribute values as a dict.

        only:
          known    -- identity, observed values already loaded, and desired values
          explicit -- identity and desired values
          changed  -- desired values that differ from current ones
          all      -- every attribute, loading and defaulting as needed
        """
        if only == "explicit":
            return {**self._identity, **self._desired}
        if only == "changed":
            from resource_kernel.converge.diff import compute_changes

            return {c.name: self._desired[c.name] for c in compute_changes(self)}
        if only == "all":
            return {name: self.get(name) for name in self.resource_type.attribute_names}
        if only != "known":
            raise ValueError(f"Unknown to_dict mode {only!r}")
        known = dict(self._identity)
        if self._observed is not None:
            known.update(self._observed.to_dict())
        known.update(self._desired)
        return known
