"""
Observed-State Loader.

An ObservedInstance is the record of what is currently true for one
identity, as reported by the resource type's adapter.

Behavioral Contract:
- The type's loader runs at most once per instance per run, and only when
  a current value is first needed.
- The loader receives the observed record with identity values bound. It
  may set values on it, call mark_absent(), or return a LoadResult (or a
  mapping with "exists" and "attributes").
- Non-existence is a successful outcome. Any other failure propagates as
  LoadError and is remembered: the loader is never retried on the same
  instance.
- An attribute's own load_value runs only the first time that attribute is
  read on an existing record that does not already hold it.
"""

from typing import Any, Dict, List, Mapping

from pydantic import BaseModel

from resource_kernel.errors import IdentityImmutableError, LoadError
from resource_kernel.models.events import EventKind
from resource_kernel.models.report import ResourceState
from resource_kernel.schema.attribute import ABSENT


class LoadResult(BaseModel):
    """Adapter answer: does the entity exist, and what are its attribute values."""

    exists: bool = True
    attributes: Dict[str, Any] = {}


class ObservedInstance:
    """The currently-true values of one resource, loaded lazily."""

    def __init__(self, desired: Any):
        self.desired = desired
        self.resource_type = desired.resource_type
        self._values: Dict[str, Any] = dict(desired.identity)
        self._exists = True
        self._value_errors: Dict[str, LoadError] = {}
        self._loading_values: List[str] = []

    def __repr__(self) -> str:
        status = "" if self._exists else " (absent)"
        return f"<ObservedInstance {self.label}{status}>"

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    @property
    def context(self) -> Any:
        return self.desired.context

    @property
    def label(self) -> str:
        return self.desired.label

    @property
    def identity(self) -> Dict[str, Any]:
        return {
            d.name: self._values.get(d.name)
            for d in self.resource_type.identity_attributes
        }

    @property
    def exists(self) -> bool:
        return self._exists

    def mark_absent(self) -> None:
        """Record that the entity does not exist. Not an error."""
        self._exists = False

    def is_loaded(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str) -> Any:
        """Current value, or ABSENT if the entity does not exist or the value is unknown."""
        descriptor = self.resource_type.attribute(name)
        if name in self._values:
            return self._values[name]
        if not self._exists:
            return ABSENT
        if name in self._value_errors:
            raise self._value_errors[name]
        if descriptor.load_value is None or name in self._loading_values:
            return ABSENT
        return self._load_value(descriptor)

    def set(self, name: str, value: Any) -> Any:
        """Record a current value (used by loaders and load_value)."""
        descriptor = self.resource_type.attribute(name)
        coerced = descriptor.coerce_value(value, self)
        if descriptor.identity:
            bound = self._values.get(name)
            if bound is not None and bound is not ABSENT and bound != coerced:
                raise IdentityImmutableError(
                    f"{self.label}: loader cannot change identity attribute {name} "
                    f"from {bound!r} to {coerced!r}",
                    attribute=name,
                )
        self._values[name] = coerced
        return coerced

    def to_dict(self) -> Dict[str, Any]:
        """Values known so far. Never triggers load_value."""
        return dict(self._values)

    def _load_value(self, descriptor: Any) -> Any:
        name = descriptor.name
        events = self.desired.context.events
        events.record(self.label, EventKind.LOAD_VALUE_STARTED, attribute=name)
        self._loading_values.append(name)
        try:
            value = descriptor.load_value(self)
            value = self.set(name, value)
        except Exception as e:
            if isinstance(e, LoadError):
                error = e
            else:
                error = LoadError(
                    f"{self.label}: loading {name} failed: {e}",
                    resource=self.desired, attribute=name, cause=e,
                )
            self._value_errors[name] = error
            events.record(self.label, EventKind.LOAD_VALUE_FAILED, attribute=name, detail=str(e))
            if error is e:
                raise
            raise error from e
        finally:
            self._loading_values.remove(name)
        events.record(self.label, EventKind.LOAD_VALUE_SUCCEEDED, attribute=name)
        return value

    def _apply(self, result: Any) -> None:
        if result is None:
            return
        if isinstance(result, Mapping):
            result = LoadResult.model_validate(result)
        if not isinstance(result, LoadResult):
            raise LoadError(
                f"{self.label}: loader returned {type(result).__name__}, "
                "expected None, a LoadResult or a mapping",
                resource=self.desired,
            )
        for name, value in result.attributes.items():
            self.set(name, value)
        if not result.exists:
            self.mark_absent()

    def _refresh(self, values: Mapping[str, Any]) -> None:
        """Adopt converged desired values as the new current state."""
        self._exists = True
        for name, value in values.items():
            self._values[name] = value
            self._value_errors.pop(name, None)


def load_observed(instance: Any) -> ObservedInstance:
    """Create and populate the observed record for an instance. Called once."""
    if instance._observed is not None:
        return instance._observed
    if instance._load_error is not None:
        raise instance._load_error

    observed = ObservedInstance(instance)
    # Stored before loading: reads made from inside the loader see this record.
    instance._observed = observed
    instance.state = ResourceState.LOADING
    events = instance.context.events
    events.record(instance.label, EventKind.LOAD_STARTED)

    loader = instance.resource_type.loader
    try:
        if loader is not None:
            observed._apply(loader(observed))
    except Exception as e:
        if isinstance(e, LoadError):
            error = e
        else:
            error = LoadError(
                f"{instance.label}: load failed: {e}", resource=instance, cause=e
            )
        instance._observed = None
        instance._load_error = error
        instance.state = ResourceState.LOAD_FAILED
        events.record(instance.label, EventKind.LOAD_FAILED, detail=str(e))
        if error is e:
            raise
        raise error from e

    if observed.exists:
        instance.state = ResourceState.LOADED
        events.record(instance.label, EventKind.LOAD_SUCCEEDED)
    else:
        instance.state = ResourceState.NOT_EXISTS
        events.record(instance.label, EventKind.LOAD_SUCCEEDED, detail="does not exist")
    return observed
