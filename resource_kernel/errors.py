"""
Kernel errors.

Assignment-time errors (type mismatch, coercion) are raised immediately.
Load and convergence errors carry the resource they concern. Non-existence
and "nothing to change" are never errors.
"""

from typing import Any, Optional, Sequence


class ResourceKernelError(Exception):
    """Base class for every error raised by the kernel."""
    pass


class SchemaError(ResourceKernelError):
    """Raised when a resource type declaration is inconsistent."""
    pass


class UnknownAttributeError(ResourceKernelError, AttributeError):
    """Raised when an attribute name is not declared on a resource type."""

    def __init__(self, type_name: str, attribute: str):
        super().__init__(f"{type_name} has no attribute {attribute!r}")
        self.type_name = type_name
        self.attribute = attribute


class TypeMismatchError(ResourceKernelError, TypeError):
    """An assigned value violates the attribute's type constraint."""

    def __init__(self, attribute: str, expected: Sequence[str], value: Any):
        expected_text = " or ".join(expected) if expected else "a valid value"
        super().__init__(
            f"{attribute}: expected {expected_text}, got {value!r}"
        )
        self.attribute = attribute
        self.expected = list(expected)
        self.value = value


class CoercionError(ResourceKernelError, TypeError):
    """A value could not be normalized to the attribute's canonical form."""

    def __init__(self, attribute: str, value: Any, reason: str):
        super().__init__(f"{attribute}: cannot coerce {value!r}: {reason}")
        self.attribute = attribute
        self.value = value
        self.reason = reason


class IdentityImmutableError(ResourceKernelError):
    """An identity attribute was changed after the instance was created."""

    def __init__(self, message: str, attribute: Optional[str] = None):
        super().__init__(message)
        self.attribute = attribute


class ResourceStateError(ResourceKernelError):
    """An operation is not allowed in the resource's current state."""

    def __init__(self, message: str, resource: Any = None):
        super().__init__(message)
        self.resource = resource


class LoadError(ResourceKernelError):
    """The adapter could not determine the current state of a resource."""

    def __init__(
        self,
        message: str,
        resource: Any = None,
        attribute: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.resource = resource
        self.attribute = attribute
        self.cause = cause


class ConvergenceActionError(ResourceKernelError):
    """A convergence action body failed. Carries the partial report."""

    def __init__(
        self,
        message: str,
        resource: Any = None,
        action: Optional[str] = None,
        cause: Optional[BaseException] = None,
        report: Any = None,
    ):
        super().__init__(message)
        self.resource = resource
        self.action = action
        self.cause = cause
        self.report = report


class PermissionDeniedError(ResourceKernelError, PermissionError):
    """Raised by adapters when the external system refuses authorization."""
    pass


def is_permission_failure(error: BaseException) -> bool:
    """Classify an action failure as a permission/authorization failure."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        if isinstance(current, PermissionError):
            return True
        seen.add(id(current))
        current = current.__cause__
    return False
