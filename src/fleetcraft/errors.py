"""Error taxonomy shared by both engines.

- ValidationError: rejected before any side effect (cycles, undefined
  variables, malformed resources/actions)
- ProviderError / ExecutorError: reported per change / per action
- OperationTimeout: the timed-out flavour of the above, eligible for retry
- StateCorruptionError: the state snapshot cannot be trusted, fatal
"""
from typing import Optional


class FleetcraftError(Exception):
    """Base class for all fleetcraft errors."""
    pass


class ValidationError(FleetcraftError):
    """Configuration is invalid; raised before anything is executed."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class ParseError(ValidationError):
    """Error parsing a desired state, inventory or playbook document."""
    pass


class ExpressionError(ValidationError):
    """Malformed expression or an operator applied to unsupported values."""

    def __init__(self, message: str, source: str = ""):
        self.source = source
        if source:
            message = f"{message} (in '{source}')"
        super().__init__(message)


class UndefinedVariableError(ExpressionError):
    """An expression looked up a name that is not defined in its scope."""

    def __init__(self, name: str, source: str = ""):
        self.name = name
        super().__init__(f"Undefined variable '{name}'", source)


class DependencyCycleError(ValidationError):
    """The resource dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class UnknownResourceTypeError(ValidationError):
    """No provider is registered for a resource type."""

    def __init__(self, resource_type: str):
        self.resource_type = resource_type
        super().__init__(f"No provider registered for resource type '{resource_type}'")


class OperationTimeout(FleetcraftError):
    """A provider or executor call exceeded its timeout."""
    pass


class ProviderError(FleetcraftError):
    """A resource provider call failed."""
    pass


class ProviderTimeoutError(ProviderError, OperationTimeout):
    """A resource provider call timed out."""
    pass


class ExecutorError(FleetcraftError):
    """A remote executor call failed."""
    pass


class ExecutorTimeoutError(ExecutorError, OperationTimeout):
    """A remote executor call timed out."""
    pass


class HostUnreachableError(ExecutorError):
    """The executor could not reach the host at all."""

    def __init__(self, host: str, reason: str):
        self.host = host
        self.reason = reason
        super().__init__(f"Host {host} unreachable: {reason}")


class StateCorruptionError(FleetcraftError):
    """The state snapshot failed to deserialize or has an unknown version."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"State file {path} is unusable: {reason}")


class PlanConsumedError(FleetcraftError):
    """A plan was passed to apply more than once."""
    pass
