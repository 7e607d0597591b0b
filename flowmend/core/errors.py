"""Exception hierarchy shared by the healing engine and the workflow runner."""

from __future__ import annotations


class FlowmendError(RuntimeError):
    """Base class for all flowmend errors."""

    retryable: bool = False


class WorkflowValidationError(FlowmendError):
    """Raised when a workflow or its parameters are malformed."""


class StepValidationError(WorkflowValidationError):
    """Raised when a single step is missing what its action needs."""


class DomainBlockedError(FlowmendError):
    """Raised when a navigation or interaction target is outside the allow-list."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class ElementNotFoundError(FlowmendError):
    """Raised when a selector does not resolve to an element in time."""

    retryable = True

    def __init__(self, message: str, selector: str = "") -> None:
        super().__init__(message)
        self.selector = selector


class ActionTimeoutError(FlowmendError):
    """Raised when a browser action exceeds its inner timeout."""

    retryable = True


class StepVerificationError(FlowmendError):
    """Raised when an action completed but the page does not reflect it."""

    retryable = True


class RunTimeoutError(FlowmendError):
    """Raised when a whole run exceeds its execution deadline."""

    def __init__(self, max_execution_ms: int) -> None:
        super().__init__(f"Execution timed out after {max_execution_ms}ms")
        self.max_execution_ms = max_execution_ms


class SnapshotUnavailableError(FlowmendError):
    """Raised when an HTML snapshot cannot be parsed."""


def is_retryable(exc: BaseException) -> bool:
    """Flowmend errors carry their own policy; driver errors are treated as transient."""
    if isinstance(exc, FlowmendError):
        return exc.retryable
    return isinstance(exc, Exception)
