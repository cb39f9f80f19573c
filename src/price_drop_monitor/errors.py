from __future__ import annotations


class MonitorError(Exception):
    """Base class for errors raised by the monitoring pipeline."""


class MonitorConflictError(MonitorError):
    def __init__(self, user_id: str, product_url: str) -> None:
        super().__init__(f"An active monitor already exists for user={user_id} url={product_url}")
        self.user_id = user_id
        self.product_url = product_url


class MonitorNotFoundError(MonitorError):
    def __init__(self, monitor_id: str) -> None:
        super().__init__(f"Monitor not found: {monitor_id}")
        self.monitor_id = monitor_id


class StoreError(MonitorError):
    """A read or write against the external store failed."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class InferenceError(MonitorError):
    """The inference service could not be reached or returned an unusable reply."""


class InferenceUnavailableError(InferenceError):
    """A transient inference failure (429, 5xx or a transport error)."""

    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class CircuitOpenError(MonitorError):
    def __init__(self, name: str, retry_in_seconds: float) -> None:
        super().__init__(f"CircuitBreaker {name} is OPEN. Retrying in {max(0.0, retry_in_seconds):.1f}s")
        self.name = name
        self.retry_in_seconds = retry_in_seconds
