"""Error taxonomy for pool reconciliation.

Every failure leaves the reconciler as a ReconcileError subclass. The
orchestrator stamps each error with the phase it failed in and, once the
remote system has assigned one, the pool ID, so that a pool created by a
call whose convergence wait later failed is never orphaned silently.

Remote failures are normalized into RemoteError with an ErrorKind before
they reach the reconciler; nothing outside client.py knows which HTTP
library produced them.
"""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """Phase of a lifecycle operation an error is attributed to."""

    VALIDATION = "validation"  # Before any remote call
    PRECONDITION = "precondition"  # Waiting on the parent listener/load balancer
    MUTATION = "mutation"  # The create/update/delete call itself
    CONVERGENCE = "convergence"  # Waiting on the pool's own status
    READ = "read"  # Plain fetches (read, import, pre-mutation snapshot)


class ErrorKind(str, Enum):
    """Normalized kind of a remote API failure."""

    CONFLICT = "conflict"  # 409: resource immutable / locked by another operation
    SERVICE_UNAVAILABLE = "service_unavailable"  # 503
    SERVER_ERROR = "server_error"  # 500, 502, 504
    NOT_FOUND = "not_found"  # 404
    UNAUTHORIZED = "unauthorized"  # 401, 403
    BAD_REQUEST = "bad_request"  # 400, 422
    CONNECTION = "connection"  # No response received
    UNKNOWN = "unknown"


def error_kind_for_status(status_code: int | None) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind.

    Args:
        status_code: HTTP status code, or None if no response was received.

    Returns:
        The normalized error kind.
    """
    if status_code is None:
        return ErrorKind.CONNECTION

    match status_code:
        case 409:
            return ErrorKind.CONFLICT
        case 503:
            return ErrorKind.SERVICE_UNAVAILABLE
        case 500 | 502 | 504:
            return ErrorKind.SERVER_ERROR
        case 404:
            return ErrorKind.NOT_FOUND
        case 401 | 403:
            return ErrorKind.UNAUTHORIZED
        case 400 | 422:
            return ErrorKind.BAD_REQUEST
        case _:
            return ErrorKind.UNKNOWN


class RemoteError(Exception):
    """Raised by a pool client when the control plane call fails."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.kind == ErrorKind.NOT_FOUND

    def __repr__(self) -> str:
        return f"RemoteError(kind={self.kind.value!r}, status_code={self.status_code!r})"


class ReconcileError(Exception):
    """Base class for all errors surfaced by the reconciler."""

    def __init__(
        self,
        message: str,
        *,
        phase: Phase | None = None,
        pool_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.pool_id = pool_id

    def __str__(self) -> str:
        parts = [self.message]
        if self.phase is not None:
            parts.append(f"phase={self.phase.value}")
        if self.pool_id is not None:
            parts.append(f"pool_id={self.pool_id}")
        if len(parts) == 1:
            return self.message
        return f"{parts[0]} ({', '.join(parts[1:])})"


class PoolValidationError(ReconcileError):
    """Declared pool is invalid. Detected before any remote call."""

    def __init__(self, message: str, **kwargs: object) -> None:
        kwargs.setdefault("phase", Phase.VALIDATION)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class DependencyNotReady(ReconcileError):
    """Parent listener or load balancer did not become active."""

    def __init__(self, message: str, cause: ReconcileError, **kwargs: object) -> None:
        kwargs.setdefault("phase", Phase.PRECONDITION)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.cause = cause


class DeadlineExceeded(ReconcileError):
    """Operation ran out of time while retrying or polling."""

    def __init__(
        self,
        message: str,
        last_error: Exception | None = None,
        last_status: str | None = None,
        **kwargs: object,
    ) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.last_error = last_error
        self.last_status = last_status


class FatalRemoteError(ReconcileError):
    """Non-retryable control plane failure."""

    def __init__(self, message: str, cause: RemoteError, **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.cause = cause

    @property
    def kind(self) -> ErrorKind:
        return self.cause.kind


class PoolNotFound(ReconcileError):
    """Pool does not exist where its existence was required."""


class UnexpectedStatus(ReconcileError):
    """Resource reached a status outside both the pending and target sets."""

    def __init__(
        self,
        resource: str,
        resource_id: str,
        status: str | None,
        **kwargs: object,
    ) -> None:
        super().__init__(
            f"{resource} {resource_id} reached unexpected status {status!r}",
            **kwargs,  # type: ignore[arg-type]
        )
        self.resource = resource
        self.resource_id = resource_id
        self.status = status


class AdoptionError(ReconcileError):
    """Existing pool cannot be imported."""


class OperationCancelled(ReconcileError):
    """Caller abandoned the operation while it was waiting."""
