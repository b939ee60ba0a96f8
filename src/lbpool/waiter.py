"""Status polling for pools and their parent resources.

The control plane offers no notifications, so convergence is observed by
fetching the resource on a fixed interval. Each observed status falls into
one of three classes:

- target: the wait succeeds with the current snapshot
- pending: a transition is in progress, keep polling
- anything else: the resource is stuck in a state we cannot wait out
  (typically ERROR), fail immediately with UnexpectedStatus

A wait for deletion treats "not found" as the target outcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection
from typing import Protocol, TypeVar

from .clock import Clock, Deadline
from .errors import (
    DeadlineExceeded,
    DependencyNotReady,
    FatalRemoteError,
    Phase,
    RemoteError,
    UnexpectedStatus,
)
from .models import DependencyRef, DependencySnapshot

logger = logging.getLogger(__name__)

# Provisioning statuses reported by the control plane
STATUS_ACTIVE = "ACTIVE"
STATUS_PENDING_CREATE = "PENDING_CREATE"
STATUS_PENDING_UPDATE = "PENDING_UPDATE"
STATUS_PENDING_DELETE = "PENDING_DELETE"
STATUS_ERROR = "ERROR"
# Pseudo-status for a resource that can no longer be fetched
STATUS_DELETED = "DELETED"

ACTIVE_TARGET = frozenset({STATUS_ACTIVE})
PENDING_STATUSES = frozenset({STATUS_PENDING_CREATE, STATUS_PENDING_UPDATE})
DELETED_TARGET = frozenset({STATUS_DELETED})
# A pool still present after delete keeps being polled until the deadline
PENDING_DELETE_STATUSES = frozenset(
    {STATUS_ERROR, STATUS_PENDING_UPDATE, STATUS_PENDING_DELETE, STATUS_ACTIVE}
)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


class HasStatus(Protocol):
    @property
    def status(self) -> str | None: ...


S = TypeVar("S", bound=HasStatus)


class StatusPoller:
    """Blocks until a resource reaches a target status."""

    def __init__(
        self,
        clock: Clock,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._clock = clock
        self._poll_interval = poll_interval_seconds
        self._cancel_event = cancel_event

    async def wait_for_status(
        self,
        deadline: Deadline,
        fetch: Callable[[], Awaitable[S]],
        target_statuses: Collection[str],
        pending_statuses: Collection[str],
        *,
        resource: str,
        resource_id: str,
    ) -> S | None:
        """Poll `fetch` until the reported status is in `target_statuses`.

        Args:
            deadline: Operation deadline.
            fetch: Zero-argument coroutine function returning a snapshot.
            target_statuses: Statuses that end the wait successfully.
            pending_statuses: Statuses that keep the wait going.
            resource: Resource type for messages (e.g. "pool").
            resource_id: Resource ID for messages.

        Returns:
            The snapshot that reached a target status, or None when waiting
            for deletion and the resource is gone.

        Raises:
            UnexpectedStatus: If a status outside target and pending is seen.
            FatalRemoteError: If a fetch fails (other than not-found while
                waiting for deletion).
            DeadlineExceeded: If the resource is still pending at the deadline.
            OperationCancelled: If cancelled between polls.
        """
        waiting_for_deletion = STATUS_DELETED in target_statuses
        polls = 0

        while True:
            polls += 1
            try:
                snapshot = await fetch()
            except RemoteError as e:
                if e.is_not_found and waiting_for_deletion:
                    logger.debug(
                        f"{resource} is gone",
                        extra={"resource_id": resource_id, "polls": polls},
                    )
                    return None
                raise FatalRemoteError(
                    f"Failed to fetch {resource} {resource_id} while waiting: {e}",
                    cause=e,
                ) from e

            status = snapshot.status
            logger.debug(
                f"Polled {resource} status",
                extra={"resource_id": resource_id, "status": status, "polls": polls},
            )

            if status in target_statuses:
                return snapshot

            if status not in pending_statuses:
                raise UnexpectedStatus(resource, resource_id, status)

            if deadline.expired():
                raise DeadlineExceeded(
                    f"Timed out after {deadline.timeout_seconds}s waiting for {resource} "
                    f"{resource_id} to reach {sorted(target_statuses)} (last status {status!r})",
                    last_status=status,
                )

            await self._clock.sleep(
                min(self._poll_interval, deadline.remaining()),
                self._cancel_event,
            )

    async def wait_for_dependency(
        self,
        deadline: Deadline,
        dependency: DependencyRef,
        fetch: Callable[[], Awaitable[DependencySnapshot]],
    ) -> DependencySnapshot:
        """Wait for a parent listener or load balancer to become active.

        Raises:
            DependencyNotReady: If it timed out or reached an unexpected status.
            FatalRemoteError: If the dependency could not be fetched.
        """
        resource = dependency.kind.value
        logger.info(
            f"Waiting for {resource} to become active",
            extra={"dependency_kind": resource, "dependency_id": dependency.id},
        )
        try:
            snapshot = await self.wait_for_status(
                deadline,
                fetch,
                ACTIVE_TARGET,
                PENDING_STATUSES,
                resource=resource,
                resource_id=dependency.id,
            )
        except (UnexpectedStatus, DeadlineExceeded) as e:
            raise DependencyNotReady(
                f"Error waiting for {resource} {dependency.id} to become active: {e.message}",
                cause=e,
            ) from e
        except FatalRemoteError as e:
            e.phase = Phase.PRECONDITION
            raise

        # ACTIVE is the only target, so a snapshot is always returned here
        assert snapshot is not None
        return snapshot
