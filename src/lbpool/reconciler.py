"""Lifecycle orchestration for load-balancer pools.

This module turns one declared pool into the right sequence of calls
against an eventually consistent control plane:

1. Create: validate -> wait for parent active -> create (retried) -> wait for pool active
2. Read: single fetch; a missing pool is reported as None, not as a failure
3. Update: diff -> fetch -> wait for pool active -> update (retried) -> wait again
4. Delete: fetch (missing = done) -> delete (retried) -> wait until it is gone
5. Import: fetch -> derive parent listener/load balancer from back-references

Within one operation every phase shares the same deadline and the same
cancel event, and mutating calls are strictly ordered: the precondition
wait completes before the mutation, which completes before the
convergence wait. No state is kept between operations.

The cancel event is checked at every sleep and before every client call.
A call already in flight is not interrupted, so cancellation can lag by
up to one request timeout.

Update waits on the pool's own status before and after the mutation but
does not re-check the parent: the parent is assumed stable once the pool
exists.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from .clock import Clock, Deadline
from .errors import (
    AdoptionError,
    FatalRemoteError,
    OperationCancelled,
    Phase,
    PoolNotFound,
    PoolValidationError,
    ReconcileError,
    RemoteError,
)
from .models import (
    DependencyKind,
    DependencyRef,
    DependencySnapshot,
    PoolSnapshot,
    PoolSpec,
    PoolState,
    compute_update,
)
from .retry import RETRY_BACKOFF_BASE_SECONDS, RETRY_BACKOFF_MAX_SECONDS, retry
from .waiter import (
    ACTIVE_TARGET,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DELETED_TARGET,
    PENDING_DELETE_STATUSES,
    PENDING_STATUSES,
    StatusPoller,
)

if TYPE_CHECKING:
    from .client import PoolClient
    from .config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default per-operation timeouts (seconds)
DEFAULT_CREATE_TIMEOUT_SECONDS = 600
DEFAULT_UPDATE_TIMEOUT_SECONDS = 600
DEFAULT_DELETE_TIMEOUT_SECONDS = 600

# Fields that cannot be changed in place
IMMUTABLE_FIELDS = ("protocol", "persistence", "listener_id", "loadbalancer_id", "project_id")


@dataclass(frozen=True)
class OperationTimeouts:
    """Default timeouts applied when the caller passes none."""

    create_seconds: float = DEFAULT_CREATE_TIMEOUT_SECONDS
    update_seconds: float = DEFAULT_UPDATE_TIMEOUT_SECONDS
    delete_seconds: float = DEFAULT_DELETE_TIMEOUT_SECONDS


@contextmanager
def _phase(phase: Phase, pool_id: str | None = None) -> Iterator[None]:
    """Attribute errors raised inside the block to a phase and pool.

    RemoteErrors escaping the block are fatal by now (the retry wrapper
    has already absorbed the transient ones) and are wrapped accordingly.
    """
    try:
        yield
    except ReconcileError as e:
        if e.phase is None:
            e.phase = phase
        if e.pool_id is None:
            e.pool_id = pool_id
        raise
    except RemoteError as e:
        raise FatalRemoteError(
            f"Control plane rejected {phase.value} call: {e}",
            cause=e,
            phase=phase,
            pool_id=pool_id,
        ) from e


class PoolReconciler:
    """Reconciles one pool per call against the control plane.

    The client is injected; the reconciler holds no other state than its
    configuration, so one instance can serve any number of sequential or
    concurrent operations on different pools.
    """

    def __init__(
        self,
        client: PoolClient,
        *,
        clock: Clock | None = None,
        cancel_event: asyncio.Event | None = None,
        timeouts: OperationTimeouts | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        backoff_base_seconds: float = RETRY_BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = RETRY_BACKOFF_MAX_SECONDS,
    ) -> None:
        """Initialize the reconciler.

        Args:
            client: Remote pool client.
            clock: Time source; defaults to the monotonic wall clock.
            cancel_event: Event that abandons any in-progress wait when set.
            timeouts: Default per-operation timeouts.
            poll_interval_seconds: Interval between status polls.
            backoff_base_seconds: First retry backoff interval.
            backoff_max_seconds: Cap on a single retry backoff interval.
        """
        self._client = client
        self._clock = clock or Clock()
        self._cancel_event = cancel_event
        self._timeouts = timeouts or OperationTimeouts()
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._poller = StatusPoller(
            self._clock,
            poll_interval_seconds=poll_interval_seconds,
            cancel_event=cancel_event,
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        client: PoolClient,
        cancel_event: asyncio.Event | None = None,
    ) -> PoolReconciler:
        """Build a reconciler using timing settings from configuration."""
        return cls(
            client,
            cancel_event=cancel_event,
            timeouts=OperationTimeouts(
                create_seconds=config.create_timeout_seconds,
                update_seconds=config.update_timeout_seconds,
                delete_seconds=config.delete_timeout_seconds,
            ),
            poll_interval_seconds=config.poll_interval_seconds,
            backoff_base_seconds=config.retry_backoff_base_seconds,
            backoff_max_seconds=config.retry_backoff_max_seconds,
        )

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking client call without blocking the event loop.

        Raises:
            OperationCancelled: If the cancel event is already set; no call
                is started.
        """
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelled("Operation cancelled")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def _retry(self, deadline: Deadline, description: str, func: Callable[..., T], *args: Any) -> T:
        return await retry(
            deadline,
            lambda: self._call(func, *args),
            clock=self._clock,
            cancel_event=self._cancel_event,
            description=description,
            backoff_base=self._backoff_base,
            backoff_max=self._backoff_max,
        )

    async def _fetch_dependency(self, dependency: DependencyRef) -> DependencySnapshot:
        if dependency.kind == DependencyKind.LISTENER:
            return await self._call(self._client.get_listener, dependency.id)
        return await self._call(self._client.get_loadbalancer, dependency.id)

    async def _wait_for_pool_active(self, deadline: Deadline, pool_id: str) -> PoolSnapshot:
        snapshot = await self._poller.wait_for_status(
            deadline,
            lambda: self._call(self._client.get_pool, pool_id),
            ACTIVE_TARGET,
            PENDING_STATUSES,
            resource="pool",
            resource_id=pool_id,
        )
        assert snapshot is not None
        return snapshot

    async def _get_existing_pool(self, pool_id: str) -> PoolSnapshot:
        """Fetch a pool that must exist.

        Raises:
            PoolNotFound: If the control plane does not know the pool.
        """
        try:
            return await self._call(self._client.get_pool, pool_id)
        except RemoteError as e:
            if e.is_not_found:
                raise PoolNotFound(f"Unable to retrieve pool {pool_id}: {e}") from e
            raise

    # =========================================================================
    # Lifecycle operations
    # =========================================================================

    async def create(self, spec: PoolSpec, timeout_seconds: float | None = None) -> PoolSnapshot:
        """Create a pool and wait for it to become active.

        Args:
            spec: Declared pool.
            timeout_seconds: Overall timeout; defaults to the create timeout.

        Returns:
            Snapshot of the active pool.

        Raises:
            PoolValidationError: Before any remote call, for an invalid spec.
            DependencyNotReady: If the parent never became active.
            ReconcileError: For any later failure. Once the create call has
                returned, the error carries the new pool's ID.
        """
        if timeout_seconds is None:
            timeout_seconds = self._timeouts.create_seconds
        deadline = Deadline(self._clock, timeout_seconds)

        with _phase(Phase.VALIDATION):
            dependency = spec.validate_for_create()

        with _phase(Phase.PRECONDITION):
            await self._poller.wait_for_dependency(
                deadline,
                dependency,
                functools.partial(self._fetch_dependency, dependency),
            )

        logger.info(
            "Creating pool",
            extra={
                "pool_name": spec.name,
                "protocol": spec.protocol.value,
                "lb_algorithm": spec.lb_algorithm.value,
                "dependency_kind": dependency.kind.value,
                "dependency_id": dependency.id,
            },
        )
        with _phase(Phase.MUTATION):
            created = await self._retry(deadline, "Create pool", self._client.create_pool, spec)

        pool_id = created.id
        logger.info(
            "Pool created, waiting for it to become active",
            extra={"pool_id": pool_id, "status": created.status},
        )

        with _phase(Phase.CONVERGENCE, pool_id):
            snapshot = await self._wait_for_pool_active(deadline, pool_id)

        logger.info("Pool active", extra={"pool_id": pool_id})
        return snapshot

    async def read(self, pool_id: str) -> PoolSnapshot | None:
        """Fetch a pool.

        Returns:
            The pool snapshot, or None if the pool no longer exists and the
            caller should forget it.
        """
        with _phase(Phase.READ, pool_id):
            try:
                snapshot = await self._call(self._client.get_pool, pool_id)
            except RemoteError as e:
                if e.is_not_found:
                    logger.info("Pool not found, removing from state", extra={"pool_id": pool_id})
                    return None
                raise

        logger.debug(
            "Retrieved pool",
            extra={"pool_id": pool_id, "status": snapshot.status},
        )
        return snapshot

    async def update(
        self,
        pool_id: str,
        previous: PoolSpec,
        desired: PoolSpec,
        timeout_seconds: float | None = None,
    ) -> PoolSnapshot:
        """Apply changed mutable fields to a pool.

        Args:
            pool_id: Pool to update.
            previous: Values last applied.
            desired: Values now declared.
            timeout_seconds: Overall timeout; defaults to the update timeout.

        Returns:
            Snapshot of the pool once active again.

        Raises:
            PoolValidationError: If an immutable field declared in `desired`
                differs from `previous`.
            PoolNotFound: If the pool does not exist.
            ReconcileError: For any later failure.
        """
        if timeout_seconds is None:
            timeout_seconds = self._timeouts.update_seconds
        deadline = Deadline(self._clock, timeout_seconds)

        with _phase(Phase.VALIDATION, pool_id):
            # Undeclared values are computed by the control plane, not changes
            changed_immutable = [
                name for name in IMMUTABLE_FIELDS
                if getattr(desired, name) is not None
                and getattr(previous, name) != getattr(desired, name)
            ]
            if changed_immutable:
                raise PoolValidationError(
                    f"Fields {changed_immutable} cannot be updated in place; the pool must be replaced"
                )
            update = compute_update(previous, desired)

        with _phase(Phase.READ, pool_id):
            await self._get_existing_pool(pool_id)

        # Another operation may have left the pool pending
        with _phase(Phase.CONVERGENCE, pool_id):
            await self._wait_for_pool_active(deadline, pool_id)

        if update.is_empty:
            logger.info("No mutable fields changed, skipping update", extra={"pool_id": pool_id})
        else:
            logger.info(
                "Updating pool",
                extra={"pool_id": pool_id, "changes": update.to_api()},
            )
            with _phase(Phase.MUTATION, pool_id):
                await self._retry(deadline, "Update pool", self._client.update_pool, pool_id, update)

        with _phase(Phase.CONVERGENCE, pool_id):
            snapshot = await self._wait_for_pool_active(deadline, pool_id)

        logger.info("Pool updated", extra={"pool_id": pool_id})
        return snapshot

    async def delete(self, pool_id: str, timeout_seconds: float | None = None) -> None:
        """Delete a pool and wait until it is gone.

        Deleting a pool that no longer exists succeeds without a delete call.
        """
        if timeout_seconds is None:
            timeout_seconds = self._timeouts.delete_seconds
        deadline = Deadline(self._clock, timeout_seconds)

        with _phase(Phase.READ, pool_id):
            try:
                await self._call(self._client.get_pool, pool_id)
            except RemoteError as e:
                if e.is_not_found:
                    logger.info("Pool already deleted", extra={"pool_id": pool_id})
                    return
                raise

        logger.info("Deleting pool", extra={"pool_id": pool_id})
        with _phase(Phase.MUTATION, pool_id):
            try:
                await self._retry(deadline, "Delete pool", self._client.delete_pool, pool_id)
            except RemoteError as e:
                if e.is_not_found:
                    logger.info("Pool deleted concurrently", extra={"pool_id": pool_id})
                    return
                raise

        with _phase(Phase.CONVERGENCE, pool_id):
            await self._poller.wait_for_status(
                deadline,
                lambda: self._call(self._client.get_pool, pool_id),
                DELETED_TARGET,
                PENDING_DELETE_STATUSES,
                resource="pool",
                resource_id=pool_id,
            )

        logger.info("Pool deleted", extra={"pool_id": pool_id})

    async def import_pool(self, pool_id: str) -> PoolState:
        """Adopt an existing pool, deriving its parent from back-references.

        A listener reference is preferred over a load balancer reference.

        Raises:
            PoolNotFound: If the pool does not exist.
            AdoptionError: If the pool reports neither a listener nor a load
                balancer, so future mutations would not know what to wait on.
        """
        with _phase(Phase.READ, pool_id):
            snapshot = await self._get_existing_pool(pool_id)

            dependency = snapshot.dependency()
            if dependency is None:
                raise AdoptionError(
                    f"Unable to detect pool {pool_id}'s listener ID or load balancer ID"
                )

        logger.info(
            "Imported pool",
            extra={
                "pool_id": pool_id,
                "dependency_kind": dependency.kind.value,
                "dependency_id": dependency.id,
            },
        )
        return PoolState.from_snapshot(snapshot, dependency)
