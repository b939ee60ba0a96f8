"""Tests for the pool lifecycle orchestrator.

Runs every operation against MockOctavia with a virtual clock, so waits
and backoffs complete instantly and can be asserted on.
"""

from __future__ import annotations

import asyncio

import pytest
from octavia_mock import FakeClock, MockOctavia

from lbpool.errors import (
    AdoptionError,
    DeadlineExceeded,
    DependencyNotReady,
    ErrorKind,
    FatalRemoteError,
    OperationCancelled,
    Phase,
    PoolNotFound,
    PoolValidationError,
    RemoteError,
    UnexpectedStatus,
)
from lbpool.models import PoolSpec
from lbpool.reconciler import PoolReconciler


def make_spec(**overrides: object) -> PoolSpec:
    values: dict[str, object] = {
        "name": "web",
        "protocol": "HTTP",
        "lb_algorithm": "ROUND_ROBIN",
        "listener_id": "L1",
    }
    values.update(overrides)
    return PoolSpec(**values)


def conflict() -> RemoteError:
    return RemoteError(ErrorKind.CONFLICT, "Pool is immutable and cannot be updated", 409)


def not_found() -> RemoteError:
    return RemoteError(ErrorKind.NOT_FOUND, "Pool not found", 404)


class TestCreate:
    """Tests for PoolReconciler.create."""

    @pytest.mark.asyncio
    async def test_creates_and_waits_for_active(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """Listener active, create returns PENDING_CREATE, next fetch ACTIVE."""
        octavia.add_listener("L1")

        snapshot = await reconciler.create(make_spec())

        assert snapshot.id == "P1"
        assert snapshot.status == "ACTIVE"
        assert octavia.call_count("get_listener") == 1
        assert octavia.call_names == ["get_listener", "create_pool", "get_pool"]

    @pytest.mark.asyncio
    async def test_invalid_spec_makes_no_remote_calls(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """A cookie name without APP_COOKIE fails before touching the control plane."""
        spec = make_spec(persistence={"type": "SOURCE_IP", "cookie_name": "c"})

        with pytest.raises(PoolValidationError) as exc_info:
            await reconciler.create(spec)

        assert exc_info.value.phase == Phase.VALIDATION
        assert octavia.call_count() == 0

    @pytest.mark.asyncio
    async def test_both_dependencies_rejected(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        with pytest.raises(PoolValidationError):
            await reconciler.create(make_spec(loadbalancer_id="LB1"))

        assert octavia.call_count() == 0

    @pytest.mark.asyncio
    async def test_waits_for_pending_listener(
        self, reconciler: PoolReconciler, octavia: MockOctavia, clock: FakeClock
    ) -> None:
        octavia.add_listener("L1", ["PENDING_UPDATE", "PENDING_UPDATE", "ACTIVE"])

        await reconciler.create(make_spec())

        assert octavia.call_count("get_listener") == 3
        assert octavia.call_names.index("create_pool") == 3
        assert clock.sleeps[:2] == [2, 2]

    @pytest.mark.asyncio
    async def test_loadbalancer_dependency(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_loadbalancer("LB1")

        snapshot = await reconciler.create(make_spec(listener_id=None, loadbalancer_id="LB1"))

        assert snapshot.loadbalancers[0].id == "LB1"
        assert octavia.call_count("get_loadbalancer") == 1
        assert octavia.call_count("get_listener") == 0

    @pytest.mark.asyncio
    async def test_dependency_never_ready(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """A stuck listener fails the precondition and nothing is created."""
        octavia.add_listener("L1", ["PENDING_UPDATE"])

        with pytest.raises(DependencyNotReady) as exc_info:
            await reconciler.create(make_spec(), timeout_seconds=10)

        assert exc_info.value.phase == Phase.PRECONDITION
        assert exc_info.value.pool_id is None
        assert octavia.call_count("create_pool") == 0

    @pytest.mark.asyncio
    async def test_dependency_in_error(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_listener("L1", ["ERROR"])

        with pytest.raises(DependencyNotReady):
            await reconciler.create(make_spec())

        assert octavia.call_count("create_pool") == 0

    @pytest.mark.asyncio
    async def test_conflict_on_create_is_retried(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_listener("L1")
        octavia.fail("create_pool", conflict(), conflict())

        snapshot = await reconciler.create(make_spec())

        assert snapshot.status == "ACTIVE"
        assert octavia.call_count("create_pool") == 3

    @pytest.mark.asyncio
    async def test_bad_request_on_create_is_fatal(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_listener("L1")
        octavia.fail("create_pool", RemoteError(ErrorKind.BAD_REQUEST, "Invalid input", 400))

        with pytest.raises(FatalRemoteError) as exc_info:
            await reconciler.create(make_spec())

        assert exc_info.value.phase == Phase.MUTATION
        assert exc_info.value.kind == ErrorKind.BAD_REQUEST
        assert octavia.call_count("create_pool") == 1

    @pytest.mark.asyncio
    async def test_convergence_failure_reports_pool_id(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """A pool that ends in ERROR is reported with its ID so it is not orphaned."""
        octavia.add_listener("L1")
        octavia.after_create = ["PENDING_CREATE", "ERROR"]

        with pytest.raises(UnexpectedStatus) as exc_info:
            await reconciler.create(make_spec())

        assert exc_info.value.phase == Phase.CONVERGENCE
        assert exc_info.value.pool_id == "P1"
        assert "pool_id=P1" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_convergence_timeout_reports_pool_id(
        self, reconciler: PoolReconciler, octavia: MockOctavia, clock: FakeClock
    ) -> None:
        octavia.add_listener("L1")
        octavia.after_create = ["PENDING_CREATE"]

        with pytest.raises(DeadlineExceeded) as exc_info:
            await reconciler.create(make_spec(), timeout_seconds=30)

        assert exc_info.value.pool_id == "P1"
        assert exc_info.value.last_status == "PENDING_CREATE"
        assert sum(clock.sleeps) == pytest.approx(30)

    @pytest.mark.asyncio
    async def test_cancelled_before_any_call(
        self, octavia: MockOctavia, clock: FakeClock
    ) -> None:
        """A set cancel event stops the operation before the first remote call."""
        cancel_event = asyncio.Event()
        cancel_event.set()
        reconciler = PoolReconciler(octavia, clock=clock, cancel_event=cancel_event)
        octavia.add_listener("L1", ["PENDING_CREATE"])

        with pytest.raises(OperationCancelled) as exc_info:
            await reconciler.create(make_spec())

        assert exc_info.value.phase == Phase.PRECONDITION
        assert octavia.call_count() == 0

    @pytest.mark.asyncio
    async def test_zero_timeout_is_not_the_default(
        self, reconciler: PoolReconciler, octavia: MockOctavia, clock: FakeClock
    ) -> None:
        """An explicit zero timeout expires at the first pending status."""
        octavia.add_listener("L1")
        octavia.after_create = ["PENDING_CREATE"]

        with pytest.raises(DeadlineExceeded) as exc_info:
            await reconciler.create(make_spec(), timeout_seconds=0)

        assert exc_info.value.pool_id == "P1"
        assert clock.sleeps == []
        assert octavia.call_count("get_pool") == 1


class TestRead:
    """Tests for PoolReconciler.read."""

    @pytest.mark.asyncio
    async def test_existing_pool(self, reconciler: PoolReconciler, octavia: MockOctavia) -> None:
        octavia.add_pool("P1", name="web")

        snapshot = await reconciler.read("P1")

        assert snapshot is not None
        assert snapshot.name == "web"

    @pytest.mark.asyncio
    async def test_missing_pool_is_none(self, reconciler: PoolReconciler) -> None:
        """A pool gone from the control plane is reported as absent, not as an error."""
        assert await reconciler.read("P404") is None

    @pytest.mark.asyncio
    async def test_other_errors_surface(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")
        octavia.fail("get_pool", RemoteError(ErrorKind.UNAUTHORIZED, "Unauthorized", 401))

        with pytest.raises(FatalRemoteError) as exc_info:
            await reconciler.read("P1")

        assert exc_info.value.phase == Phase.READ
        assert exc_info.value.pool_id == "P1"


class TestUpdate:
    """Tests for PoolReconciler.update."""

    @pytest.mark.asyncio
    async def test_applies_changed_fields(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1", name="old", listeners=[{"id": "L1"}])

        snapshot = await reconciler.update(
            "P1", make_spec(name="old"), make_spec(name="new", lb_algorithm="SOURCE_IP")
        )

        assert snapshot.name == "new"
        assert snapshot.status == "ACTIVE"
        _, (pool_id, update) = octavia.calls[octavia.call_names.index("update_pool")]
        assert pool_id == "P1"
        assert update.to_api() == {"name": "new", "lb_algorithm": "SOURCE_IP"}

    @pytest.mark.asyncio
    async def test_waits_before_and_after_mutation(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """The pool must be active before the update and again after it."""
        octavia.add_pool("P1", ["ACTIVE", "PENDING_UPDATE", "ACTIVE"])

        await reconciler.update("P1", make_spec(), make_spec(description="changed"))

        assert octavia.call_names == [
            "get_pool",  # existence check
            "get_pool",  # PENDING_UPDATE
            "get_pool",  # ACTIVE
            "update_pool",
            "get_pool",  # PENDING_UPDATE
            "get_pool",  # ACTIVE
        ]

    @pytest.mark.asyncio
    async def test_parent_not_rechecked(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1", listeners=[{"id": "L1"}])

        await reconciler.update("P1", make_spec(), make_spec(name="new"))

        assert octavia.call_count("get_listener") == 0

    @pytest.mark.asyncio
    async def test_empty_diff_skips_mutation(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")

        snapshot = await reconciler.update("P1", make_spec(), make_spec())

        assert snapshot.status == "ACTIVE"
        assert octavia.call_count("update_pool") == 0

    @pytest.mark.asyncio
    async def test_immutable_field_change_rejected(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")

        with pytest.raises(PoolValidationError) as exc_info:
            await reconciler.update("P1", make_spec(), make_spec(protocol="TCP"))

        assert "protocol" in str(exc_info.value)
        assert exc_info.value.pool_id == "P1"
        assert octavia.call_count() == 0

    @pytest.mark.asyncio
    async def test_rename_after_import(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """A project ID reported by the control plane but not declared is no change."""
        octavia.add_pool("P1", name="web", project_id="proj-1", listeners=[{"id": "L1"}])
        state = await reconciler.import_pool("P1")
        assert state.project_id == "proj-1"

        snapshot = await reconciler.update("P1", state.to_spec(), make_spec(name="renamed"))

        assert snapshot.name == "renamed"
        _, (_, update) = octavia.calls[octavia.call_names.index("update_pool")]
        assert update.to_api() == {"name": "renamed"}

    @pytest.mark.asyncio
    async def test_declared_project_change_rejected(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1", project_id="proj-1")

        with pytest.raises(PoolValidationError) as exc_info:
            await reconciler.update(
                "P1", make_spec(project_id="proj-1"), make_spec(project_id="proj-2")
            )

        assert "project_id" in str(exc_info.value)
        assert octavia.call_count() == 0

    @pytest.mark.asyncio
    async def test_missing_pool(self, reconciler: PoolReconciler, octavia: MockOctavia) -> None:
        with pytest.raises(PoolNotFound) as exc_info:
            await reconciler.update("P404", make_spec(), make_spec(name="new"))

        assert exc_info.value.phase == Phase.READ
        assert octavia.call_count("update_pool") == 0

    @pytest.mark.asyncio
    async def test_conflict_on_update_is_retried(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")
        octavia.fail("update_pool", conflict())

        snapshot = await reconciler.update("P1", make_spec(), make_spec(name="new"))

        assert snapshot.name == "new"
        assert octavia.call_count("update_pool") == 2

    @pytest.mark.asyncio
    async def test_error_after_update(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")
        octavia.after_update = ["PENDING_UPDATE", "ERROR"]

        with pytest.raises(UnexpectedStatus) as exc_info:
            await reconciler.update("P1", make_spec(), make_spec(name="new"))

        assert exc_info.value.phase == Phase.CONVERGENCE
        assert exc_info.value.pool_id == "P1"


class TestDelete:
    """Tests for PoolReconciler.delete."""

    @pytest.mark.asyncio
    async def test_deletes_and_waits_until_gone(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")

        await reconciler.delete("P1")

        assert "P1" not in octavia.pools
        assert octavia.call_names == ["get_pool", "delete_pool", "get_pool", "get_pool"]

    @pytest.mark.asyncio
    async def test_already_missing_pool_succeeds(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        """Deleting a pool that is already gone makes no delete call."""
        await reconciler.delete("P404")

        assert octavia.call_names == ["get_pool"]

    @pytest.mark.asyncio
    async def test_deleted_concurrently(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")
        octavia.fail("delete_pool", not_found())

        await reconciler.delete("P1")

        assert octavia.call_count("delete_pool") == 1

    @pytest.mark.asyncio
    async def test_conflict_on_delete_is_retried(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")
        octavia.fail("delete_pool", conflict(), RemoteError(ErrorKind.SERVER_ERROR, "boom", 500))

        await reconciler.delete("P1")

        assert octavia.call_count("delete_pool") == 3
        assert "P1" not in octavia.pools

    @pytest.mark.asyncio
    async def test_pool_that_never_goes_away(
        self, reconciler: PoolReconciler, octavia: MockOctavia, clock: FakeClock
    ) -> None:
        """A pool still ACTIVE after delete is polled until the deadline."""
        octavia.add_pool("P1")
        octavia.after_delete = ["ACTIVE"]

        with pytest.raises(DeadlineExceeded) as exc_info:
            await reconciler.delete("P1", timeout_seconds=10)

        assert exc_info.value.phase == Phase.CONVERGENCE
        assert exc_info.value.pool_id == "P1"
        assert sum(clock.sleeps) == pytest.approx(10)


class TestImport:
    """Tests for PoolReconciler.import_pool."""

    @pytest.mark.asyncio
    async def test_import_via_listener(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool(
            "P1",
            name="web",
            listeners=[{"id": "L1"}],
            loadbalancers=[],
        )

        state = await reconciler.import_pool("P1")

        assert state.id == "P1"
        assert state.name == "web"
        assert state.listener_id == "L1"
        assert state.loadbalancer_id is None

    @pytest.mark.asyncio
    async def test_import_via_loadbalancer(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1", loadbalancers=[{"id": "LB1"}])

        state = await reconciler.import_pool("P1")

        assert state.listener_id is None
        assert state.loadbalancer_id == "LB1"

    @pytest.mark.asyncio
    async def test_import_without_parent_fails(
        self, reconciler: PoolReconciler, octavia: MockOctavia
    ) -> None:
        octavia.add_pool("P1")

        with pytest.raises(AdoptionError) as exc_info:
            await reconciler.import_pool("P1")

        assert "listener ID or load balancer ID" in str(exc_info.value)
        assert exc_info.value.pool_id == "P1"

    @pytest.mark.asyncio
    async def test_import_missing_pool(self, reconciler: PoolReconciler) -> None:
        with pytest.raises(PoolNotFound):
            await reconciler.import_pool("P404")


class TestConcurrentOperations:
    """Operations on different pools share no state."""

    @pytest.mark.asyncio
    async def test_parallel_creates(self, reconciler: PoolReconciler, octavia: MockOctavia) -> None:
        octavia.add_listener("L1")
        octavia.add_listener("L2")

        first, second = await asyncio.gather(
            reconciler.create(make_spec(name="a")),
            reconciler.create(make_spec(name="b", listener_id="L2")),
        )

        assert {first.id, second.id} == {"P1", "P2"}
        assert first.status == second.status == "ACTIVE"
