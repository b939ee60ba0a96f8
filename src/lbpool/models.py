"""Pydantic models for load-balancer pools.

These models provide:
1. Type-safe parsing of declared pools (YAML or caller-supplied dicts)
2. Validation at the boundary (enums, exactly-one dependency, cookie rules)
3. Translation to and from the Octavia v2 wire representation
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .errors import PoolValidationError

# =============================================================================
# Enumerations
# =============================================================================


class PoolProtocol(str, Enum):
    """Pool protocol. Immutable after creation."""

    TCP = "TCP"
    UDP = "UDP"
    HTTP = "HTTP"
    HTTPS = "HTTPS"
    PROXY = "PROXY"
    SCTP = "SCTP"
    PROXYV2 = "PROXYV2"


class LBAlgorithm(str, Enum):
    """Load-balancing algorithm."""

    ROUND_ROBIN = "ROUND_ROBIN"
    LEAST_CONNECTIONS = "LEAST_CONNECTIONS"
    SOURCE_IP = "SOURCE_IP"
    SOURCE_IP_PORT = "SOURCE_IP_PORT"


class PersistenceType(str, Enum):
    """Session persistence type."""

    SOURCE_IP = "SOURCE_IP"
    HTTP_COOKIE = "HTTP_COOKIE"
    APP_COOKIE = "APP_COOKIE"


class DependencyKind(str, Enum):
    """Kind of parent resource a pool is attached to."""

    LISTENER = "listener"
    LOADBALANCER = "loadbalancer"


# =============================================================================
# Declared state
# =============================================================================


class SessionPersistence(BaseModel):
    """Session persistence policy. Immutable after creation."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: PersistenceType
    cookie_name: str | None = Field(None, alias="cookieName")

    def validate_cookie_name(self) -> None:
        """Check that a cookie name is given if and only if type is APP_COOKIE.

        Raises:
            PoolValidationError: If the rule is violated.
        """
        if self.type == PersistenceType.APP_COOKIE:
            if not self.cookie_name:
                raise PoolValidationError(
                    "Persistence cookie_name needs to be set if using 'APP_COOKIE' persistence type"
                )
        elif self.cookie_name:
            raise PoolValidationError(
                "Persistence cookie_name can only be set if using 'APP_COOKIE' persistence type"
            )

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {"type": self.type.value}
        if self.cookie_name:
            body["cookie_name"] = self.cookie_name
        return body

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> SessionPersistence | None:
        """Build from the wire block; an empty block means no persistence."""
        if not data or not data.get("type"):
            return None
        return cls(type=data["type"], cookie_name=data.get("cookie_name") or None)


class DependencyRef(BaseModel):
    """Reference to the listener or load balancer a pool depends on."""

    kind: DependencyKind
    id: str


class PoolSpec(BaseModel):
    """Desired state of a pool as declared by the caller."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str = ""
    description: str = ""
    protocol: PoolProtocol
    lb_algorithm: LBAlgorithm = Field(alias="lbAlgorithm")
    admin_state_up: bool = Field(True, alias="adminStateUp")
    persistence: SessionPersistence | None = None

    # Exactly one of these must be set at creation
    listener_id: str | None = Field(None, alias="listenerId")
    loadbalancer_id: str | None = Field(None, alias="loadbalancerId")

    project_id: str | None = Field(None, alias="projectId")

    def dependency(self) -> DependencyRef:
        """Resolve the parent dependency.

        Raises:
            PoolValidationError: Unless exactly one of listener_id and
                loadbalancer_id is set.
        """
        if self.listener_id and self.loadbalancer_id:
            raise PoolValidationError(
                "Only one of listener_id or loadbalancer_id may be set"
            )
        if self.listener_id:
            return DependencyRef(kind=DependencyKind.LISTENER, id=self.listener_id)
        if self.loadbalancer_id:
            return DependencyRef(kind=DependencyKind.LOADBALANCER, id=self.loadbalancer_id)
        raise PoolValidationError("One of listener_id or loadbalancer_id must be set")

    def validate_for_create(self) -> DependencyRef:
        """Run every pre-flight check a create needs.

        Returns:
            The resolved dependency reference.

        Raises:
            PoolValidationError: If the spec cannot be created as declared.
        """
        if self.persistence is not None:
            self.persistence.validate_cookie_name()
        return self.dependency()

    def to_api(self) -> dict[str, Any]:
        """Build the create request body (without the envelope)."""
        body: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "protocol": self.protocol.value,
            "lb_algorithm": self.lb_algorithm.value,
            "admin_state_up": self.admin_state_up,
        }
        if self.listener_id:
            body["listener_id"] = self.listener_id
        if self.loadbalancer_id:
            body["loadbalancer_id"] = self.loadbalancer_id
        if self.project_id:
            body["project_id"] = self.project_id
        # Must omit if not set
        if self.persistence is not None:
            body["session_persistence"] = self.persistence.to_api()
        return body


class PoolUpdate(BaseModel):
    """Sparse set of changes to a pool's mutable fields."""

    name: str | None = None
    description: str | None = None
    lb_algorithm: LBAlgorithm | None = None
    admin_state_up: bool | None = None

    @property
    def is_empty(self) -> bool:
        return not self.to_api()

    def to_api(self) -> dict[str, Any]:
        return {
            key: value.value if isinstance(value, Enum) else value
            for key, value in self.model_dump(exclude_none=True).items()
        }


def compute_update(previous: PoolSpec, desired: PoolSpec) -> PoolUpdate:
    """Compute the minimal update between previously declared and desired values.

    Only name, description, lb_algorithm and admin_state_up are mutable;
    differences elsewhere are not this layer's concern (they force
    recreation higher up).

    Args:
        previous: Values last applied.
        desired: Values now declared.

    Returns:
        PoolUpdate holding only the changed fields.
    """
    changes: dict[str, Any] = {}
    for field_name in ("name", "description", "lb_algorithm", "admin_state_up"):
        new_value = getattr(desired, field_name)
        if getattr(previous, field_name) != new_value:
            changes[field_name] = new_value
    return PoolUpdate(**changes)


# =============================================================================
# Remote state
# =============================================================================


class ResourceRef(BaseModel):
    """Back-reference reported by the control plane."""

    model_config = {"extra": "ignore"}

    id: str = ""


class PoolSnapshot(BaseModel):
    """A pool as reported by the control plane."""

    model_config = {"extra": "ignore"}

    id: str
    name: str = ""
    description: str = ""
    protocol: PoolProtocol | None = None
    lb_algorithm: LBAlgorithm | None = None
    admin_state_up: bool = True
    persistence: SessionPersistence | None = None
    project_id: str | None = None
    provisioning_status: str | None = None
    operating_status: str | None = None
    listeners: list[ResourceRef] = Field(default_factory=list)
    loadbalancers: list[ResourceRef] = Field(default_factory=list)

    @property
    def status(self) -> str | None:
        return self.provisioning_status

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PoolSnapshot:
        """Build from an Octavia pool object (without the envelope)."""
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            description=data.get("description") or "",
            protocol=data.get("protocol"),
            lb_algorithm=data.get("lb_algorithm"),
            admin_state_up=data.get("admin_state_up", True),
            persistence=SessionPersistence.from_api(data.get("session_persistence")),
            project_id=data.get("project_id") or data.get("tenant_id"),
            provisioning_status=data.get("provisioning_status"),
            operating_status=data.get("operating_status"),
            listeners=data.get("listeners") or [],
            loadbalancers=data.get("loadbalancers") or [],
        )

    def dependency(self) -> DependencyRef | None:
        """Derive the dependency from back-references, preferring a listener."""
        if self.listeners and self.listeners[0].id:
            return DependencyRef(kind=DependencyKind.LISTENER, id=self.listeners[0].id)
        if self.loadbalancers and self.loadbalancers[0].id:
            return DependencyRef(kind=DependencyKind.LOADBALANCER, id=self.loadbalancers[0].id)
        return None


class DependencySnapshot(BaseModel):
    """Status of a listener or load balancer."""

    model_config = {"extra": "ignore"}

    id: str
    provisioning_status: str | None = None

    @property
    def status(self) -> str | None:
        return self.provisioning_status


class PoolState(BaseModel):
    """What the caller persists for a managed pool.

    Carries the identity and declared attributes but never a status; the
    status only exists transiently during convergence waits.
    """

    model_config = {"populate_by_name": True}

    id: str
    name: str = ""
    description: str = ""
    protocol: PoolProtocol | None = None
    lb_algorithm: LBAlgorithm | None = Field(None, alias="lbAlgorithm")
    admin_state_up: bool = Field(True, alias="adminStateUp")
    persistence: SessionPersistence | None = None
    listener_id: str | None = Field(None, alias="listenerId")
    loadbalancer_id: str | None = Field(None, alias="loadbalancerId")
    project_id: str | None = Field(None, alias="projectId")

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PoolSnapshot,
        dependency: DependencyRef | None = None,
    ) -> PoolState:
        """Project a snapshot into caller state.

        Args:
            snapshot: Pool as reported by the control plane.
            dependency: Dependency to record. Defaults to the one derived
                from the snapshot's back-references.
        """
        dependency = dependency or snapshot.dependency()
        return cls(
            id=snapshot.id,
            name=snapshot.name,
            description=snapshot.description,
            protocol=snapshot.protocol,
            lb_algorithm=snapshot.lb_algorithm,
            admin_state_up=snapshot.admin_state_up,
            persistence=snapshot.persistence,
            project_id=snapshot.project_id,
            listener_id=(
                dependency.id
                if dependency and dependency.kind == DependencyKind.LISTENER
                else None
            ),
            loadbalancer_id=(
                dependency.id
                if dependency and dependency.kind == DependencyKind.LOADBALANCER
                else None
            ),
        )

    def to_spec(self) -> PoolSpec:
        """Declared values as a PoolSpec, e.g. as the `previous` side of an update."""
        if self.protocol is None or self.lb_algorithm is None:
            raise PoolValidationError(
                f"Pool state {self.id} lacks protocol or lb_algorithm"
            )
        return PoolSpec(
            name=self.name,
            description=self.description,
            protocol=self.protocol,
            lb_algorithm=self.lb_algorithm,
            admin_state_up=self.admin_state_up,
            persistence=self.persistence,
            listener_id=self.listener_id,
            loadbalancer_id=self.loadbalancer_id,
            project_id=self.project_id,
        )
