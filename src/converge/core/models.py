"""Core data model: resource specs, observed state, plans and results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from converge.utils.errors import ErrorCategory, InvalidSpecError, ReconcileError


class ResourceKind(str, Enum):
    """Resource types the engine knows how to reconcile."""
    NAT_GATEWAY = "nat_gateway"
    ROUTE = "route"
    SECURITY_GROUP = "security_group"
    LAUNCH_TEMPLATE = "launch_template"
    AUTO_SCALING_GROUP = "auto_scaling_group"
    SCALING_POLICY = "scaling_policy"
    TARGET_GROUP = "target_group"
    LOAD_BALANCER = "load_balancer"
    LISTENER = "listener"


class ResourceStatus(Enum):
    """Normalized lifecycle stage of an observed resource."""
    CREATING = "creating"
    UPDATING = "updating"
    AVAILABLE = "available"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"

    @property
    def is_terminal(self) -> bool:
        return self in (ResourceStatus.AVAILABLE, ResourceStatus.FAILED)

    @property
    def is_gone(self) -> bool:
        return self in (ResourceStatus.DELETING, ResourceStatus.DELETED)

    @property
    def precedence(self) -> int:
        """Rank used to break ties between resources sharing an identity."""
        return _STATUS_PRECEDENCE[self]


_STATUS_PRECEDENCE = {
    ResourceStatus.AVAILABLE: 4,
    ResourceStatus.UPDATING: 3,
    ResourceStatus.CREATING: 2,
    ResourceStatus.FAILED: 1,
    ResourceStatus.DELETING: 0,
    ResourceStatus.DELETED: 0,
}


class ResourceSpec(BaseModel):
    """Desired state of a single resource, keyed by kind and identity."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    kind: ResourceKind = Field(..., description="Resource type")
    identity: str = Field(..., description="Natural key used to look the resource up")
    desired_attributes: Dict[str, Any] = Field(
        default_factory=dict,
        alias="attributes",
        description="Attribute name -> target value",
    )
    name: Optional[str] = Field(
        None,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Logical name used for references between specs",
    )
    depends_on: List[str] = Field(
        default_factory=list, description="Logical names this spec must wait for"
    )

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        """Identity must be a non-empty string."""
        if not v or not v.strip():
            raise ValueError("identity must be a non-empty string")
        return v.strip()

    @property
    def logical_name(self) -> str:
        return self.name or self.identity

    @property
    def key(self) -> Tuple[ResourceKind, str]:
        return (self.kind, self.identity)

    @property
    def label(self) -> str:
        return f"{self.kind.value}/{self.identity}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceSpec":
        """Build a spec from plain data.

        Raises:
            InvalidSpecError: If the data does not describe a valid spec
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            details = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in errors
            )
            raise InvalidSpecError(f"Invalid resource spec: {details}", errors=errors) from e


@dataclass(frozen=True)
class ObservedState:
    """What the provider reports for an identity: either nothing, or one resource."""

    found: bool
    resource_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    status: Optional[ResourceStatus] = None
    raw_status: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def not_found(cls) -> "ObservedState":
        return cls(found=False)

    @classmethod
    def present(
        cls,
        resource_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        status: ResourceStatus = ResourceStatus.AVAILABLE,
        raw_status: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> "ObservedState":
        return cls(
            found=True,
            resource_id=resource_id,
            attributes=dict(attributes or {}),
            status=status,
            raw_status=raw_status or status.value,
            created_at=created_at,
        )


class PlanAction(Enum):
    """What a reconciliation needs to do."""
    NO_OP = "no_op"
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class Plan:
    """Difference between desired and observed state.

    For CREATE the delta holds every desired attribute; for UPDATE only the
    mismatched ones.
    """

    action: PlanAction
    delta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def no_op(cls) -> "Plan":
        return cls(action=PlanAction.NO_OP)

    @classmethod
    def create(cls, attributes: Dict[str, Any]) -> "Plan":
        return cls(action=PlanAction.CREATE, delta=dict(attributes))

    @classmethod
    def update(cls, delta: Dict[str, Any]) -> "Plan":
        return cls(action=PlanAction.UPDATE, delta=dict(delta))


class ResultOutcome(Enum):
    """Outcome of a reconciliation run."""
    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class ReconciliationResult:
    """Result of reconciling one spec."""

    spec: ResourceSpec
    outcome: ResultOutcome
    resource_id: Optional[str] = None
    plan: Optional[Plan] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ReconcileError] = None
    polls: int = 0
    attempts: int = 1
    duration: float = 0.0  # seconds

    @property
    def new_identity(self) -> Optional[str]:
        """Provider-assigned identity of a newly created resource."""
        return self.resource_id if self.outcome == ResultOutcome.CREATED else None

    @property
    def reason(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def failure_kind(self) -> Optional[ErrorCategory]:
        return self.error.category if self.error else None

    def is_success(self) -> bool:
        return self.outcome != ResultOutcome.FAILED

    def is_failed(self) -> bool:
        return self.outcome == ResultOutcome.FAILED

    def is_changed(self) -> bool:
        return self.outcome in (ResultOutcome.CREATED, ResultOutcome.UPDATED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to a JSON-friendly dictionary."""
        return {
            "name": self.spec.logical_name,
            "kind": self.spec.kind.value,
            "identity": self.spec.identity,
            "outcome": self.outcome.value,
            "resource_id": self.resource_id,
            "plan": self.plan.action.value if self.plan else None,
            "delta": self.plan.delta if self.plan else {},
            "reason": self.reason,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "polls": self.polls,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
        }
