"""Tests for core data model."""

import pytest
from pydantic import ValidationError

from converge.core.models import (
    ObservedState,
    Plan,
    PlanAction,
    ReconciliationResult,
    ResourceKind,
    ResourceSpec,
    ResourceStatus,
    ResultOutcome,
)
from converge.core.waiter import WaitConfig
from converge.utils.errors import ErrorCategory, InvalidSpecError, ReconcileTimeoutError


class TestResourceSpec:
    def test_attributes_alias(self):
        spec = ResourceSpec.from_dict({
            "kind": "nat_gateway",
            "identity": "subnet-1",
            "attributes": {"SubnetId": "subnet-1"},
        })
        assert spec.kind == ResourceKind.NAT_GATEWAY
        assert spec.desired_attributes == {"SubnetId": "subnet-1"}

    def test_identity_is_stripped(self):
        spec = ResourceSpec(kind=ResourceKind.ROUTE, identity="  rtb-1  ")
        assert spec.identity == "rtb-1"

    def test_empty_identity_rejected(self):
        with pytest.raises(InvalidSpecError) as exc_info:
            ResourceSpec.from_dict({"kind": "route", "identity": "   "})
        assert exc_info.value.category == ErrorCategory.INVALID_SPEC
        assert exc_info.value.errors[0]["loc"] == ["identity"]

    def test_unknown_kind_rejected(self):
        with pytest.raises(InvalidSpecError, match="kind"):
            ResourceSpec.from_dict({"kind": "vpc", "identity": "vpc-1"})

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidSpecError):
            ResourceSpec.from_dict({"kind": "route", "identity": "rtb-1", "colour": "red"})

    def test_invalid_name_rejected(self):
        with pytest.raises(InvalidSpecError):
            ResourceSpec.from_dict({"kind": "route", "identity": "rtb-1", "name": "has.dot"})

    def test_frozen(self):
        spec = ResourceSpec(kind=ResourceKind.ROUTE, identity="rtb-1")
        with pytest.raises(ValidationError):
            spec.identity = "rtb-2"

    def test_key_label_and_logical_name(self):
        spec = ResourceSpec(kind=ResourceKind.LISTENER, identity="alb:80")
        assert spec.key == (ResourceKind.LISTENER, "alb:80")
        assert spec.label == "listener/alb:80"
        assert spec.logical_name == "alb:80"
        assert spec.model_copy(update={"name": "http"}).logical_name == "http"


class TestObservedState:
    def test_not_found(self):
        observed = ObservedState.not_found()
        assert not observed.found
        assert observed.resource_id is None

    def test_present_defaults(self):
        observed = ObservedState.present("nat-1", {"a": 1})
        assert observed.found
        assert observed.status == ResourceStatus.AVAILABLE
        assert observed.raw_status == "available"


class TestResourceStatus:
    def test_terminal_states(self):
        assert ResourceStatus.AVAILABLE.is_terminal
        assert ResourceStatus.FAILED.is_terminal
        assert not ResourceStatus.CREATING.is_terminal
        assert not ResourceStatus.UPDATING.is_terminal

    def test_precedence_order(self):
        ordered = sorted(
            [ResourceStatus.FAILED, ResourceStatus.AVAILABLE, ResourceStatus.CREATING, ResourceStatus.UPDATING],
            key=lambda s: s.precedence,
            reverse=True,
        )
        assert ordered == [
            ResourceStatus.AVAILABLE,
            ResourceStatus.UPDATING,
            ResourceStatus.CREATING,
            ResourceStatus.FAILED,
        ]


class TestReconciliationResult:
    def test_failed_result(self):
        spec = ResourceSpec(kind=ResourceKind.NAT_GATEWAY, identity="subnet-1")
        result = ReconciliationResult(spec=spec, outcome=ResultOutcome.FAILED, error=ReconcileTimeoutError())

        assert result.is_failed()
        assert result.reason == "timeout"
        assert result.failure_kind == ErrorCategory.TIMEOUT
        assert result.new_identity is None
        assert result.to_dict()["failure_kind"] == "timeout"

    def test_created_result_exposes_new_identity(self):
        spec = ResourceSpec(kind=ResourceKind.NAT_GATEWAY, identity="subnet-1")
        result = ReconciliationResult(
            spec=spec,
            outcome=ResultOutcome.CREATED,
            resource_id="nat-1",
            plan=Plan.create({"SubnetId": "subnet-1"}),
        )

        assert result.new_identity == "nat-1"
        assert result.is_changed()
        assert result.to_dict()["plan"] == PlanAction.CREATE.value


class TestWaitConfig:
    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            WaitConfig(interval=-1)
        with pytest.raises(ValueError):
            WaitConfig(max_attempts=-1)

    def test_zero_attempts_allowed(self):
        assert WaitConfig(interval=0, max_attempts=0).max_attempts == 0
