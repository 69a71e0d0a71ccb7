"""Tests for dependency graph and reference resolution."""

import pytest

from converge.core.models import ObservedState, ReconciliationResult, ResourceKind, ResourceSpec, ResultOutcome
from converge.orchestrator.context import ReconcileContext, find_references
from converge.orchestrator.dependency_graph import DependencyGraph, spec_dependencies
from converge.utils.errors import DependencyError


def spec(name, kind=ResourceKind.ROUTE, attributes=None, depends_on=None):
    return ResourceSpec(
        name=name,
        kind=kind,
        identity=f"id-{name}",
        desired_attributes=attributes or {},
        depends_on=depends_on or [],
    )


class TestFindReferences:
    def test_nested_values(self):
        attributes = {
            "NatGatewayId": "${nat}",
            "Subnets": ["${a.SubnetId}", "subnet-1"],
            "Tags": {"Name": "route-to-${nat}"},
            "Port": 80,
        }
        assert find_references(attributes) == {"nat", "a"}

    def test_references_imply_dependencies(self):
        s = spec("route", attributes={"NatGatewayId": "${nat}"}, depends_on=["vpc"])
        assert spec_dependencies(s) == {"nat", "vpc"}


class TestDependencyGraph:
    def test_waves(self):
        graph = DependencyGraph.from_specs([
            spec("listener", attributes={"TargetGroupArn": "${tg}"}, depends_on=["alb"]),
            spec("tg"),
            spec("alb", depends_on=["sg"]),
            spec("sg"),
        ])
        assert graph.get_waves() == [["tg", "sg"], ["alb"], ["listener"]]

    def test_destruction_order_reverses(self):
        graph = DependencyGraph.from_specs([spec("nat"), spec("route", depends_on=["nat"])])
        assert graph.get_destruction_order() == ["route", "nat"]

    def test_missing_dependency(self):
        graph = DependencyGraph.from_specs([spec("route", attributes={"NatGatewayId": "${nat}"})])
        with pytest.raises(DependencyError, match="'nat' which does not exist"):
            graph.validate()

    def test_cycle(self):
        graph = DependencyGraph.from_specs([
            spec("a", depends_on=["b"]),
            spec("b", depends_on=["c"]),
            spec("c", depends_on=["a"]),
        ])
        with pytest.raises(DependencyError, match="Circular dependency"):
            graph.get_waves()

    def test_duplicate_name(self):
        graph = DependencyGraph()
        graph.add_spec(spec("a"))
        with pytest.raises(DependencyError, match="Duplicate"):
            graph.add_spec(spec("a"))

    def test_direct_dependents(self):
        graph = DependencyGraph.from_specs([
            spec("nat"),
            spec("route", depends_on=["nat"]),
            spec("asg", depends_on=["route"]),
        ])
        assert graph.get_dependents("nat") == {"route"}
        assert graph.get_dependents("asg") == set()


class TestReconcileContext:
    def record(self, context, name, resource_id, attributes=None):
        s = spec(name)
        context.record_result(ReconciliationResult(
            spec=s, outcome=ResultOutcome.CREATED, resource_id=resource_id, attributes=attributes or {}
        ))

    def test_resolves_id_and_attribute(self):
        context = ReconcileContext()
        self.record(context, "nat", "nat-123")
        self.record(context, "alb", "arn:lb", {"DNSName": "alb.example.com", "Subnets": ["s1", "s2"]})

        resolved = context.resolve(spec("route", attributes={
            "NatGatewayId": "${nat}",
            "Subnets": "${alb.Subnets}",
            "Url": "http://${alb.DNSName}/health",
        }))

        assert resolved.desired_attributes == {
            "NatGatewayId": "nat-123",
            "Subnets": ["s1", "s2"],
            "Url": "http://alb.example.com/health",
        }

    def test_unresolved_reference(self):
        context = ReconcileContext()
        with pytest.raises(DependencyError, match="unresolved reference") as exc_info:
            context.resolve(spec("route", attributes={"NatGatewayId": "${nat}"}))
        assert exc_info.value.context.operation == "resolve"

    def test_missing_attribute(self):
        context = ReconcileContext()
        self.record(context, "nat", "nat-123")
        with pytest.raises(DependencyError, match="no attribute 'PublicIp'"):
            context.lookup("nat", "PublicIp")

    def test_failed_results_are_not_recorded(self):
        context = ReconcileContext()
        context.record_result(ReconciliationResult(spec=spec("nat"), outcome=ResultOutcome.FAILED))
        assert not context.has_output("nat")

    def test_observed_state_feeds_plan_runs(self):
        context = ReconcileContext()
        context.record_observed("nat", ObservedState.present("nat-9"))
        context.record_observed("missing", ObservedState.not_found())
        assert context.lookup("nat") == "nat-9"
        assert not context.has_output("missing")

    def test_spec_without_references_is_returned_as_is(self):
        s = spec("plain", attributes={"a": 1})
        assert ReconcileContext().resolve(s) is s
