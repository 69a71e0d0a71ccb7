"""Tests for plan computation and match selection."""

from datetime import datetime, timedelta, timezone

from converge.core.diff import compute_delta, compute_plan, select_match, values_match
from converge.core.models import ObservedState, PlanAction, ResourceKind, ResourceSpec, ResourceStatus


def spec_with(attributes):
    return ResourceSpec(kind=ResourceKind.TARGET_GROUP, identity="tg", desired_attributes=attributes)


class TestComputePlan:
    def test_not_found_means_create(self):
        plan = compute_plan(spec_with({"Port": 80}), ObservedState.not_found())
        assert plan.action == PlanAction.CREATE
        assert plan.delta == {"Port": 80}

    def test_failed_resource_means_create(self):
        observed = ObservedState.present("x", {"Port": 80}, ResourceStatus.FAILED, "failed")
        plan = compute_plan(spec_with({"Port": 80}), observed)
        assert plan.action == PlanAction.CREATE
        assert plan.delta == {"Port": 80}

    def test_minimal_delta(self):
        plan = compute_plan(spec_with({"a": 1, "b": 2}), ObservedState.present("x", {"a": 1, "b": 9}))
        assert plan.action == PlanAction.UPDATE
        assert plan.delta == {"b": 2}

    def test_missing_observed_key_is_in_delta(self):
        plan = compute_plan(spec_with({"a": 1, "c": 3}), ObservedState.present("x", {"a": 1}))
        assert plan.delta == {"c": 3}

    def test_extra_observed_keys_are_ignored(self):
        plan = compute_plan(spec_with({"a": 1}), ObservedState.present("x", {"a": 1, "arn": "zzz"}))
        assert plan.action == PlanAction.NO_OP
        assert plan.delta == {}

    def test_empty_desired_attributes_is_noop_when_found(self):
        plan = compute_plan(spec_with({}), ObservedState.present("x", {"a": 1}))
        assert plan.action == PlanAction.NO_OP


class TestValuesMatch:
    def test_mapping_subset_matches(self):
        assert values_match({"Name": "web"}, {"Name": "web", "aws:cloudformation:stack": "s"})

    def test_mapping_value_mismatch(self):
        assert not values_match({"Name": "web"}, {"Name": "api"})

    def test_nested_mappings(self):
        assert values_match({"a": {"b": 1}}, {"a": {"b": 1, "c": 2}, "d": 3})
        assert not values_match({"a": {"b": 1}}, {"a": {"b": 2}})

    def test_mapping_against_scalar(self):
        assert not values_match({"a": 1}, "a")

    def test_lists_compare_by_equality(self):
        assert values_match(["a", "b"], ["a", "b"])
        assert not values_match(["a"], ["a", "b"])

    def test_int_and_float_are_equal(self):
        assert values_match(25, 25.0)

    def test_compute_delta_with_tags(self):
        delta = compute_delta(
            {"Tags": {"Name": "nat"}, "SubnetId": "subnet-1"},
            {"Tags": {"Name": "old", "Env": "lab"}, "SubnetId": "subnet-1"},
        )
        assert delta == {"Tags": {"Name": "nat"}}


class TestSelectMatch:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)

    def test_no_candidates(self):
        assert not select_match([]).found

    def test_deleted_and_deleting_are_ignored(self):
        candidates = [
            ObservedState.present("nat-1", status=ResourceStatus.DELETED),
            ObservedState.present("nat-2", status=ResourceStatus.DELETING),
        ]
        assert not select_match(candidates).found

    def test_available_beats_newer_pending(self):
        candidates = [
            ObservedState.present("nat-new", status=ResourceStatus.CREATING, created_at=self.now),
            ObservedState.present("nat-old", status=ResourceStatus.AVAILABLE,
                                  created_at=self.now - timedelta(days=3)),
        ]
        assert select_match(candidates).resource_id == "nat-old"

    def test_failed_is_last_resort(self):
        candidates = [
            ObservedState.present("nat-f", status=ResourceStatus.FAILED, created_at=self.now),
            ObservedState.present("nat-c", status=ResourceStatus.CREATING,
                                  created_at=self.now - timedelta(hours=1)),
        ]
        assert select_match(candidates).resource_id == "nat-c"

    def test_newest_wins_within_same_status(self):
        candidates = [
            ObservedState.present("nat-a", created_at=self.now - timedelta(hours=2)),
            ObservedState.present("nat-b", created_at=self.now),
        ]
        assert select_match(candidates).resource_id == "nat-b"

    def test_lowest_id_breaks_remaining_ties(self):
        candidates = [
            ObservedState.present("nat-b", created_at=self.now),
            ObservedState.present("nat-a", created_at=self.now),
            ObservedState.present("nat-c"),
        ]
        assert select_match(candidates).resource_id == "nat-a"

    def test_order_of_candidates_does_not_matter(self):
        candidates = [
            ObservedState.present("nat-2"),
            ObservedState.present("nat-1"),
            ObservedState.present("nat-3", status=ResourceStatus.UPDATING),
        ]
        assert select_match(candidates).resource_id == select_match(list(reversed(candidates))).resource_id

    def test_naive_and_aware_timestamps_mix(self):
        candidates = [
            ObservedState.present("a", created_at=datetime(2024, 1, 1)),
            ObservedState.present("b", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc)),
        ]
        assert select_match(candidates).resource_id == "b"
