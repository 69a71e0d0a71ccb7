"""Desired/observed comparison and deterministic match selection."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping

from converge.core.models import ObservedState, Plan, ResourceSpec, ResourceStatus


def values_match(desired: Any, observed: Any) -> bool:
    """Check whether an observed value satisfies a desired value.

    Mappings match when every desired entry matches the observed entry, so
    provider-managed extras (e.g. system tags) never force an update. Every
    other value compares by equality.
    """
    if isinstance(desired, Mapping):
        if not isinstance(observed, Mapping):
            return False
        return all(
            key in observed and values_match(value, observed[key])
            for key, value in desired.items()
        )
    return desired == observed


def compute_delta(desired: Mapping[str, Any], observed: Mapping[str, Any]) -> Dict[str, Any]:
    """Return only the desired keys whose observed value does not match."""
    return {
        key: value
        for key, value in desired.items()
        if key not in observed or not values_match(value, observed[key])
    }


def compute_plan(spec: ResourceSpec, observed: ObservedState) -> Plan:
    """Diff a spec against what the provider reported.

    Args:
        spec: Desired state
        observed: Result of the provider lookup for ``spec.identity``

    Returns:
        Plan.create when nothing usable was found, Plan.update with the
        minimal delta when attributes differ, Plan.no_op otherwise

    A resource the provider reports as failed never satisfies a spec, even
    when its attributes match; it is replaced by a new one.
    """
    if not observed.found or observed.status == ResourceStatus.FAILED:
        return Plan.create(spec.desired_attributes)

    delta = compute_delta(spec.desired_attributes, observed.attributes)
    if delta:
        return Plan.update(delta)

    return Plan.no_op()


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created_sort_key(created_at):
    if created_at is None:
        return _EPOCH
    if created_at.tzinfo is None:
        return created_at.replace(tzinfo=timezone.utc)
    return created_at


def select_match(candidates: Iterable[ObservedState]) -> ObservedState:
    """Pick one resource out of several that share an identity.

    Rule: ignore deleting/deleted resources, then prefer the highest status
    precedence (available > updating > creating > failed), then the most
    recently created, then the lowest resource id.
    """
    live = [c for c in candidates if c.found and c.status is not None and not c.status.is_gone]
    if not live:
        return ObservedState.not_found()

    # Stable sorts applied from the least to the most significant key
    ordered = sorted(live, key=lambda c: c.resource_id or "")
    ordered.sort(key=lambda c: _created_sort_key(c.created_at), reverse=True)
    ordered.sort(key=lambda c: c.status.precedence, reverse=True)
    return ordered[0]
