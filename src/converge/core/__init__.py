"""Reconciliation engine core."""

from converge.core.diff import compute_plan, select_match, values_match
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
from converge.core.provider import ApplyOutcome, CreateOutcome, ResourceProvider
from converge.core.reconciler import Reconciler
from converge.core.waiter import CancellationToken, StabilityWaiter, WaitConfig

__all__ = [
    'ApplyOutcome',
    'CancellationToken',
    'CreateOutcome',
    'ObservedState',
    'Plan',
    'PlanAction',
    'ReconciliationResult',
    'Reconciler',
    'ResourceKind',
    'ResourceProvider',
    'ResourceSpec',
    'ResourceStatus',
    'ResultOutcome',
    'StabilityWaiter',
    'WaitConfig',
    'compute_plan',
    'select_match',
    'values_match',
]
