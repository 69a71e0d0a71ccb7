"""Orchestration of multi-resource runs."""

from converge.orchestrator.context import ReconcileContext, find_references
from converge.orchestrator.dependency_graph import DependencyGraph
from converge.orchestrator.executor import (
    PlanEntry,
    ReconcileExecutor,
    RunReport,
    RunStatus,
    TeardownResult,
    TeardownStatus,
)

__all__ = [
    'DependencyGraph',
    'PlanEntry',
    'ReconcileContext',
    'ReconcileExecutor',
    'RunReport',
    'RunStatus',
    'TeardownResult',
    'TeardownStatus',
    'find_references',
]
