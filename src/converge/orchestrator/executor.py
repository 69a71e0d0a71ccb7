"""Multi-resource executor: dependency waves, parallel reconciliation, teardown."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional

from converge.core.models import (
    ObservedState,
    Plan,
    ReconciliationResult,
    ResourceSpec,
    ResultOutcome,
)
from converge.core.reconciler import Reconciler
from converge.core.waiter import CancellationToken
from converge.orchestrator.context import ReconcileContext
from converge.orchestrator.dependency_graph import DependencyGraph
from converge.utils.errors import (
    DependencyError,
    ErrorContext,
    InvalidSpecError,
    ReconcileCancelledError,
    ReconcileError,
    error_handler,
)
from converge.utils.logging import get_logger
from converge.utils.retry import RetryPolicy, get_default_retry_policy

logger = get_logger(__name__)


class RunStatus(Enum):
    """Overall status of a multi-resource run."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class RunReport:
    """Results of an apply run, in execution order."""

    results: Dict[str, ReconciliationResult] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    waves: List[List[str]] = field(default_factory=list)
    duration: float = 0.0  # seconds

    @property
    def status(self) -> RunStatus:
        if self.skipped or any(r.is_failed() for r in self.results.values()):
            return RunStatus.FAILED
        return RunStatus.SUCCESS

    def is_success(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def failed(self) -> List[ReconciliationResult]:
        return [r for r in self.results.values() if r.is_failed()]

    def counts(self) -> Dict[str, int]:
        """Number of results per outcome, plus skipped specs."""
        counts = {outcome.value: 0 for outcome in ResultOutcome}
        for result in self.results.values():
            counts[result.outcome.value] += 1
        counts['skipped'] = len(self.skipped)
        return counts


@dataclass
class PlanEntry:
    """Read-only view of what applying a spec would do."""

    spec: ResourceSpec
    observed: Optional[ObservedState] = None
    plan: Optional[Plan] = None
    error: Optional[ReconcileError] = None
    # Dependencies that do not exist yet, so the plan cannot be computed
    blocked_by: List[str] = field(default_factory=list)


class TeardownStatus(Enum):
    """What destroy did with one spec."""
    DELETED = "deleted"
    ABSENT = "absent"
    FAILED = "failed"
    KEPT = "kept"  # a dependent could not be deleted


@dataclass
class TeardownResult:
    """Outcome of deleting the resource behind one spec."""
    spec: ResourceSpec
    status: TeardownStatus
    resource_id: Optional[str] = None
    error: Optional[ReconcileError] = None

    def is_failed(self) -> bool:
        return self.status in (TeardownStatus.FAILED, TeardownStatus.KEPT)


# Callback invoked as (spec name, result) when a spec finishes
ProgressCallback = Callable[[str, ReconciliationResult], None]


class KeyedLocks:
    """One lock per key; serializes work on the same resource identity."""

    def __init__(self):
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: Hashable) -> threading.Lock:
        with self._guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]


class ReconcileExecutor:
    """Reconciles a set of specs in dependency order.

    Specs in the same wave run concurrently; a wave only starts once every
    spec of the previous wave finished successfully. After a wave with
    failures, the remaining specs are reported as skipped.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = 4,
        parallel: bool = True
    ):
        """Initialize executor.

        Args:
            reconciler: Reconciler used for each spec
            retry_policy: Policy for repeating failed runs; defaults to the
                process-wide policy
            max_workers: Maximum number of parallel workers within a wave
            parallel: Whether to reconcile specs of a wave concurrently
        """
        self.reconciler = reconciler
        self.retry_policy = retry_policy
        self.max_workers = max_workers
        self.parallel = parallel
        self._locks = KeyedLocks()

    def build_graph(self, specs: List[ResourceSpec]) -> DependencyGraph:
        """Validate a batch of specs and build their dependency graph.

        Raises:
            InvalidSpecError: If two specs target the same kind and identity
            DependencyError: If dependencies are missing or circular
        """
        seen = {}
        for spec in specs:
            if spec.key in seen:
                raise InvalidSpecError(
                    f"Specs '{seen[spec.key]}' and '{spec.logical_name}' both target {spec.label}",
                    context=ErrorContext(kind=spec.kind.value, identity=spec.identity)
                )
            seen[spec.key] = spec.logical_name

        graph = DependencyGraph.from_specs(specs)
        graph.validate()
        return graph

    def execute(
        self,
        specs: List[ResourceSpec],
        cancel: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> RunReport:
        """Reconcile every spec, dependencies first.

        Args:
            specs: Specs to reconcile
            cancel: Optional cancellation token shared by every spec
            progress_callback: Optional callback for progress updates

        Returns:
            RunReport with one result per reconciled spec
        """
        cancel = cancel or CancellationToken()
        start_time = time.monotonic()
        graph = self.build_graph(specs)
        waves = graph.get_waves()
        context = ReconcileContext()
        report = RunReport(waves=waves)

        logger.info(f"Starting run: {graph.size()} resources in {len(waves)} waves "
                    f"(parallel={self.parallel})")

        for index, wave in enumerate(waves, 1):
            logger.info(f"Executing wave {index} ({len(wave)} resources)...")

            results = self._execute_wave(graph, wave, context, cancel, progress_callback)
            # Keep the wave's declared order regardless of completion order
            for name in wave:
                report.results[name] = results[name]

            failures = [name for name in wave if results[name].is_failed()]
            if failures:
                report.skipped = [name for later in waves[index:] for name in later]
                logger.error(
                    f"Wave {index} completed with {len(failures)} failures; "
                    f"skipping {len(report.skipped)} remaining resources"
                )
                break

        report.duration = time.monotonic() - start_time

        if report.is_success():
            logger.info(f"Run completed successfully in {report.duration:.1f}s")
        else:
            logger.error(f"Run failed: {report.counts()}")

        return report

    def _execute_wave(
        self,
        graph: DependencyGraph,
        wave: List[str],
        context: ReconcileContext,
        cancel: CancellationToken,
        progress_callback: Optional[ProgressCallback]
    ) -> Dict[str, ReconciliationResult]:
        results = {}

        if self.parallel and len(wave) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                future_to_name = {
                    executor.submit(self._reconcile_one, graph.get_spec(name), context, cancel): name
                    for name in wave
                }
                for future in as_completed(future_to_name):
                    name = future_to_name[future]
                    results[name] = future.result()
                    if progress_callback:
                        progress_callback(name, results[name])
        else:
            for name in wave:
                results[name] = self._reconcile_one(graph.get_spec(name), context, cancel)
                if progress_callback:
                    progress_callback(name, results[name])

        return results

    def _reconcile_one(
        self,
        spec: ResourceSpec,
        context: ReconcileContext,
        cancel: CancellationToken
    ) -> ReconciliationResult:
        try:
            resolved = context.resolve(spec)
        except ReconcileError as e:
            logger.error(e.message, extra={'kind': spec.kind.value, 'identity': spec.identity})
            return ReconciliationResult(spec=spec, outcome=ResultOutcome.FAILED, error=e)

        policy = self.retry_policy or get_default_retry_policy()
        with self._locks.get(resolved.key):
            result = policy.run(lambda: self.reconciler.reconcile(resolved, cancel), cancel)

        context.record_result(result)
        return result

    def plan(self, specs: List[ResourceSpec]) -> List[PlanEntry]:
        """Observe and diff every spec without changing anything.

        References are resolved from what the lookups of earlier specs
        found. When a referenced resource does not exist yet, the entry is
        marked as blocked instead of planned.
        """
        graph = self.build_graph(specs)
        context = ReconcileContext()
        entries = []

        for name in graph.topological_sort():
            spec = graph.get_spec(name)
            entry = PlanEntry(spec=spec)
            entries.append(entry)

            missing = sorted(
                dep for dep in graph.get_dependencies(name) if not context.has_output(dep)
            )
            if missing:
                entry.blocked_by = missing
                continue

            try:
                resolved = context.resolve(spec)
                entry.observed, entry.plan = self.reconciler.plan(resolved)
                context.record_observed(name, entry.observed)
            except ReconcileError as e:
                entry.error = e
                logger.warning(f"Could not plan {spec.label}: {e.message}")

        return entries

    def destroy(
        self,
        specs: List[ResourceSpec],
        cancel: Optional[CancellationToken] = None
    ) -> List[TeardownResult]:
        """Delete the resources behind ``specs``, dependents first.

        Best effort: a failed deletion is reported and the remaining specs
        are still processed, except those the failed one depends on. They
        are kept so nothing still in use loses its target.
        """
        cancel = cancel or CancellationToken()
        graph = self.build_graph(specs)
        provider = self.reconciler.provider
        results = []
        remaining = set()

        for name in graph.get_destruction_order():
            spec = graph.get_spec(name)
            extra = {'kind': spec.kind.value, 'identity': spec.identity, 'operation': 'delete'}

            if cancel.cancelled:
                results.append(TeardownResult(spec, TeardownStatus.FAILED, error=ReconcileCancelledError()))
                remaining.add(name)
                continue

            blocking = sorted(graph.get_dependents(name) & remaining)
            if blocking:
                logger.warning(f"Keeping resource; still needed by {', '.join(blocking)}", extra=extra)
                results.append(TeardownResult(
                    spec, TeardownStatus.KEPT,
                    error=DependencyError(f"still needed by {', '.join(blocking)}"),
                ))
                remaining.add(name)
                continue

            try:
                observed = provider.find(spec.kind, spec.identity)
                if not observed.found:
                    logger.info("Nothing to delete", extra=extra)
                    results.append(TeardownResult(spec, TeardownStatus.ABSENT))
                    continue

                provider.delete(spec.kind, observed.resource_id)
                logger.info(f"Deleted {observed.resource_id}", extra=extra)
                results.append(TeardownResult(spec, TeardownStatus.DELETED, observed.resource_id))

            except Exception as e:
                error = error_handler.handle_exception(
                    e, ErrorContext(kind=spec.kind.value, identity=spec.identity, operation='delete')
                )
                logger.warning(f"Failed to delete: {error.message}", extra=extra)
                results.append(TeardownResult(spec, TeardownStatus.FAILED, error=error))
                remaining.add(name)

        return results
