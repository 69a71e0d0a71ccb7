"""Single-resource reconciliation: observe, diff, apply, wait."""

import time
from typing import Callable, Dict, Optional, Tuple

from converge.core.diff import compute_plan
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
from converge.core.provider import ApplyOutcome, ResourceProvider
from converge.core.waiter import CancellationToken, StabilityWaiter, WaitConfig
from converge.utils.errors import (
    ErrorContext,
    InvalidSpecError,
    ProviderError,
    ReconcileCancelledError,
    ReconcileError,
    error_handler,
)
from converge.utils.logging import get_logger

logger = get_logger(__name__)


class Reconciler:
    """Drives one resource spec to its desired state through a provider.

    A run reads current state, computes the minimal change, applies it and,
    for resources that provision asynchronously, polls until they settle.
    Every run ends in a ReconciliationResult; failures are reported in the
    result instead of being raised. The reconciler never retries; callers
    decide whether a failed run is worth repeating.
    """

    def __init__(
        self,
        provider: ResourceProvider,
        wait_config: Optional[WaitConfig] = None,
        wait_overrides: Optional[Dict[ResourceKind, WaitConfig]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize reconciler.

        Args:
            provider: Provider owning the resources
            wait_config: Default polling configuration
            wait_overrides: Per-kind polling configuration
            sleep: Optional sleep function used between polls
        """
        self.provider = provider
        self.wait_config = wait_config or WaitConfig()
        self.wait_overrides = dict(wait_overrides or {})
        self._sleep = sleep

    def wait_config_for(self, kind: ResourceKind) -> WaitConfig:
        return self.wait_overrides.get(kind, self.wait_config)

    def plan(self, spec: ResourceSpec) -> Tuple[ObservedState, Plan]:
        """Observe and diff without mutating anything.

        Raises:
            ReconcileError: If the spec is invalid or the lookup fails
        """
        spec = self._prepare(spec)
        observed = self._call(spec, 'find', self.provider.find, spec.kind, spec.identity)
        return observed, compute_plan(spec, observed)

    def reconcile(
        self,
        spec: ResourceSpec,
        cancel: Optional[CancellationToken] = None,
    ) -> ReconciliationResult:
        """Converge one resource to ``spec``.

        Args:
            spec: Desired state
            cancel: Optional cancellation token, checked before each provider
                call and at each poll

        Returns:
            ReconciliationResult describing what happened
        """
        cancel = cancel or CancellationToken()
        start_time = time.monotonic()
        extra = {'kind': spec.kind.value, 'identity': spec.identity}
        plan = None
        polls = 0

        try:
            spec = self._prepare(spec)

            self._check_cancelled(cancel)
            observed = self._call(spec, 'find', self.provider.find, spec.kind, spec.identity)
            plan = compute_plan(spec, observed)

            if plan.action == PlanAction.NO_OP:
                if observed.status is not None and not observed.status.is_terminal:
                    # Not waited on: only our own create or apply is
                    logger.warning(
                        f"Resource matches but is still {observed.raw_status}",
                        extra=extra,
                    )
                else:
                    logger.info("Resource up to date", extra=extra)
                return ReconciliationResult(
                    spec=spec,
                    outcome=ResultOutcome.UNCHANGED,
                    resource_id=observed.resource_id,
                    plan=plan,
                    attributes=dict(observed.attributes),
                    duration=time.monotonic() - start_time,
                )

            self._check_cancelled(cancel)

            if plan.action == PlanAction.CREATE:
                logger.info("Creating resource", extra={**extra, 'operation': 'create'})
                created = self._call(spec, 'create', self.provider.create, spec)
                resource_id, status = created.resource_id, created.status
                outcome = ResultOutcome.CREATED
            else:
                logger.info(
                    f"Updating {', '.join(sorted(plan.delta))}",
                    extra={**extra, 'operation': 'apply'},
                )
                applied = self._call(
                    spec, 'apply', self.provider.apply,
                    spec.kind, observed.resource_id, plan.delta,
                )
                self._check_complete(plan, applied)
                resource_id, status = observed.resource_id, applied.status
                outcome = ResultOutcome.UPDATED

            if status == ResourceStatus.FAILED:
                raise ProviderError("provider reported failure", code=status.value)

            base = observed.attributes if plan.action == PlanAction.UPDATE else {}
            attributes = {**base, **spec.desired_attributes}

            if not status.is_terminal:
                waiter = StabilityWaiter(self.wait_config_for(spec.kind), sleep=self._sleep)
                waited = waiter.wait(
                    lambda: self._call(spec, 'find', self.provider.find, spec.kind, spec.identity),
                    cancel,
                    log_extra=extra,
                )
                polls = waited.polls
                if waited.error is not None:
                    raise waited.error
                resource_id = waited.observed.resource_id or resource_id
                attributes = dict(waited.observed.attributes)

            duration = time.monotonic() - start_time
            logger.info(
                f"Resource {outcome.value}: {resource_id}",
                extra={**extra, 'duration': round(duration, 3)},
            )
            return ReconciliationResult(
                spec=spec,
                outcome=outcome,
                resource_id=resource_id,
                plan=plan,
                attributes=attributes,
                polls=polls,
                duration=duration,
            )

        except ReconcileError as e:
            logger.warning(f"Reconciliation failed: {e.message}", extra=extra)
            return ReconciliationResult(
                spec=spec,
                outcome=ResultOutcome.FAILED,
                plan=plan,
                error=e,
                polls=polls,
                duration=time.monotonic() - start_time,
            )

    def _prepare(self, spec: ResourceSpec) -> ResourceSpec:
        if not spec.identity or not spec.identity.strip():
            raise InvalidSpecError("identity must be a non-empty string")
        if not self.provider.supports(spec.kind):
            raise InvalidSpecError(f"unsupported resource kind: {spec.kind.value}")
        try:
            return self.provider.normalize(spec)
        except ReconcileError:
            raise
        except Exception as e:
            raise InvalidSpecError(
                f"invalid attributes: {e}",
                context=ErrorContext(kind=spec.kind.value, identity=spec.identity, operation='normalize'),
                cause=e,
            ) from e

    def _check_cancelled(self, cancel: CancellationToken) -> None:
        if cancel.cancelled:
            raise ReconcileCancelledError()

    def _check_complete(self, plan: Plan, applied: ApplyOutcome) -> None:
        """Reject updates where the provider changed only part of the delta."""
        if self.provider.atomic_updates:
            return
        missing = set(plan.delta) - set(applied.applied_keys)
        if missing:
            raise ProviderError(
                f"partial update: {', '.join(sorted(missing))} not applied",
                code="PartialUpdate",
            )

    def _call(self, spec: ResourceSpec, operation: str, func, *args):
        """Invoke a provider operation, translating unexpected exceptions."""
        try:
            return func(*args)
        except ReconcileError as e:
            if e.context.operation is None:
                e.context.kind = spec.kind.value
                e.context.identity = spec.identity
                e.context.operation = operation
            raise
        except Exception as e:
            context = ErrorContext(
                kind=spec.kind.value,
                identity=spec.identity,
                operation=operation,
            )
            raise error_handler.handle_exception(e, context) from e
