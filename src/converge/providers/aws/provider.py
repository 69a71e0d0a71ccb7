"""AWS implementation of the resource provider interface."""

from typing import Any, Dict, Set

from converge.core.diff import select_match
from converge.core.models import ObservedState, ResourceKind, ResourceSpec
from converge.core.provider import ApplyOutcome, CreateOutcome, ResourceProvider
from converge.utils.aws_client import AWSClientManager
from converge.utils.errors import ErrorContext, InvalidSpecError, ReconcileError, error_handler
from converge.utils.logging import get_logger

from .base import KindHandler
from .compute import AutoScalingGroupHandler, LaunchTemplateHandler, ScalingPolicyHandler
from .load_balancing import ListenerHandler, LoadBalancerHandler, TargetGroupHandler
from .network import NatGatewayHandler, RouteHandler, SecurityGroupHandler

logger = get_logger(__name__)

HANDLER_CLASSES = (
    NatGatewayHandler,
    RouteHandler,
    SecurityGroupHandler,
    LaunchTemplateHandler,
    AutoScalingGroupHandler,
    ScalingPolicyHandler,
    TargetGroupHandler,
    LoadBalancerHandler,
    ListenerHandler,
)


class AWSProvider(ResourceProvider):
    """Dispatches provider calls to per-kind handlers backed by boto3.

    Updates may involve several API calls, so they are not atomic.
    """

    atomic_updates = False

    def __init__(self, clients: AWSClientManager):
        """Initialize provider.

        Args:
            clients: Client manager shared by every kind handler
        """
        self.clients = clients
        self.handlers: Dict[ResourceKind, KindHandler] = {
            handler_class.kind: handler_class(clients) for handler_class in HANDLER_CLASSES
        }

    def supported_kinds(self) -> Set[ResourceKind]:
        return set(self.handlers)

    def normalize(self, spec: ResourceSpec) -> ResourceSpec:
        handler = self._handler(spec.kind)
        return spec.model_copy(
            update={'desired_attributes': handler.normalize(spec.desired_attributes)}
        )

    def find(self, kind: ResourceKind, identity: str) -> ObservedState:
        handler = self._handler(kind)
        candidates = self._call(handler.find_candidates, identity, kind=kind, identity=identity,
                                operation='find')
        if len(candidates) > 1:
            logger.warning(
                f"{len(candidates)} resources match; selecting one deterministically",
                extra={'kind': kind.value, 'identity': identity},
            )
        return select_match(candidates)

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        handler = self._handler(spec.kind)
        return self._call(handler.create, spec, kind=spec.kind, identity=spec.identity,
                          operation='create')

    def apply(self, kind: ResourceKind, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        handler = self._handler(kind)
        handler.check_mutable(delta)
        return self._call(handler.apply, resource_id, delta, kind=kind, identity=resource_id,
                          operation='apply')

    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        handler = self._handler(kind)
        self._call(handler.delete, resource_id, kind=kind, identity=resource_id,
                   operation='delete')

    def _handler(self, kind: ResourceKind) -> KindHandler:
        try:
            return self.handlers[kind]
        except KeyError:
            raise InvalidSpecError(f"unsupported resource kind: {kind}")

    def _call(self, func, *args, kind: ResourceKind, identity: str, operation: str):
        """Run a handler method, translating AWS errors."""
        try:
            return func(*args)
        except ReconcileError:
            raise
        except Exception as e:
            context = ErrorContext(kind=kind.value, identity=identity, operation=operation)
            raise error_handler.handle_exception(e, context) from e
