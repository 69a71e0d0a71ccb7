"""Shared test fixtures: in-memory providers and sample specs."""

import itertools
import threading
from collections import deque

import pytest

from converge.core.models import ObservedState, ResourceKind, ResourceSpec, ResourceStatus
from converge.core.provider import ApplyOutcome, CreateOutcome, ResourceProvider
from converge.core.reconciler import Reconciler
from converge.core.waiter import WaitConfig
from converge.utils.retry import RetryPolicy, set_default_retry_policy


class ScriptedProvider(ResourceProvider):
    """Provider whose answers are scripted per operation.

    ``find`` pops the next scripted answer and keeps repeating the last one
    once the script runs out. Scripted exceptions are raised.
    """

    def __init__(self, finds=None, create=None, apply=None, atomic_updates=False, kinds=None):
        self.finds = deque(finds or [ObservedState.not_found()])
        self.create_result = create or CreateOutcome("res-1", ResourceStatus.AVAILABLE)
        self.apply_result = apply
        self.atomic_updates = atomic_updates
        self.kinds = set(kinds or ResourceKind)
        self.calls = []
        self._last_find = self.finds[0]

    def supported_kinds(self):
        return self.kinds

    def find(self, kind, identity):
        self.calls.append(("find", kind, identity))
        if self.finds:
            self._last_find = self.finds.popleft()
        if isinstance(self._last_find, Exception):
            raise self._last_find
        return self._last_find

    def create(self, spec):
        self.calls.append(("create", spec.kind, spec.identity))
        if isinstance(self.create_result, Exception):
            raise self.create_result
        return self.create_result

    def apply(self, kind, resource_id, delta):
        self.calls.append(("apply", kind, resource_id, dict(delta)))
        if isinstance(self.apply_result, Exception):
            raise self.apply_result
        if self.apply_result is None:
            return ApplyOutcome(ResourceStatus.AVAILABLE, frozenset(delta))
        return self.apply_result

    def delete(self, kind, resource_id):
        self.calls.append(("delete", kind, resource_id))

    def operations(self):
        return [call[0] for call in self.calls]

    def mutating_calls(self):
        return [call for call in self.calls if call[0] in ("create", "apply", "delete")]


class InMemoryProvider(ResourceProvider):
    """Stateful provider keeping resources in a dict; creates are synchronous."""

    atomic_updates = True

    def __init__(self):
        self.resources = {}
        self.calls = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def supported_kinds(self):
        return set(ResourceKind)

    def find(self, kind, identity):
        with self._lock:
            self.calls.append(("find", kind, identity))
            return self.resources.get((kind, identity), ObservedState.not_found())

    def create(self, spec):
        with self._lock:
            self.calls.append(("create", spec.kind, spec.identity))
            resource_id = f"{spec.kind.value}-{next(self._ids)}"
            self.resources[spec.key] = ObservedState.present(
                resource_id, dict(spec.desired_attributes)
            )
            return CreateOutcome(resource_id, ResourceStatus.AVAILABLE)

    def apply(self, kind, resource_id, delta):
        with self._lock:
            self.calls.append(("apply", kind, resource_id, dict(delta)))
            for key, observed in self.resources.items():
                if observed.resource_id == resource_id:
                    self.resources[key] = ObservedState.present(
                        resource_id, {**observed.attributes, **delta}
                    )
            return ApplyOutcome(ResourceStatus.AVAILABLE, frozenset(delta))

    def delete(self, kind, resource_id):
        with self._lock:
            self.calls.append(("delete", kind, resource_id))
            for key, observed in list(self.resources.items()):
                if observed.resource_id == resource_id:
                    del self.resources[key]

    def count(self, operation):
        return sum(1 for call in self.calls if call[0] == operation)


@pytest.fixture(autouse=True)
def _reset_default_retry_policy():
    """Every test starts without a process-wide retry policy."""
    set_default_retry_policy(RetryPolicy())
    yield
    set_default_retry_policy(RetryPolicy())


@pytest.fixture
def memory_provider():
    return InMemoryProvider()


@pytest.fixture
def make_reconciler():
    """Build a reconciler that never really sleeps."""
    def _make(provider, interval=5.0, max_attempts=3, overrides=None):
        return Reconciler(
            provider,
            wait_config=WaitConfig(interval=interval, max_attempts=max_attempts),
            wait_overrides=overrides,
            sleep=lambda seconds: None,
        )
    return _make


@pytest.fixture
def nat_spec():
    return ResourceSpec(
        kind=ResourceKind.NAT_GATEWAY,
        identity="subnet-b",
        desired_attributes={"SubnetId": "subnet-b"},
    )


@pytest.fixture
def sg_spec():
    return ResourceSpec(
        kind=ResourceKind.SECURITY_GROUP,
        identity="vpc-1/web",
        desired_attributes={"Description": "web", "Port": 80},
    )
