"""Resource provider interface consumed by the reconciler."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Set

from converge.core.models import ObservedState, ResourceKind, ResourceSpec, ResourceStatus


@dataclass(frozen=True)
class CreateOutcome:
    """Identity and initial status of a newly created resource."""
    resource_id: str
    status: ResourceStatus


@dataclass(frozen=True)
class ApplyOutcome:
    """Status after an update and the attribute keys the provider accepted."""
    status: ResourceStatus
    applied_keys: FrozenSet[str] = field(default_factory=frozenset)


class ResourceProvider(ABC):
    """Base class for systems that own the real resource lifecycle.

    Providers never retry. Failures are raised as ``ProviderError`` when the
    request was rejected and ``ProviderUnavailableError`` when the provider
    could not be reached.
    """

    # True when apply() either changes every delta key or none of them
    atomic_updates: bool = False

    @abstractmethod
    def supported_kinds(self) -> Set[ResourceKind]:
        """Resource kinds this provider can reconcile."""
        pass

    def supports(self, kind: ResourceKind) -> bool:
        return kind in self.supported_kinds()

    def normalize(self, spec: ResourceSpec) -> ResourceSpec:
        """Bring desired attributes into the canonical form ``find`` reports.

        The default implementation returns the spec unchanged.
        """
        return spec

    @abstractmethod
    def find(self, kind: ResourceKind, identity: str) -> ObservedState:
        """Look up the resource matching ``identity``.

        Args:
            kind: Resource kind
            identity: Natural key of the resource

        Returns:
            ObservedState.not_found() or the single matching resource
        """
        pass

    @abstractmethod
    def create(self, spec: ResourceSpec) -> CreateOutcome:
        """Create the resource described by ``spec``."""
        pass

    @abstractmethod
    def apply(self, kind: ResourceKind, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        """Change the attributes in ``delta`` on an existing resource."""
        pass

    @abstractmethod
    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        """Delete an existing resource."""
        pass
