"""Base class for per-kind AWS handlers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, List, Optional

from botocore.exceptions import ClientError

from converge.core.models import ObservedState, ResourceKind, ResourceSpec, ResourceStatus
from converge.core.provider import ApplyOutcome, CreateOutcome
from converge.utils.aws_client import AWSClientManager
from converge.utils.errors import InvalidSpecError, ProviderError


def tags_to_dict(tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """Convert AWS ``[{'Key': k, 'Value': v}]`` tags to a plain mapping."""
    return {tag['Key']: tag.get('Value', '') for tag in tags or []}


def dict_to_tags(tags: Dict[str, Any]) -> List[Dict[str, str]]:
    return [{'Key': str(key), 'Value': str(value)} for key, value in tags.items()]


def error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def is_not_found(error: ClientError) -> bool:
    """Whether a lookup failed only because nothing matched."""
    return 'NotFound' in error_code(error)


class KindHandler(ABC):
    """Finds, creates, updates and deletes resources of one kind.

    Handlers raise botocore exceptions as they come; the provider translates
    them. Spec problems the handler detects itself are raised as
    InvalidSpecError, and rejected requests as ProviderError.
    """

    kind: ResourceKind
    # Attributes AWS cannot change on an existing resource
    immutable_attributes: FrozenSet[str] = frozenset()
    # Attributes holding unordered lists, compared in sorted form
    unordered_attributes: FrozenSet[str] = frozenset()

    def __init__(self, clients: AWSClientManager):
        """Initialize handler.

        Args:
            clients: Client manager the handler takes its service clients from
        """
        self.clients = clients

    @abstractmethod
    def find_candidates(self, identity: str) -> List[ObservedState]:
        """Every resource currently matching ``identity``, in any state."""
        pass

    @abstractmethod
    def create(self, spec: ResourceSpec) -> CreateOutcome:
        pass

    @abstractmethod
    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        pass

    @abstractmethod
    def delete(self, resource_id: str) -> None:
        pass

    def normalize(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Canonical form of desired attributes (sorted unordered lists)."""
        normalized = dict(attributes)
        for key in self.unordered_attributes:
            value = normalized.get(key)
            if isinstance(value, list) and all(isinstance(v, str) for v in value):
                normalized[key] = sorted(value)
        return normalized

    def check_mutable(self, delta: Dict[str, Any]) -> None:
        """Reject a delta that touches attributes AWS cannot update in place.

        Raises:
            ProviderError: If any immutable attribute is in the delta
        """
        blocked = sorted(set(delta) & self.immutable_attributes)
        if blocked:
            raise ProviderError(
                f"{self.kind.value} cannot change {', '.join(blocked)} in place; "
                f"delete and recreate the resource",
                code='ImmutableAttribute',
                suggestions=['Run destroy for this resource, then apply again'],
            )

    @staticmethod
    def require(attributes: Dict[str, Any], *names: str) -> None:
        missing = [name for name in names if attributes.get(name) in (None, '', [])]
        if missing:
            raise InvalidSpecError(f"missing required attribute(s): {', '.join(missing)}")

    @staticmethod
    def split_identity(identity: str, separator: str, parts: str) -> List[str]:
        """Split a compound identity such as ``vpc-123/web``.

        Raises:
            InvalidSpecError: If the identity does not have two non-empty parts
        """
        head, sep, tail = identity.rpartition(separator)
        if not sep or not head or not tail:
            raise InvalidSpecError(f"identity must look like {parts}, got '{identity}'")
        return [head, tail]


def status_from(mapping: Dict[str, ResourceStatus], raw: Optional[str]) -> ResourceStatus:
    """Map a provider state string onto a normalized status.

    Unknown states are treated as still in progress.
    """
    if raw is None:
        return ResourceStatus.AVAILABLE
    return mapping.get(raw, ResourceStatus.CREATING)
