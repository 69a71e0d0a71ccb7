"""Run context: outputs of reconciled specs and reference resolution.

Attribute values may refer to other specs in the same run:

* ``${name}`` resolves to the resource id of spec ``name``
* ``${name.Attribute}`` resolves to an observed attribute of spec ``name``

A value that is exactly one reference is replaced by the referenced value
as-is (so lists stay lists); references embedded in longer strings are
interpolated as text.
"""

import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from converge.core.models import ObservedState, ReconciliationResult, ResourceSpec
from converge.utils.errors import DependencyError, ErrorContext

REFERENCE_PATTERN = re.compile(r"\$\{([A-Za-z0-9_-]+)(?:\.([A-Za-z0-9_:.-]+))?\}")


def find_references(value: Any) -> Set[str]:
    """Collect the spec names referenced anywhere inside ``value``."""
    if isinstance(value, str):
        return {match.group(1) for match in REFERENCE_PATTERN.finditer(value)}
    if isinstance(value, dict):
        names = set()
        for item in value.values():
            names |= find_references(item)
        return names
    if isinstance(value, (list, tuple)):
        names = set()
        for item in value:
            names |= find_references(item)
        return names
    return set()


@dataclass
class ResourceOutput:
    """What later specs may reference from a reconciled spec."""
    resource_id: Optional[str]
    attributes: Dict[str, Any] = field(default_factory=dict)


class ReconcileContext:
    """Thread-safe record of spec outputs for one multi-resource run."""

    def __init__(self):
        self._outputs: Dict[str, ResourceOutput] = {}
        self._lock = threading.Lock()

    def record_result(self, result: ReconciliationResult) -> None:
        """Store the outputs of a successful reconciliation."""
        if result.is_failed():
            return
        with self._lock:
            self._outputs[result.spec.logical_name] = ResourceOutput(
                resource_id=result.resource_id,
                attributes=dict(result.attributes),
            )

    def record_observed(self, name: str, observed: ObservedState) -> None:
        """Store what a lookup found, for read-only runs."""
        if not observed.found:
            return
        with self._lock:
            self._outputs[name] = ResourceOutput(
                resource_id=observed.resource_id,
                attributes=dict(observed.attributes),
            )

    def has_output(self, name: str) -> bool:
        with self._lock:
            return name in self._outputs

    def lookup(self, name: str, attribute: Optional[str] = None) -> Any:
        """Return the referenced value.

        Raises:
            DependencyError: If the spec has no output or lacks the attribute
        """
        with self._lock:
            output = self._outputs.get(name)

        if output is None:
            raise DependencyError(f"unresolved reference: '{name}' has no result in this run")

        if attribute is None:
            if output.resource_id is None:
                raise DependencyError(f"unresolved reference: '{name}' has no resource id")
            return output.resource_id

        if attribute not in output.attributes:
            raise DependencyError(f"unresolved reference: '{name}' has no attribute '{attribute}'")
        return output.attributes[attribute]

    def resolve(self, spec: ResourceSpec) -> ResourceSpec:
        """Return a copy of ``spec`` with every reference substituted.

        Raises:
            DependencyError: If any reference cannot be resolved
        """
        if not find_references(spec.desired_attributes):
            return spec
        try:
            attributes = self._resolve_value(spec.desired_attributes)
        except DependencyError as e:
            e.context = ErrorContext(kind=spec.kind.value, identity=spec.identity, operation='resolve')
            raise
        return spec.model_copy(update={'desired_attributes': attributes})

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, str):
            whole = REFERENCE_PATTERN.fullmatch(value)
            if whole:
                return self.lookup(whole.group(1), whole.group(2))
            return REFERENCE_PATTERN.sub(
                lambda m: str(self.lookup(m.group(1), m.group(2))), value
            )
        if isinstance(value, dict):
            return {key: self._resolve_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(item) for item in value]
        return value
