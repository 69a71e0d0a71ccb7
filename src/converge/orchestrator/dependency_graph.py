"""Dependency graph over resource specs for ordering multi-resource runs."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from converge.core.models import ResourceSpec
from converge.orchestrator.context import find_references
from converge.utils.errors import DependencyError, ErrorContext


@dataclass
class DependencyNode:
    """Node in the dependency graph."""

    name: str
    spec: ResourceSpec
    dependencies: Set[str]  # Spec names this node depends on


def spec_dependencies(spec: ResourceSpec) -> Set[str]:
    """Explicit ``depends_on`` entries plus every spec referenced by value."""
    return set(spec.depends_on) | find_references(spec.desired_attributes)


class DependencyGraph:
    """Directed acyclic graph (DAG) of spec dependencies, keyed by logical name."""

    def __init__(self):
        """Initialize empty dependency graph."""
        self.nodes: Dict[str, DependencyNode] = {}
        self._adjacency_list: Dict[str, Set[str]] = defaultdict(set)

    @classmethod
    def from_specs(cls, specs: List[ResourceSpec]) -> "DependencyGraph":
        graph = cls()
        for spec in specs:
            graph.add_spec(spec)
        return graph

    def add_spec(self, spec: ResourceSpec) -> None:
        """Add a spec to the graph.

        Raises:
            DependencyError: If another spec already uses the same name
        """
        name = spec.logical_name
        if name in self.nodes:
            raise DependencyError(
                f"Duplicate resource name '{name}'",
                context=ErrorContext(kind=spec.kind.value, identity=spec.identity)
            )

        dependencies = spec_dependencies(spec)
        self.nodes[name] = DependencyNode(name=name, spec=spec, dependencies=dependencies)
        for dep_name in dependencies:
            self._adjacency_list[dep_name].add(name)

    def get_dependencies(self, name: str) -> Set[str]:
        if name not in self.nodes:
            return set()
        return self.nodes[name].dependencies.copy()

    def get_dependents(self, name: str) -> Set[str]:
        return self._adjacency_list[name].copy()

    def detect_circular_dependencies(self) -> Optional[List[str]]:
        """Detect circular dependencies in the graph.

        Returns:
            List of spec names forming a cycle, or None if no cycle exists
        """
        # White (0): unvisited, Gray (1): visiting, Black (2): visited
        color = {name: 0 for name in self.nodes}
        parent = {}

        def dfs(name: str) -> Optional[List[str]]:
            color[name] = 1

            for dependent in sorted(self._adjacency_list[name]):
                if dependent not in color:
                    continue
                if color[dependent] == 1:
                    # Back edge: walk parents to rebuild the cycle
                    cycle = [dependent]
                    current = name
                    while current != dependent:
                        cycle.append(current)
                        current = parent.get(current)
                        if current is None:
                            break
                    cycle.append(dependent)
                    return list(reversed(cycle))

                if color[dependent] == 0:
                    parent[dependent] = name
                    cycle = dfs(dependent)
                    if cycle:
                        return cycle

            color[name] = 2
            return None

        for name in self.nodes:
            if color[name] == 0:
                cycle = dfs(name)
                if cycle:
                    return cycle

        return None

    def validate(self) -> None:
        """Validate the dependency graph.

        Raises:
            DependencyError: If a dependency is missing or the graph has a cycle
        """
        for name, node in self.nodes.items():
            for dep_name in sorted(node.dependencies):
                if dep_name not in self.nodes:
                    raise DependencyError(
                        f"Resource '{name}' depends on '{dep_name}' which does not exist",
                        context=ErrorContext(kind=node.spec.kind.value, identity=node.spec.identity)
                    )

        cycle = self.detect_circular_dependencies()
        if cycle:
            raise DependencyError(f"Circular dependency detected: {' -> '.join(cycle)}")

    def topological_sort(self) -> List[str]:
        """Spec names in dependency order (dependencies before dependents)."""
        return [name for wave in self.get_waves() for name in wave]

    def get_waves(self) -> List[List[str]]:
        """Group specs into waves that can be reconciled in parallel.

        Specs in the same wave have no dependencies on each other. Within a
        wave, names keep the order the specs were added in.

        Raises:
            DependencyError: If the graph is invalid
        """
        self.validate()

        order = {name: index for index, name in enumerate(self.nodes)}
        in_degree = {name: len(node.dependencies) for name, node in self.nodes.items()}
        current_wave = [name for name, degree in in_degree.items() if degree == 0]
        waves = []

        while current_wave:
            waves.append(current_wave)
            next_wave = []
            for name in current_wave:
                for dependent in self._adjacency_list[name]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_wave.append(dependent)
            current_wave = sorted(next_wave, key=order.__getitem__)

        if sum(len(wave) for wave in waves) != len(self.nodes):
            raise DependencyError("Cannot create waves: graph contains cycles")

        return waves

    def get_destruction_order(self) -> List[str]:
        """Dependents before dependencies."""
        return list(reversed(self.topological_sort()))

    def get_spec(self, name: str) -> Optional[ResourceSpec]:
        node = self.nodes.get(name)
        return node.spec if node else None

    def size(self) -> int:
        return len(self.nodes)
