"""YAML configuration parser."""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from converge.core.models import ResourceSpec
from converge.orchestrator.dependency_graph import DependencyGraph
from converge.utils.errors import ConfigurationError, DependencyError

from .models import ProjectConfig, ResourceEntry, Settings


class ConfigValidationError(ConfigurationError):
    """The configuration file is unreadable or fails validation."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration manager: loads a YAML file into settings and specs."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to converge.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict = {}
        self.project: Optional[ProjectConfig] = None
        self.specs: List[ResourceSpec] = []

    @property
    def settings(self) -> Settings:
        return self.project.settings if self.project else Settings()

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        return self.load_dict(self.data)

    def load_dict(self, data: Dict) -> "Config":
        """Validate already-parsed configuration data."""
        self.data = data if isinstance(data, dict) else {}

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        project_data = {k: v for k, v in self.data.items() if k != "resources"}
        self.project = ProjectConfig(**project_data)
        self.specs = [ResourceSpec.from_dict(entry) for entry in self.data["resources"]]
        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if "project" not in self.data:
            errors.append({"loc": ["project"], "msg": "Required field 'project' is missing"})
        else:
            project_data = {k: v for k, v in self.data.items() if k != "resources"}
            try:
                ProjectConfig(**project_data)
            except ValidationError as e:
                for error in e.errors():
                    errors.append({"loc": list(error["loc"]), "msg": error["msg"]})

        resources = self.data.get("resources")
        if resources is None:
            errors.append({"loc": ["resources"], "msg": "Required field 'resources' is missing"})
            return errors
        if not isinstance(resources, list) or len(resources) == 0:
            errors.append({"loc": ["resources"], "msg": "At least one resource must be defined"})
            return errors

        specs = []
        for idx, entry in enumerate(resources):
            if not isinstance(entry, dict):
                errors.append({"loc": ["resources", idx], "msg": "Resource must be a mapping"})
                continue
            try:
                ResourceEntry(**entry)
                specs.append(ResourceSpec.model_validate(entry))
            except ValidationError as e:
                for error in e.errors():
                    errors.append(
                        {
                            "loc": ["resources", idx] + list(error["loc"]),
                            "msg": error["msg"],
                        }
                    )

        if errors:
            return errors

        names = set()
        keys = {}
        for idx, spec in enumerate(specs):
            if spec.logical_name in names:
                errors.append(
                    {"loc": ["resources", idx, "name"], "msg": f"Duplicate name '{spec.logical_name}'"}
                )
            names.add(spec.logical_name)
            if spec.key in keys:
                errors.append(
                    {
                        "loc": ["resources", idx, "identity"],
                        "msg": f"{spec.label} is already declared by '{keys[spec.key]}'",
                    }
                )
            keys.setdefault(spec.key, spec.logical_name)

        if not errors:
            try:
                DependencyGraph.from_specs(specs).validate()
            except DependencyError as e:
                errors.append({"loc": ["resources"], "msg": e.message})

        return errors

    def get_specs(self, names: Optional[List[str]] = None) -> List[ResourceSpec]:
        """Get resource specs, optionally limited to ``names`` and their dependencies.

        Args:
            names: Optional spec names to select

        Returns:
            Specs in declaration order
        """
        if not names:
            return list(self.specs)

        by_name = {spec.logical_name: spec for spec in self.specs}
        unknown = [name for name in names if name not in by_name]
        if unknown:
            raise ConfigValidationError(f"Unknown resource(s): {', '.join(unknown)}")

        graph = DependencyGraph.from_specs(self.specs)
        selected = set(names)
        pending = list(names)
        while pending:
            for dep in graph.get_dependencies(pending.pop()):
                if dep not in selected:
                    selected.add(dep)
                    pending.append(dep)

        return [spec for spec in self.specs if spec.logical_name in selected]
