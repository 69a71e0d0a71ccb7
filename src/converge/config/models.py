"""Pydantic models for configuration schema."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from converge.core.models import ResourceKind
from converge.core.waiter import WaitConfig
from converge.utils.retry import RetryPolicy


class WaitSettings(BaseModel):
    """Polling configuration for asynchronously provisioned resources."""

    interval: float = Field(10.0, ge=0, description="Seconds between polls")
    max_attempts: int = Field(60, ge=0, description="Polls after the first one")

    def to_wait_config(self) -> WaitConfig:
        return WaitConfig(interval=self.interval, max_attempts=self.max_attempts)


class RetrySettings(BaseModel):
    """Retry policy for transient provider failures."""

    max_retries: int = Field(0, ge=0, le=20)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(60.0, ge=0)
    exponential_base: float = Field(2.0, ge=1)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        """max_delay caps the backoff, so it cannot be below base_delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
        )


class Settings(BaseModel):
    """Run settings."""

    wait: WaitSettings = Field(default_factory=WaitSettings)
    wait_overrides: Dict[ResourceKind, WaitSettings] = Field(default_factory=dict)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    max_workers: int = Field(4, ge=1, le=64)
    parallel: bool = True

    def wait_configs(self) -> Dict[ResourceKind, WaitConfig]:
        return {kind: settings.to_wait_config() for kind, settings in self.wait_overrides.items()}


class ProjectConfig(BaseModel):
    """Top-level project settings."""

    project: str = Field(..., pattern=r"^[a-zA-Z0-9-]+$", min_length=1, max_length=64)
    region: Optional[str] = Field(None, pattern=r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
    profile: Optional[str] = None
    settings: Settings = Field(default_factory=Settings)


class ResourceEntry(BaseModel):
    """Shape check for one entry of the ``resources`` list."""

    name: str = Field(..., pattern=r"^[A-Za-z0-9_-]+$")
    kind: ResourceKind
    identity: str = Field(..., min_length=1)
    attributes: Dict = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
