"""
Configuration module for the no8s provider.

Loads configuration from environment variables. Resource types can receive
their own configuration overrides through RESOURCE_CONFIGS.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Retry policy for throttled or transient remote calls."""

    max_attempts: int = 5
    # Exponential backoff configuration
    backoff_base_delay: float = 1.0  # base delay in seconds
    backoff_max_delay: float = 30.0  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "5")),
            backoff_base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
            backoff_max_delay=float(os.getenv("RETRY_MAX_DELAY", "30.0")),
            backoff_jitter_factor=float(os.getenv("RETRY_JITTER_FACTOR", "0.1")),
        )


@dataclass
class LifecycleConfig:
    """Timeouts and polling for create/update/delete."""

    create_timeout: float = 600.0  # seconds
    update_timeout: float = 600.0
    delete_timeout: float = 600.0
    poll_interval: float = 5.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            create_timeout=float(os.getenv("CREATE_TIMEOUT", "600")),
            update_timeout=float(os.getenv("UPDATE_TIMEOUT", "600")),
            delete_timeout=float(os.getenv("DELETE_TIMEOUT", "600")),
            poll_interval=float(os.getenv("POLL_INTERVAL", "5")),
            retry=RetryConfig.from_env(),
        )


@dataclass
class AWSConfig:
    """Where SDK clients are pointed. Credentials come from the SDK chain."""

    region: str = "us-west-2"
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION", "us-west-2"),
            profile=os.getenv("AWS_PROFILE") or None,
            endpoint_url=os.getenv("AWS_ENDPOINT_URL") or None,
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO"))


@dataclass
class ResourceConfig:
    """Which resource types are enabled, plus per-type overrides."""

    # Empty = every registered resource type
    enabled_resource_types: List[str] = field(default_factory=list)

    # Lifecycle overrides keyed by resource type name
    resource_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled_str = os.getenv("ENABLED_RESOURCE_TYPES", "")
        enabled = [t.strip() for t in enabled_str.split(",") if t.strip()]

        resource_configs = {}
        if os.getenv("RESOURCE_CONFIGS"):
            try:
                resource_configs = json.loads(os.getenv("RESOURCE_CONFIGS"))
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring malformed RESOURCE_CONFIGS: {e}")

        return cls(
            enabled_resource_types=enabled,
            resource_configs=resource_configs,
        )

    def is_enabled(self, type_name: str) -> bool:
        """Check whether a resource type may be managed."""
        return not self.enabled_resource_types or (
            type_name in self.enabled_resource_types
        )

    def get_resource_config(self, type_name: str) -> Dict[str, Any]:
        """Get overrides for a specific resource type."""
        return self.resource_configs.get(type_name, {})


@dataclass
class Config:
    """Main configuration object."""

    lifecycle: LifecycleConfig
    aws: AWSConfig
    logging: LoggingConfig
    resources: ResourceConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            lifecycle=LifecycleConfig.from_env(),
            aws=AWSConfig.from_env(),
            logging=LoggingConfig.from_env(),
            resources=ResourceConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            lifecycle=LifecycleConfig(),
            aws=AWSConfig(),
            logging=LoggingConfig(),
            resources=ResourceConfig(),
        )

    def lifecycle_for(self, type_name: str) -> LifecycleConfig:
        """
        Build the lifecycle settings for one resource type.

        Keys from RESOURCE_CONFIGS override the global timeouts; a nested
        "retry" mapping overrides the retry policy. Unknown keys are ignored
        with a warning.
        """
        overrides = dict(self.resources.get_resource_config(type_name))
        retry_overrides = _known_fields(
            RetryConfig, overrides.pop("retry", {}), f"{type_name}.retry"
        )
        overrides = _known_fields(LifecycleConfig, overrides, type_name)

        retry = RetryConfig(**{**self.lifecycle.retry.__dict__, **retry_overrides})
        base = {k: v for k, v in self.lifecycle.__dict__.items() if k != "retry"}
        return LifecycleConfig(**{**base, **overrides}, retry=retry)


def _known_fields(cls, overrides: Dict[str, Any], where: str) -> Dict[str, Any]:
    """Drop override keys that are not fields of a config dataclass."""
    names = {f.name for f in fields(cls)}
    unknown = sorted(set(overrides) - names)
    if unknown:
        logger.warning(
            f"Ignoring unknown RESOURCE_CONFIGS keys for {where}: {', '.join(unknown)}"
        )
    return {k: v for k, v in overrides.items() if k in names}


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
