"""
Resource Registry - Discovery and registration of resource types.

Built-in resource types are registered at startup; third-party packages can
contribute more through the 'no8s.resources' entry-point group, where each
entry point loads a ResourceDescriptor.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional

from no8s_provider.config import ResourceConfig
from no8s_provider.resources.base import ResourceDescriptor
from no8s_provider.validation import validate_json_schema

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "no8s.resources"


class ResourceRegistry:
    """Central registry mapping resource type names to descriptors."""

    def __init__(self):
        self._descriptors: Dict[str, ResourceDescriptor] = {}

    def register(self, descriptor: ResourceDescriptor) -> None:
        """
        Register a resource type.

        Args:
            descriptor: The descriptor to register

        Raises:
            ValueError: If the descriptor's schema is not valid JSON Schema
        """
        name = descriptor.type_name
        is_valid, error = validate_json_schema(descriptor.schema.to_json_schema())
        if not is_valid:
            raise ValueError(f"Resource type {name} has an invalid schema: {error}")

        if name in self._descriptors:
            logger.warning(f"Overwriting existing resource type: {name}")

        self._descriptors[name] = descriptor
        logger.info(f"Registered resource type: {name} v{descriptor.version}")

    def get(self, type_name: str) -> ResourceDescriptor:
        """
        Get the descriptor for a resource type.

        Raises:
            ValueError: If the type is not registered
        """
        if type_name not in self._descriptors:
            available = ", ".join(sorted(self._descriptors)) or "none"
            raise ValueError(
                f"Unknown resource type: {type_name}. Available types: {available}"
            )
        return self._descriptors[type_name]

    def has(self, type_name: str) -> bool:
        """Check if a resource type is registered."""
        return type_name in self._descriptors

    def list_types(self) -> List[str]:
        """List all registered resource type names."""
        return sorted(self._descriptors)

    def get_info(self, type_name: str) -> Optional[Dict[str, Any]]:
        """
        Get information about a registered resource type.

        Returns:
            Dictionary with name, service, version and id attribute, or None
        """
        descriptor = self._descriptors.get(type_name)
        if descriptor is None:
            return None
        return {
            "name": descriptor.type_name,
            "service": descriptor.service,
            "version": descriptor.version,
            "id_attribute": descriptor.id_attribute,
            "updatable": descriptor.update is not None,
        }


# Global registry instance
_registry: Optional[ResourceRegistry] = None


def get_registry() -> ResourceRegistry:
    """Get the global resource registry singleton."""
    global _registry
    if _registry is None:
        _registry = ResourceRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_resources(
    resource_config: Optional[ResourceConfig] = None,
) -> None:
    """
    Register the built-in resource types and discover installed ones via
    entry points. Types not enabled in resource_config are skipped.
    """
    from no8s_provider.resources.devicefarm.upload import (
        DESCRIPTOR as devicefarm_upload,
    )
    from no8s_provider.resources.sagemaker.endpoint_configuration import (
        DESCRIPTOR as sagemaker_endpoint_configuration,
    )

    resource_config = resource_config or ResourceConfig()
    registry = get_registry()

    for descriptor in (devicefarm_upload, sagemaker_endpoint_configuration):
        if resource_config.is_enabled(descriptor.type_name):
            registry.register(descriptor)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            descriptor = ep.load()
        except Exception as e:
            logger.warning(
                f"Could not load resource type {ep.name}: {e}", exc_info=True
            )
            continue
        if not isinstance(descriptor, ResourceDescriptor):
            logger.warning(f"Entry point {ep.name} is not a ResourceDescriptor")
            continue
        if resource_config.is_enabled(descriptor.type_name):
            registry.register(descriptor)
