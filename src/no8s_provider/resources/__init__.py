"""
Resource types managed by the provider.

Each resource type is a ResourceDescriptor: a schema plus the SDK closures
the generic lifecycle controller drives.
"""

from no8s_provider.resources.base import ObservedState, ResourceDescriptor
from no8s_provider.resources.registry import (
    ResourceRegistry,
    get_registry,
    register_builtin_resources,
    reset_registry,
)

__all__ = [
    "ObservedState",
    "ResourceDescriptor",
    "ResourceRegistry",
    "get_registry",
    "register_builtin_resources",
    "reset_registry",
]
