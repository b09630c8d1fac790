"""
Core resource types.

A ResourceDescriptor is everything the generic lifecycle controller needs
to manage one kind of remote object: its schema and a handful of closures
that talk to the SDK. Every closure receives the SDK client as its first
argument; nothing reads a process-wide session.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from no8s_provider.schema import ResourceSchema

ObservedState = Dict[str, Any]


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    Static description of a manageable remote object type.

    Attributes:
        type_name: Resource type name (e.g. 'aws_devicefarm_upload').
        service: SDK service name the client is built for.
        schema: The desired-state schema.
        id_attribute: Attribute holding the service-assigned identifier.
        create: (client, values) -> identifier.
        find: (client, identifier) -> ObservedState; raises NotFoundError.
        delete: (client, identifier) -> None; raises NotFoundError if absent.
        update: (client, identifier, changes, previous) -> None. None means
            the type has no in-place updates.
        is_ready: (observed) -> bool. None means ready as soon as found.
        failure_reason: (observed) -> Optional[str]; a message when the
            remote object reached a terminal failed status.
    """

    type_name: str
    service: str
    schema: ResourceSchema
    id_attribute: str
    create: Callable[[Any, Dict[str, Any]], str]
    find: Callable[[Any, str], ObservedState]
    delete: Callable[[Any, str], None]
    update: Optional[Callable[[Any, str, Dict[str, Any], Dict[str, Any]], None]] = None
    is_ready: Optional[Callable[[ObservedState], bool]] = None
    failure_reason: Optional[Callable[[ObservedState], Optional[str]]] = None
    version: str = "1.0.0"

    def __post_init__(self):
        if self.schema.get(self.id_attribute) is None:
            raise ValueError(
                f"{self.type_name}: identifier attribute '{self.id_attribute}' "
                f"is not in the schema"
            )
