"""
Workspace - A set of managed resources and their recorded state.

Plans and applies whole configurations (resource address -> desired
attributes) by running one lifecycle controller per address. Used by the
CLI against real SDK clients and by the acceptance harness against fakes.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from no8s_provider.config import Config
from no8s_provider.errors import LifecycleError
from no8s_provider.events import EventBus
from no8s_provider.lifecycle import LifecycleController, LifecycleState, ResourcePlan
from no8s_provider.reconciler import Operation, OperationType
from no8s_provider.resources.registry import ResourceRegistry
from no8s_provider.state import StateEntry, StateStore

logger = logging.getLogger(__name__)


def type_of(address: str) -> str:
    """Resource type part of an address (``<type>.<name>``)."""
    return address.split(".", 1)[0]


class Workspace:
    """
    Plans, applies and destroys configurations against recorded state.

    Args:
        registry: Resource types available to configurations.
        clients: SDK clients keyed by service name.
        config: Provider configuration (default: Config.default()).
        event_bus: Optional bus the controllers publish to.
        state: Recorded state (default: empty).
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        clients: Mapping[str, Any],
        config: Optional[Config] = None,
        event_bus: Optional[EventBus] = None,
        state: Optional[StateStore] = None,
    ):
        self.registry = registry
        self.clients = clients
        self.config = config or Config.default()
        self.event_bus = event_bus
        self.state = state if state is not None else StateStore()

    def controller(
        self, address: str, identifier: Optional[str] = None
    ) -> LifecycleController:
        """Build a controller for the resource at an address."""
        type_name = type_of(address)
        descriptor = self.registry.get(type_name)
        return LifecycleController(
            descriptor,
            self.clients[descriptor.service],
            config=self.config.lifecycle_for(type_name),
            event_bus=self.event_bus,
            identifier=identifier,
        )

    def validate(self, config: Dict[str, Dict[str, Any]]) -> None:
        """
        Validate every configuration without any remote call.

        Raises:
            ValueError: If an address names an unknown resource type.
            ValidationError: If a configuration is invalid.
        """
        for address, desired in config.items():
            self.registry.get(type_of(address)).schema.validate(desired)

    async def exists(self, address: str) -> bool:
        """Whether the object recorded at an address still exists remotely."""
        entry = self.state.get(address)
        if entry is None or entry.identifier is None:
            return False
        return await self.controller(address).accessor.exists(entry.identifier)

    async def destroy(self, address: str) -> None:
        """
        Delete the object at an address and drop it from state.

        Raises:
            KeyError: If the address is not in state.
        """
        entry = self.state.get(address)
        if entry is None:
            raise KeyError(f"Not found in state: {address}")
        await self.controller(address, entry.identifier).delete()
        self.state.remove(address)

    async def destroy_all(self) -> Dict[str, Optional[str]]:
        """Destroy everything in state, last address first."""
        destroyed = {}
        for address in reversed(self.state.addresses()):
            destroyed[address] = self.state.get(address).identifier
            await self.destroy(address)
        return destroyed

    async def plan(
        self, config: Dict[str, Dict[str, Any]]
    ) -> Dict[str, ResourcePlan]:
        """Plan every address in config, plus a destroy for state-only ones."""
        plans: Dict[str, ResourcePlan] = {}
        for address, desired in config.items():
            entry = self.state.get(address)
            identifier = entry.identifier if entry else None
            tainted = entry.tainted if entry else False
            plans[address] = await self.controller(address).plan(
                desired, identifier, tainted
            )

        for address in self.state.addresses():
            if address not in config:
                entry = self.state.get(address)
                plans[address] = ResourcePlan(
                    entry.identifier,
                    entry.attributes,
                    None,
                    [Operation(OperationType.DELETE)],
                )
        return plans

    async def apply(self, config: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        """
        Reconcile every address in config and destroy state-only ones.

        State is updated after each address, so a failure part-way keeps
        what was already done. An object whose creation failed after the
        remote call went through is recorded as tainted, so the next apply
        replaces it instead of creating a second one.

        Returns:
            Action taken per address.

        Raises:
            LifecycleError: If a remote step fails.
        """
        actions: Dict[str, str] = {}
        for address, desired in config.items():
            entry = self.state.get(address)
            identifier = entry.identifier if entry else None
            tainted = entry.tainted if entry else False
            try:
                result = await self.controller(address).reconcile(
                    desired, identifier, tainted=tainted
                )
            except LifecycleError as e:
                if e.state == LifecycleState.CREATING.value and e.identifier:
                    self._taint(address, e)
                raise
            self.state.put(
                StateEntry(
                    address, type_of(address), result.identifier, result.observed or {}
                )
            )
            actions[address] = result.action

        for address in self.state.addresses():
            if address not in config:
                await self.destroy(address)
                actions[address] = "destroy"
        return actions

    def _taint(self, address: str, error: LifecycleError) -> None:
        last_observed = getattr(error.cause, "last_observed", None)
        logger.warning(
            f"{address}: {error.identifier} was created but did not become "
            f"ready; recording it as tainted"
        )
        self.state.put(
            StateEntry(
                address,
                type_of(address),
                error.identifier,
                last_observed or {},
                tainted=True,
            )
        )

    async def refresh(self) -> None:
        """Re-read every object in state; vanished objects are dropped."""
        for address in self.state.addresses():
            entry = self.state.get(address)
            observed = await self.controller(address).read(entry.identifier)
            if observed is None:
                logger.info(f"{address} no longer exists, removing from state")
                self.state.remove(address)
            else:
                entry.attributes = observed
