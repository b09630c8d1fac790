"""
Lifecycle Controller - Drive one resource through create, update and delete.

One generic controller serves every resource type; the type-specific parts
come from the ResourceDescriptor. A controller instance owns exactly one
resource instance and its operations run sequentially. Distinct instances
share nothing and may run concurrently.

    absent -> creating -> active -> (updating -> active)* -> deleting -> absent

creating, updating and deleting move to error on unrecoverable failure.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from no8s_provider.accessor import RemoteStateAccessor
from no8s_provider.config import LifecycleConfig
from no8s_provider.errors import (
    ConflictError,
    LifecycleError,
    NotFoundError,
    ProvisioningFailedError,
    ResourceTimeoutError,
)
from no8s_provider.events import EventBus, EventType, ResourceEvent
from no8s_provider.reconciler import Diff, Operation, OperationType, Reconciler
from no8s_provider.resources.base import ObservedState, ResourceDescriptor

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    """States of a managed resource."""

    ABSENT = "absent"
    CREATING = "creating"
    ACTIVE = "active"
    UPDATING = "updating"
    DELETING = "deleting"
    ERROR = "error"


@dataclass
class ResourcePlan:
    """What reconciling a desired configuration would do."""

    identifier: Optional[str]
    observed: Optional[ObservedState]
    diff: Optional[Diff]
    operations: List[Operation] = field(default_factory=list)

    @property
    def action(self) -> str:
        types = [op.type for op in self.operations]
        if not types:
            return "no-op"
        if types == [OperationType.CREATE]:
            return "create"
        if types == [OperationType.DELETE]:
            return "destroy"
        if OperationType.DELETE in types:
            return "replace"
        return "update"

    @property
    def has_changes(self) -> bool:
        return bool(self.operations)


@dataclass
class ReconcileResult:
    """Outcome of executing a plan."""

    action: str
    identifier: Optional[str]
    observed: Optional[ObservedState]
    plan: ResourcePlan


class LifecycleController:
    """
    Orchestrates the lifecycle of a single resource instance.

    The SDK client is injected; it is used only through the descriptor's
    closures.
    """

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        client: Any,
        config: Optional[LifecycleConfig] = None,
        event_bus: Optional[EventBus] = None,
        identifier: Optional[str] = None,
    ):
        self.descriptor = descriptor
        self.config = config or LifecycleConfig()
        self.accessor = RemoteStateAccessor(descriptor, client, self.config.retry)
        self.reconciler = Reconciler(descriptor.schema)
        self.identifier = identifier
        self.state = LifecycleState.ACTIVE if identifier else LifecycleState.ABSENT
        self._event_bus = event_bus

    @property
    def type_name(self) -> str:
        return self.descriptor.type_name

    async def _publish(
        self,
        event_type: EventType,
        observed: Optional[ObservedState] = None,
        message: str = "",
    ) -> None:
        if self._event_bus is None:
            return
        event = ResourceEvent(
            event_type=event_type,
            resource_type=self.type_name,
            identifier=self.identifier,
            state=self.state.value,
            attributes=observed or {},
            message=message,
        )
        await self._event_bus.publish(event)

    def _annotate(self, error: Exception) -> LifecycleError:
        if isinstance(error, LifecycleError):
            return error
        return LifecycleError(self.type_name, self.identifier, self.state.value, error)

    async def _fail(self, error: Exception) -> LifecycleError:
        """Annotate an error with the current state, then move to error."""
        annotated = self._annotate(error)
        self.state = LifecycleState.ERROR
        logger.error(f"Lifecycle failure: {annotated}")
        await self._publish(EventType.FAILED, message=str(error))
        return annotated

    # Polling

    async def _wait_for_ready(
        self, timeout: float, tolerate_missing: bool
    ) -> ObservedState:
        """
        Poll until the descriptor reports the object ready.

        Args:
            timeout: Seconds before giving up.
            tolerate_missing: Keep polling through not-found, which a freshly
                created object may briefly return.
        """
        last_observed: Dict[str, Any] = {}

        async def poll() -> ObservedState:
            nonlocal last_observed
            while True:
                try:
                    observed = await self.accessor.find(self.identifier)
                except NotFoundError:
                    if not tolerate_missing:
                        raise
                    observed = None

                if observed is not None:
                    last_observed = observed
                    if self.descriptor.failure_reason is not None:
                        reason = self.descriptor.failure_reason(observed)
                        if reason:
                            raise ProvisioningFailedError(reason)
                    if self.descriptor.is_ready is None or self.descriptor.is_ready(
                        observed
                    ):
                        return observed

                await asyncio.sleep(self.config.poll_interval)

        try:
            return await asyncio.wait_for(poll(), timeout)
        except asyncio.TimeoutError:
            raise ResourceTimeoutError(
                f"timed out after {timeout}s waiting for {self.identifier} to "
                f"become ready; the remote object was left in place",
                identifier=self.identifier,
                last_observed=last_observed,
            ) from None

    async def _wait_for_absent(self, identifier: str, timeout: float) -> None:
        async def poll() -> None:
            while await self.accessor.exists(identifier):
                await asyncio.sleep(self.config.poll_interval)

        try:
            await asyncio.wait_for(poll(), timeout)
        except asyncio.TimeoutError:
            raise ResourceTimeoutError(
                f"timed out after {timeout}s waiting for {identifier} to be deleted",
                identifier=identifier,
            ) from None

    # Lifecycle operations

    async def create(
        self, desired: Dict[str, Any], timeout: Optional[float] = None
    ) -> ObservedState:
        """
        Create the remote object and wait until it is ready.

        Validation runs first; an invalid configuration raises
        ValidationError without any remote call.

        Args:
            desired: Desired configuration.
            timeout: Seconds to wait for readiness (default: create_timeout).

        Returns:
            Observed state after creation.

        Raises:
            ValidationError: If the configuration is invalid.
            LifecycleError: If a remote step fails or times out.
        """
        values = self.descriptor.schema.validate(desired)
        values = self.descriptor.schema.apply_defaults(values)

        self.state = LifecycleState.CREATING
        self.identifier = None
        try:
            self.identifier = await self.accessor.call(
                "create", self.descriptor.create, values
            )
            logger.info(
                f"Created {self.type_name} {self.identifier}, waiting for ready"
            )
            observed = await self._wait_for_ready(
                timeout or self.config.create_timeout, tolerate_missing=True
            )
        except Exception as e:
            raise await self._fail(e) from e

        self.state = LifecycleState.ACTIVE
        await self._publish(EventType.CREATED, observed)
        return observed

    async def read(self, identifier: Optional[str] = None) -> Optional[ObservedState]:
        """
        Read the remote object.

        Returns:
            Observed state, or None if the object no longer exists. None
            means it was destroyed out-of-band and the caller should treat
            it as drift.

        Raises:
            LifecycleError: On any error other than not-found.
        """
        identifier = identifier or self.identifier
        if identifier is None:
            return None

        try:
            observed = await self.accessor.find(identifier)
        except NotFoundError:
            logger.warning(
                f"{self.type_name} {identifier} not found; "
                f"treating it as deleted out-of-band"
            )
            self.identifier = identifier
            self.state = LifecycleState.ABSENT
            await self._publish(EventType.DRIFTED, message="not found")
            return None
        except Exception as e:
            raise self._annotate(e) from e

        self.identifier = identifier
        self.state = LifecycleState.ACTIVE
        return observed

    async def update(
        self,
        diff: Diff,
        identifier: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ObservedState:
        """
        Apply the in-place changes of a diff.

        Re-running with the same diff after a partial failure converges,
        provided the descriptor's update closure is idempotent.

        Raises:
            ValueError: If the diff requires a replacement.
            LifecycleError: If a remote step fails or times out.
        """
        if diff.requires_replace:
            raise ValueError(
                f"{self.type_name}: diff requires replacement, not an in-place update"
            )
        identifier = identifier or self.identifier
        operations = self.reconciler.plan(diff)
        if not operations:
            observed = await self.read(identifier)
            if observed is None:
                raise self._annotate(NotFoundError(f"{identifier} does not exist"))
            return observed

        self.identifier = identifier
        self.state = LifecycleState.UPDATING
        try:
            if self.descriptor.update is None:
                raise ConflictError(
                    f"{self.type_name} does not support in-place updates"
                )
            operation = operations[0]
            await self.accessor.call(
                "update",
                self.descriptor.update,
                identifier,
                operation.attributes,
                operation.previous,
            )
            logger.info(
                f"Updated {self.type_name} {identifier}: "
                f"{', '.join(sorted(operation.attributes))}"
            )
            observed = await self._wait_for_ready(
                timeout or self.config.update_timeout, tolerate_missing=False
            )
        except Exception as e:
            raise await self._fail(e) from e

        self.state = LifecycleState.ACTIVE
        await self._publish(EventType.UPDATED, observed)
        return observed

    async def delete(
        self, identifier: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        """
        Delete the remote object and wait until it is gone.

        Deleting an object that is already absent is a no-op.

        Raises:
            LifecycleError: If a remote step fails or times out.
        """
        identifier = identifier or self.identifier
        if identifier is None:
            self.state = LifecycleState.ABSENT
            return

        self.identifier = identifier
        self.state = LifecycleState.DELETING
        try:
            try:
                await self.accessor.call("delete", self.descriptor.delete, identifier)
            except NotFoundError:
                logger.info(f"{self.type_name} {identifier} already absent")
            await self._wait_for_absent(
                identifier, timeout or self.config.delete_timeout
            )
        except Exception as e:
            raise await self._fail(e) from e

        self.state = LifecycleState.ABSENT
        await self._publish(EventType.DELETED)
        self.identifier = None
        logger.info(f"Deleted {self.type_name} {identifier}")

    # Reconciliation

    async def plan(
        self,
        desired: Dict[str, Any],
        identifier: Optional[str] = None,
        tainted: bool = False,
    ) -> ResourcePlan:
        """
        Work out what reconciling desired configuration would do.

        Args:
            desired: Desired configuration.
            identifier: Identifier of the existing object, if any.
            tainted: The existing object never finished creating; replace it
                whatever the diff says.

        Raises:
            ValidationError: If the configuration is invalid.
        """
        values = self.descriptor.schema.validate(desired)
        identifier = identifier or self.identifier

        if identifier is None:
            return ResourcePlan(None, None, None, self.reconciler.plan_create(values))

        observed = await self.read(identifier)
        if observed is None:
            return ResourcePlan(
                identifier, None, None, self.reconciler.plan_create(values)
            )

        if tainted:
            operations = [Operation(OperationType.DELETE)]
            operations += self.reconciler.plan_create(values)
            return ResourcePlan(identifier, observed, None, operations)

        diff = self.reconciler.diff(values, observed)
        return ResourcePlan(identifier, observed, diff, self.reconciler.plan(diff))

    async def reconcile(
        self,
        desired: Dict[str, Any],
        identifier: Optional[str] = None,
        timeout: Optional[float] = None,
        tainted: bool = False,
    ) -> ReconcileResult:
        """
        Plan and execute: create, update in place, replace, or nothing.

        Args:
            desired: Desired configuration.
            identifier: Identifier of the existing object, if any.
            timeout: Per-operation polling timeout.
            tainted: Replace the existing object unconditionally.

        Returns:
            ReconcileResult describing what was done.
        """
        plan = await self.plan(desired, identifier, tainted)
        observed = plan.observed

        for operation in plan.operations:
            if operation.type == OperationType.DELETE:
                await self.delete(plan.identifier, timeout)
            elif operation.type == OperationType.CREATE:
                observed = await self.create(desired, timeout)
            else:
                observed = await self.update(plan.diff, plan.identifier, timeout)

        if plan.action == "replace":
            await self._publish(EventType.REPLACED, observed)
        logger.info(f"Reconciled {self.type_name} {self.identifier}: {plan.action}")

        return ReconcileResult(
            action=plan.action,
            identifier=self.identifier,
            observed=observed,
            plan=plan,
        )
