"""
Acceptance-test harness.

Drives real lifecycle controllers through a sequence of configuration steps
against injected SDK clients, the way an operator would: plan, apply,
refresh, check, then re-plan and expect nothing left to do. After the last
step every remaining resource is destroyed and, optionally, verified gone.

Configurations map resource addresses (``<type>.<name>``) to desired
attributes:

    Step(
        config={"aws_devicefarm_upload.test": {"project_arn": arn, ...}},
        checks=[check_attr("aws_devicefarm_upload.test", "category", "PRIVATE")],
    )
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from no8s_provider.lifecycle import ResourcePlan
from no8s_provider.state import StateEntry, flatmap
from no8s_provider.workspace import Workspace

logger = logging.getLogger(__name__)

Check = Callable[["AcceptanceRunner"], Awaitable[None]]
PlanCheck = Callable[[Dict[str, ResourcePlan]], None]


@dataclass
class Step:
    """
    One step of an acceptance case.

    A config step applies ``config``. An import step (``import_state``)
    reads ``resource_name`` fresh from the remote system and, with
    ``import_state_verify``, compares it with what the earlier steps stored.
    """

    config: Optional[Dict[str, Dict[str, Any]]] = None
    checks: List[Check] = field(default_factory=list)
    expect_error: Optional[str] = None
    expect_non_empty_plan: bool = False
    plan_checks: List[PlanCheck] = field(default_factory=list)
    import_state: bool = False
    import_state_id: Optional[str] = None
    import_state_verify: bool = False
    import_state_verify_ignore: List[str] = field(default_factory=list)
    resource_name: Optional[str] = None


@dataclass
class Case:
    """A sequence of steps sharing one state."""

    steps: List[Step]
    check_destroy: bool = True


class AcceptanceRunner(Workspace):
    """
    Runs acceptance cases against an in-memory state.

    The ``exists`` and ``destroy`` hooks are inherited from Workspace.
    """

    def _entry(self, address: str) -> StateEntry:
        entry = self.state.get(address)
        if entry is None:
            raise AssertionError(f"Not found in state: {address}")
        return entry

    # Steps

    async def _run_config_step(self, index: int, step: Step) -> None:
        try:
            plans = await self.plan(step.config)
            for plan_check in step.plan_checks:
                plan_check(plans)
            await self.apply(step.config)
        except AssertionError:
            raise
        except Exception as e:
            if step.expect_error and re.search(step.expect_error, str(e)):
                logger.info(f"Step {index}: got expected error: {e}")
                return
            raise
        if step.expect_error:
            raise AssertionError(
                f"Step {index}: expected an error matching "
                f"{step.expect_error!r}, got none"
            )

        await self.refresh()
        for check in step.checks:
            await check(self)

        plans = await self.plan(step.config)
        pending = {a: p.action for a, p in plans.items() if p.has_changes}
        if pending and not step.expect_non_empty_plan:
            raise AssertionError(
                f"Step {index}: after applying this step, "
                f"the plan was not empty: {pending}"
            )

    async def _run_import_step(self, index: int, step: Step) -> None:
        address = step.resource_name
        entry = self._entry(address)
        identifier = step.import_state_id or entry.identifier

        observed = await self.controller(address).read(identifier)
        if observed is None:
            raise AssertionError(
                f"Step {index}: cannot import non-existent remote object {identifier}"
            )
        if not step.import_state_verify:
            return

        imported = flatmap(observed)
        stored = flatmap(entry.attributes)
        differences = [
            (key, stored.get(key), imported.get(key))
            for key in sorted(set(imported) | set(stored))
            if not _ignored(key, step.import_state_verify_ignore)
            and stored.get(key) != imported.get(key)
        ]
        if differences:
            lines = "\n".join(
                f"  {k}: state={s!r} imported={i!r}" for k, s, i in differences
            )
            raise AssertionError(
                f"Step {index}: imported state of {address} differs:\n{lines}"
            )

    async def run_step(self, index: int, step: Step) -> None:
        """Run a single step against the current state."""
        logger.info(f"Running step {index}")
        if step.import_state:
            await self._run_import_step(index, step)
        elif step.config is not None:
            await self._run_config_step(index, step)
        else:
            raise ValueError(f"Step {index} has neither a config nor import_state")

    async def run(self, case: Case) -> None:
        """
        Run every step, then destroy what is left.

        Raises:
            AssertionError: When a step, check or destroy check fails.
        """
        try:
            for index, step in enumerate(case.steps, start=1):
                await self.run_step(index, step)
        finally:
            destroyed = await self.destroy_all()

        if case.check_destroy:
            for address, identifier in destroyed.items():
                if identifier is None:
                    continue
                controller = self.controller(address)
                if await controller.accessor.exists(identifier):
                    raise AssertionError(
                        f"{address} ({identifier}) still exists after destroy"
                    )


def _ignored(key: str, ignore: List[str]) -> bool:
    return any(key == prefix or key.startswith(f"{prefix}.") for prefix in ignore)


# Checks


def _flat(runner: AcceptanceRunner, address: str) -> Dict[str, str]:
    runner._entry(address)
    return runner.state.flatmap(address)


def _lookup(attributes: Dict[str, str], key: str) -> Optional[str]:
    value = attributes.get(key)
    # Empty collections are stored as absent
    if value is None and (key.endswith(".#") or key.endswith(".%")):
        return "0"
    return value


def check_exists(address: str, into: Optional[Dict[str, Any]] = None) -> Check:
    """The object exists remotely; optionally copy its state into ``into``."""

    async def check(runner: AcceptanceRunner) -> None:
        entry = runner._entry(address)
        if not await runner.exists(address):
            raise AssertionError(f"{address} ({entry.identifier}) does not exist")
        if into is not None:
            into.update(entry.attributes)

    return check


def check_attr(address: str, key: str, value: str) -> Check:
    """A flattened attribute has exactly this value."""

    async def check(runner: AcceptanceRunner) -> None:
        actual = _lookup(_flat(runner, address), key)
        if actual != value:
            raise AssertionError(
                f"{address}: attribute {key!r} expected {value!r}, got {actual!r}"
            )

    return check


def check_attr_set(address: str, key: str) -> Check:
    """A flattened attribute has a non-empty value."""

    async def check(runner: AcceptanceRunner) -> None:
        if not _flat(runner, address).get(key):
            raise AssertionError(f"{address}: attribute {key!r} expected to be set")

    return check


def check_no_attr(address: str, key: str) -> Check:
    """A flattened attribute is absent (or an empty collection)."""

    async def check(runner: AcceptanceRunner) -> None:
        actual = _lookup(_flat(runner, address), key)
        if actual is not None and actual != "0":
            raise AssertionError(
                f"{address}: attribute {key!r} expected unset, got {actual!r}"
            )

    return check


def check_attr_pair(
    address: str, key: str, other_address: str, other_key: str
) -> Check:
    """Two flattened attributes, possibly on different resources, are equal."""

    async def check(runner: AcceptanceRunner) -> None:
        first = _lookup(_flat(runner, address), key)
        second = _lookup(_flat(runner, other_address), other_key)
        if first != second:
            raise AssertionError(
                f"{address}.{key} ({first!r}) != "
                f"{other_address}.{other_key} ({second!r})"
            )

    return check


def check_attr_match(address: str, key: str, pattern: str) -> Check:
    """A flattened attribute matches a regular expression."""

    async def check(runner: AcceptanceRunner) -> None:
        actual = _flat(runner, address).get(key)
        if actual is None or not re.search(pattern, actual):
            raise AssertionError(
                f"{address}: attribute {key!r} value {actual!r} "
                f"does not match {pattern!r}"
            )

    return check


def check_disappears(address: str) -> Check:
    """Delete the object out-of-band, leaving it in state."""

    async def check(runner: AcceptanceRunner) -> None:
        entry = runner._entry(address)
        await runner.controller(address, entry.identifier).delete()

    return check


def expect_resource_action(address: str, action: str) -> PlanCheck:
    """The plan for an address performs this action (create, update, ...)."""

    def check(plans: Dict[str, ResourcePlan]) -> None:
        plan = plans.get(address)
        actual = plan.action if plan else "no-op"
        if actual != action:
            raise AssertionError(
                f"{address}: expected planned action {action!r}, got {actual!r}"
            )

    return check
