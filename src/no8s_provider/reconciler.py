"""
Reconciler - Diff desired configuration against observed state.

Similar to a Kubernetes controller's compare step: every attribute in the
schema is compared using its own equality semantics, and the result is
turned into the smallest list of remote operations. Normalization of
semantically equal values ("1" vs 1.0, "true" vs True, [] vs unset) lives
here so resource types don't each reinvent it.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from no8s_provider.schema import (
    Attribute,
    AttributeType,
    Block,
    Presence,
    ResourceSchema,
    prune,
)

logger = logging.getLogger(__name__)


class ChangeAction(Enum):
    """What must happen to one attribute."""

    NO_OP = "no-op"
    UPDATE = "update"
    REPLACE = "replace"


class OperationType(Enum):
    """Remote operations the lifecycle controller can issue."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class AttributeChange:
    """One differing attribute."""

    attribute: str
    old: Any
    new: Any
    action: ChangeAction


@dataclass
class Diff:
    """Result of comparing desired configuration with observed state."""

    desired: Dict[str, Any]
    changes: List[AttributeChange] = field(default_factory=list)

    @property
    def requires_replace(self) -> bool:
        return any(c.action == ChangeAction.REPLACE for c in self.changes)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def updates(self) -> List[AttributeChange]:
        return [c for c in self.changes if c.action == ChangeAction.UPDATE]

    @property
    def action(self) -> ChangeAction:
        if self.requires_replace:
            return ChangeAction.REPLACE
        if self.changes:
            return ChangeAction.UPDATE
        return ChangeAction.NO_OP


@dataclass(frozen=True)
class Operation:
    """A single remote call to make."""

    type: OperationType
    attributes: Dict[str, Any] = field(default_factory=dict)
    previous: Dict[str, Any] = field(default_factory=dict)


def normalize_number(value: Any) -> Any:
    """Numbers compare by value regardless of representation."""
    if isinstance(value, bool):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return value


def normalize_bool(value: Any) -> Any:
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def normalize_scalar(value_type: Optional[AttributeType], value: Any) -> Any:
    if value is None:
        return None
    if value_type in (AttributeType.INTEGER, AttributeType.NUMBER):
        return normalize_number(value)
    if value_type == AttributeType.BOOLEAN:
        return normalize_bool(value)
    if value_type == AttributeType.STRING:
        return str(value)
    return value


def normalize(attribute: Attribute, value: Any) -> Any:
    """
    Canonical, hashable form of a non-block attribute value.

    Empty values (None, "", [], {}) all normalize to None except for
    booleans, where False is a real value.
    """
    if attribute.type == AttributeType.BOOLEAN:
        return normalize_bool(value)
    if value is None or value == "" or value == [] or value == {}:
        return None

    element_type = attribute.element_type
    if attribute.type == AttributeType.LIST:
        return tuple(normalize_scalar(element_type, v) for v in value)
    if attribute.type == AttributeType.SET:
        return frozenset(normalize_scalar(element_type, v) for v in value)
    if attribute.type == AttributeType.MAP:
        return tuple(
            sorted(
                (str(k), normalize_scalar(element_type, v)) for k, v in value.items()
            )
        )
    return normalize_scalar(attribute.type, value)


def _worst(actions: List[Optional[ChangeAction]]) -> Optional[ChangeAction]:
    if ChangeAction.REPLACE in actions:
        return ChangeAction.REPLACE
    if ChangeAction.UPDATE in actions:
        return ChangeAction.UPDATE
    return None


def _compare_item(
    block: Block, desired: Dict[str, Any], observed: Dict[str, Any]
) -> Optional[ChangeAction]:
    """Compare one nested block item; None when equal."""
    actions = []
    for attribute in block:
        if attribute.is_computed_only:
            continue
        wanted = desired.get(attribute.name)
        if wanted is None and attribute.presence == Presence.OPTIONAL_COMPUTED:
            continue
        actions.append(compare(attribute, wanted, observed.get(attribute.name)))
    return _worst(actions)


def _compare_block(
    attribute: Attribute, desired: List[Dict[str, Any]], observed: List[Dict[str, Any]]
) -> Optional[ChangeAction]:
    block = attribute.block
    desired = desired or []
    observed = observed or []
    whole = ChangeAction.REPLACE if attribute.requires_replace else ChangeAction.UPDATE

    if len(desired) != len(observed):
        return whole

    if block.ordered:
        action = _worst([_compare_item(block, d, o) for d, o in zip(desired, observed)])
    else:
        # Unordered blocks match each desired item to any equal observed item
        unused = list(observed)
        action = None
        for item in desired:
            match = next(
                (o for o in unused if _compare_item(block, item, o) is None), None
            )
            if match is None:
                action = whole
                break
            unused.remove(match)

    if action is not None and attribute.force_new:
        return ChangeAction.REPLACE
    return action


def compare(
    attribute: Attribute, desired: Any, observed: Any
) -> Optional[ChangeAction]:
    """
    Compare one attribute's desired and observed values.

    Returns:
        None when equal, otherwise the action the difference requires.
    """
    if attribute.type == AttributeType.BLOCK:
        return _compare_block(attribute, desired, observed)
    if normalize(attribute, desired) == normalize(attribute, observed):
        return None
    return ChangeAction.REPLACE if attribute.force_new else ChangeAction.UPDATE


class Reconciler:
    """Computes diffs and operation plans for one resource type."""

    def __init__(self, schema: ResourceSchema):
        self.schema = schema

    def diff(self, desired: Dict[str, Any], observed: Dict[str, Any]) -> Diff:
        """
        Diff desired configuration against observed state.

        The first immutable attribute that differs short-circuits into a
        single replace change; otherwise every differing mutable attribute
        becomes an update change.

        Args:
            desired: Desired configuration (validated by the caller).
            observed: Observed state from the remote system.

        Returns:
            The Diff.
        """
        wanted = self.schema.apply_defaults(prune(desired))
        result = Diff(desired=wanted)

        for attribute in self.schema:
            if attribute.is_computed_only:
                continue
            new = wanted.get(attribute.name)
            if new is None and attribute.presence == Presence.OPTIONAL_COMPUTED:
                continue

            old = observed.get(attribute.name)
            action = compare(attribute, new, old)
            if action is None:
                continue

            change = AttributeChange(attribute.name, old, new, action)
            if action == ChangeAction.REPLACE:
                logger.debug(f"{attribute.name} requires replacement")
                result.changes = [change]
                return result
            result.changes.append(change)

        return result

    def plan(self, diff: Diff) -> List[Operation]:
        """
        Turn a Diff into an ordered list of operations.

        Args:
            diff: The diff to plan.

        Returns:
            [delete, create] for a replace, [update] carrying only changed
            mutable attributes, or an empty list when nothing changed.
        """
        if diff.requires_replace:
            return [
                Operation(OperationType.DELETE),
                Operation(OperationType.CREATE, attributes=diff.desired),
            ]
        updates = diff.updates
        if updates:
            return [
                Operation(
                    OperationType.UPDATE,
                    attributes={c.attribute: c.new for c in updates},
                    previous={c.attribute: c.old for c in updates},
                )
            ]
        return []

    def plan_create(self, desired: Dict[str, Any]) -> List[Operation]:
        """Operations for a resource that does not exist yet."""
        wanted = self.schema.apply_defaults(prune(desired))
        return [Operation(OperationType.CREATE, attributes=wanted)]
