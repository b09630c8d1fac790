"""
Desired-State Schema - Attribute declarations for a resource type.

A schema says, per attribute, what type it has, whether it may be changed
in place or forces a replacement, and what absence means: unset, a declared
default, or a value the remote system assigns. Configurations are checked
against the schema before any remote call is made.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from no8s_provider.errors import ValidationError, ValidationErrorKind
from no8s_provider.validation import iter_config_errors, validate_config_against_schema

logger = logging.getLogger(__name__)


class AttributeType(Enum):
    """Value types an attribute can hold."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    SET = "set"
    MAP = "map"
    BLOCK = "block"


class Presence(Enum):
    """What it means for an attribute to be absent from a configuration."""

    REQUIRED = "required"
    OPTIONAL = "optional"
    OPTIONAL_COMPUTED = "optional_computed"
    COMPUTED = "computed"


_JSON_TYPES = {
    AttributeType.STRING: "string",
    AttributeType.INTEGER: "integer",
    AttributeType.NUMBER: "number",
    AttributeType.BOOLEAN: "boolean",
}

_KIND_BY_VALIDATOR = {
    "type": ValidationErrorKind.TYPE,
    "required": ValidationErrorKind.REQUIRED,
    "additionalProperties": ValidationErrorKind.UNKNOWN_ATTRIBUTE,
}


def is_present(value: Any) -> bool:
    """True when a configuration value counts as set."""
    return value is not None and value != "" and value != [] and value != {}


def prune(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None entries, recursing into nested blocks."""
    result = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, list):
            value = [prune(v) if isinstance(v, dict) else v for v in value]
        result[key] = value
    return result


@dataclass
class Attribute:
    """A single configurable or computed attribute."""

    name: str
    type: AttributeType
    presence: Presence = Presence.OPTIONAL
    default: Any = None
    force_new: bool = False
    element_type: Optional[AttributeType] = None
    block: Optional["Block"] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    # Extra JSON Schema keywords (enum, minimum, maximum, pattern, ...)
    constraints: Dict[str, Any] = field(default_factory=dict)
    # Name used on the wire by the SDK
    api_name: Optional[str] = None

    def __post_init__(self):
        if self.type == AttributeType.BLOCK and self.block is None:
            raise ValueError(f"Block attribute '{self.name}' needs a block")
        if self.presence == Presence.REQUIRED and self.default is not None:
            raise ValueError(f"Required attribute '{self.name}' cannot have a default")

    @property
    def is_computed_only(self) -> bool:
        return self.presence == Presence.COMPUTED

    @property
    def requires_replace(self) -> bool:
        """True if changing this attribute, or anything inside it, forces a replace."""
        if self.force_new:
            return True
        return self.block is not None and self.block.requires_replace

    def to_json_schema(self) -> Dict[str, Any]:
        """Build the JSON Schema fragment for this attribute."""
        if self.type in _JSON_TYPES:
            schema: Dict[str, Any] = {"type": _JSON_TYPES[self.type]}
        elif self.type == AttributeType.BLOCK:
            schema = {"type": "array", "items": self.block.to_json_schema()}
        elif self.type == AttributeType.MAP:
            schema = {"type": "object"}
            if self.element_type is not None:
                schema["additionalProperties"] = {
                    "type": _JSON_TYPES[self.element_type]
                }
        else:
            schema = {"type": "array"}
            if self.element_type is not None:
                schema["items"] = {"type": _JSON_TYPES[self.element_type]}
            if self.type == AttributeType.SET:
                schema["uniqueItems"] = True

        if self.min_items is not None:
            schema["minItems"] = self.min_items
        if self.max_items is not None:
            schema["maxItems"] = self.max_items

        if self.constraints:
            # Scalar constraints on collections apply to their elements
            if schema["type"] == "array" and self.type != AttributeType.BLOCK:
                schema.setdefault("items", {}).update(self.constraints)
            else:
                schema.update(self.constraints)
        return schema


class Rule:
    """A cross-field constraint evaluated on one level of a configuration."""

    kind = ValidationErrorKind.INVALID_VALUE

    def __init__(self, *names: str):
        if len(names) < 2:
            raise ValueError(f"{type(self).__name__} needs at least two attributes")
        self.names = list(names)

    def _present(self, values: Dict[str, Any]) -> List[str]:
        return [n for n in self.names if is_present(values.get(n))]

    def check(self, values: Dict[str, Any]) -> Optional[str]:
        """Return an error message, or None if the rule holds."""
        raise NotImplementedError

    def _listing(self) -> str:
        return f"[{', '.join(self.names)}]"


class MutuallyExclusive(Rule):
    """At most one of the attributes may be set."""

    kind = ValidationErrorKind.MUTUALLY_EXCLUSIVE

    def check(self, values: Dict[str, Any]) -> Optional[str]:
        present = self._present(values)
        if len(present) > 1:
            return (
                f"Attributes {self._listing()} are mutually exclusive, "
                f"but {', '.join(present)} were specified"
            )
        return None


class AtLeastOneOf(Rule):
    """At least one of the attributes must be set."""

    kind = ValidationErrorKind.AT_LEAST_ONE_OF

    def check(self, values: Dict[str, Any]) -> Optional[str]:
        if not self._present(values):
            return f"At least one attribute out of {self._listing()} must be specified"
        return None


class ExactlyOneOf(Rule):
    """Exactly one of the attributes must be set."""

    kind = ValidationErrorKind.EXACTLY_ONE_OF

    def check(self, values: Dict[str, Any]) -> Optional[str]:
        if len(self._present(values)) != 1:
            return f"Exactly one attribute out of {self._listing()} must be specified"
        return None


class RequiredWith(Rule):
    """If the first attribute is set, all of the others must be too."""

    kind = ValidationErrorKind.REQUIRED_WITH

    def check(self, values: Dict[str, Any]) -> Optional[str]:
        first, others = self.names[0], self.names[1:]
        if not is_present(values.get(first)):
            return None
        missing = [n for n in others if not is_present(values.get(n))]
        if missing:
            return f'"{first}": all of [{", ".join(missing)}] must be specified'
        return None


class Block:
    """An ordered collection of attributes plus the rules that bind them."""

    def __init__(
        self,
        attributes: Sequence[Attribute],
        rules: Sequence[Rule] = (),
        ordered: bool = True,
    ):
        self.attributes: Dict[str, Attribute] = {}
        for attribute in attributes:
            if attribute.name in self.attributes:
                raise ValueError(f"Duplicate attribute: {attribute.name}")
            self.attributes[attribute.name] = attribute
        self.rules = list(rules)
        self.ordered = ordered

        for rule in self.rules:
            unknown = [n for n in rule.names if n not in self.attributes]
            if unknown:
                raise ValueError(f"Rule refers to unknown attributes: {unknown}")

    def __iter__(self):
        return iter(self.attributes.values())

    def get(self, name: str) -> Optional[Attribute]:
        return self.attributes.get(name)

    @property
    def requires_replace(self) -> bool:
        return any(a.requires_replace for a in self.attributes.values())

    def to_json_schema(self) -> Dict[str, Any]:
        """Build a Draft 7 object schema; computed-only attributes are excluded."""
        properties = {}
        required = []
        for attribute in self.attributes.values():
            if attribute.is_computed_only:
                continue
            properties[attribute.name] = attribute.to_json_schema()
            if attribute.presence == Presence.REQUIRED:
                required.append(attribute.name)

        schema: Dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "additionalProperties": False,
        }
        if required:
            schema["required"] = required
        return schema

    def check_computed(self, values: Dict[str, Any], path: str = "") -> None:
        """Reject values for attributes only the remote system may set."""
        for name, value in values.items():
            attribute = self.attributes.get(name)
            if attribute is None:
                continue
            if attribute.is_computed_only:
                raise ValidationError(
                    "attribute is computed and cannot be set",
                    kind=ValidationErrorKind.COMPUTED_ATTRIBUTE,
                    path=f"{path}{name}",
                )
            if attribute.block is not None and isinstance(value, list):
                for i, item in enumerate(value):
                    if isinstance(item, dict):
                        attribute.block.check_computed(item, f"{path}{name}.{i}.")

    def check_rules(self, values: Dict[str, Any], path: str = "") -> None:
        """Evaluate cross-field rules at this level and every nested level."""
        for rule in self.rules:
            message = rule.check(values)
            if message:
                raise ValidationError(message, kind=rule.kind, path=path.rstrip("."))

        for attribute in self.attributes.values():
            if attribute.block is None:
                continue
            for i, item in enumerate(values.get(attribute.name) or []):
                attribute.block.check_rules(item, f"{path}{attribute.name}.{i}.")

    def apply_defaults(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of values with declared defaults filled in."""
        result = copy.deepcopy(values)
        for attribute in self.attributes.values():
            current = result.get(attribute.name)
            if current is None and attribute.default is not None:
                result[attribute.name] = copy.deepcopy(attribute.default)
            elif attribute.block is not None and isinstance(current, list):
                result[attribute.name] = [
                    attribute.block.apply_defaults(item) for item in current
                ]
        return result


class ResourceSchema(Block):
    """Top-level schema of a resource type."""

    def validate(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a desired configuration.

        Checks run in order: computed-only attributes, JSON Schema typing,
        then cross-field rules. The first failure is raised.

        Args:
            config: The desired configuration

        Returns:
            The configuration with None entries removed.

        Raises:
            ValidationError: If the configuration is invalid.
        """
        values = prune(config)
        self.check_computed(values)

        schema = self.to_json_schema()
        is_valid, message = validate_config_against_schema(values, schema)
        if not is_valid:
            first = iter_config_errors(values, schema)[0]
            raise ValidationError(
                message,
                kind=_KIND_BY_VALIDATOR.get(
                    first.validator, ValidationErrorKind.INVALID_VALUE
                ),
            )

        self.check_rules(values)
        return values
