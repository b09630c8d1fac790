"""
Declared state store.

Records, per resource address (``<type>.<name>``), the identifier and the
last observed attributes of every managed object. The CLI persists it as a
JSON file between runs; the acceptance harness keeps it in memory.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def format_scalar(value: Any) -> str:
    """Render a scalar the way flatmap keys store it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
        if number == number.to_integral_value():
            return str(number.quantize(Decimal(1)))
        return format(number.normalize(), "f")
    return str(value)


def flatmap(attributes: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """
    Flatten nested attributes into dotted string keys.

    Lists and sets get a ``name.#`` count and ``name.<i>`` entries, maps a
    ``name.%`` count. Unset values are omitted.

    Example:
        {"tags": {"a": "b"}, "v": [{"w": 1.0}]} ->
        {"tags.%": "1", "tags.a": "b", "v.#": "1", "v.0.w": "1"}
    """
    result: Dict[str, str] = {}
    for key, value in attributes.items():
        name = f"{prefix}{key}"
        if value is None:
            continue
        if isinstance(value, dict):
            result[f"{name}.%"] = str(len(value))
            for k, v in value.items():
                if isinstance(v, (dict, list, set, frozenset, tuple)):
                    result.update(flatmap({k: v}, f"{name}."))
                elif v is not None:
                    result[f"{name}.{k}"] = format_scalar(v)
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = value
            if isinstance(value, (set, frozenset)):
                items = sorted(value, key=str)
            result[f"{name}.#"] = str(len(items))
            for i, item in enumerate(items):
                if isinstance(item, dict):
                    result.update(flatmap(item, f"{name}.{i}."))
                else:
                    result[f"{name}.{i}"] = format_scalar(item)
        else:
            result[name] = format_scalar(value)
    return result


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@dataclass
class StateEntry:
    """
    One managed object.

    A tainted entry is an object whose creation did not complete (it timed
    out or failed provisioning); the next apply replaces it.
    """

    address: str
    resource_type: str
    identifier: Optional[str]
    attributes: Dict[str, Any] = field(default_factory=dict)
    tainted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "resource_type": self.resource_type,
            "identifier": self.identifier,
            "attributes": self.attributes,
            "tainted": self.tainted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateEntry":
        return cls(
            address=data["address"],
            resource_type=data["resource_type"],
            identifier=data.get("identifier"),
            attributes=data.get("attributes") or {},
            tainted=data.get("tainted", False),
        )


class StateStore:
    """Entries keyed by resource address."""

    def __init__(self, entries: Optional[List[StateEntry]] = None):
        self._entries: Dict[str, StateEntry] = {}
        for entry in entries or []:
            self.put(entry)

    def get(self, address: str) -> Optional[StateEntry]:
        return self._entries.get(address)

    def put(self, entry: StateEntry) -> None:
        self._entries[entry.address] = entry

    def remove(self, address: str) -> Optional[StateEntry]:
        return self._entries.pop(address, None)

    def addresses(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, address: str) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def flatmap(self, address: str) -> Dict[str, str]:
        """
        Flattened attributes of one entry, with ``id`` set to its identifier.

        Raises:
            KeyError: If the address is not in the store.
        """
        entry = self._entries.get(address)
        if entry is None:
            raise KeyError(f"Not found in state: {address}")
        result = flatmap(entry.attributes)
        if entry.identifier is not None:
            result["id"] = entry.identifier
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "resources": [self._entries[a].to_dict() for a in self.addresses()],
        }

    @classmethod
    def load(cls, path: str) -> "StateStore":
        """Load a state file; a missing file is an empty store."""
        if not os.path.exists(path):
            logger.debug(f"No state file at {path}, starting empty")
            return cls()
        with open(path) as f:
            data = json.load(f)
        version = data.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state file version {version} in {path}")
        return cls([StateEntry.from_dict(r) for r in data.get("resources", [])])

    def save(self, path: str) -> None:
        """Write the store to a state file."""
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(
                self.to_dict(), f, indent=2, sort_keys=True, default=_json_default
            )
            f.write("\n")
        os.replace(tmp_path, path)
        logger.debug(f"Saved {len(self)} resource(s) to {path}")
