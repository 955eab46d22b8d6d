"""Typed attribute groups used for agent capabilities and task requirements."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from taskrouter.errors import BadValueError

AttributeValue = str | float | bool


class AttributeType(StrEnum):
    """Declared type of an attribute value."""

    STRING = "string"
    DOUBLE = "double"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class Attribute:
    """A single named, typed value."""

    name: str
    type: AttributeType
    value: AttributeValue

    @classmethod
    def of(cls, name: str, value: Any) -> Attribute:
        """Build an attribute inferring its type from a JSON value."""
        # bool first: bool is an int subclass
        if isinstance(value, bool):
            return cls(name, AttributeType.BOOLEAN, value)
        if isinstance(value, (int, float)):
            return cls(name, AttributeType.DOUBLE, float(value))
        if isinstance(value, str):
            return cls(name, AttributeType.STRING, value)
        raise BadValueError(
            f"Unsupported value for attribute '{name}': {value!r} ({type(value).__name__})"
        )


@dataclass
class AttributeGroup:
    """
    Attributes keyed by name.

    A name may hold several attributes (multi-valued selector), e.g.
    ``{"language": ["en", "de"]}`` yields two STRING attributes named
    ``language``.
    """

    _attributes: dict[str, list[Attribute]] = field(default_factory=dict)

    def add(self, attribute: Attribute) -> None:
        self._attributes.setdefault(attribute.name, []).append(attribute)

    def get(self, name: str) -> list[Attribute]:
        """All attributes stored under ``name`` (empty list when absent)."""
        return list(self._attributes.get(name, []))

    def keys(self) -> set[str]:
        return set(self._attributes)

    def __len__(self) -> int:
        return len(self._attributes)

    def __iter__(self) -> Iterator[Attribute]:
        for attributes in self._attributes.values():
            yield from attributes

    def __contains__(self, name: object) -> bool:
        return name in self._attributes

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> AttributeGroup:
        """Convert the JSON form into a group. ``None`` gives an empty group."""
        group = cls()
        if data is None:
            return group
        if not isinstance(data, Mapping):
            raise BadValueError(f"Attributes must be an object, got {data!r}")
        for name, value in data.items():
            if not isinstance(name, str) or not name:
                raise BadValueError(f"Attribute name must be a non-empty string, got {name!r}")
            if isinstance(value, (list, tuple)):
                if not value:
                    raise BadValueError(f"Attribute '{name}' has an empty value list")
                attributes = [Attribute.of(name, item) for item in value]
                if len({a.type for a in attributes}) > 1:
                    raise BadValueError(f"Attribute '{name}' mixes value types")
                for attribute in attributes:
                    group.add(attribute)
            else:
                group.add(Attribute.of(name, value))
        return group

    def to_dict(self) -> dict[str, Any]:
        """Convert back to the JSON form; multi-valued names become lists."""
        result: dict[str, Any] = {}
        for name, attributes in self._attributes.items():
            if len(attributes) == 1:
                result[name] = attributes[0].value
            else:
                result[name] = [a.value for a in attributes]
        return result
