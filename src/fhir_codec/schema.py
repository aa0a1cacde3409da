"""Immutable schema records: ResourceSchema, FieldSchema, Binding.

These are the in-memory form of the packaged data files under
``fhir_codec/data``.  Every record is a frozen dataclass; collections are
tuples, frozensets or read-only mappings so a loaded registry can be shared
freely between threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


# ── Type codes with special handling ───────────────────────────────

RESOURCE_TYPE_CODE = "Resource"
"""Polymorphic type: the concrete type comes from the nested ``resourceType``."""

DECIMAL_TYPE_CODE = "decimal"
"""Primitive kept as :class:`decimal.Decimal` in instances."""

CODED_TYPES = frozenset({"code", "Coding", "CodeableConcept", "Quantity"})
"""Type codes whose values carry codes checked against a binding."""


class BindingStrength(str, Enum):
    """FHIR binding strength.  Only ``REQUIRED`` rejects codes."""

    REQUIRED = "required"
    EXTENSIBLE = "extensible"
    PREFERRED = "preferred"
    EXAMPLE = "example"


class SchemaKind(str, Enum):
    RESOURCE = "resource"
    COMPLEX_TYPE = "complex-type"
    COMPONENT = "component"


@dataclass(frozen=True)
class Binding:
    """A value-set binding on a coded field.

    ``codes`` maps a code-system URI to the codes it contributes to the
    bound value set.  An empty mapping means the value set was not
    expanded into the packaged data; membership is then not checked.
    """

    strength: BindingStrength
    uri: str
    codes: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @property
    def is_required(self) -> bool:
        return self.strength is BindingStrength.REQUIRED

    @property
    def is_expanded(self) -> bool:
        return bool(self.codes)

    @property
    def all_codes(self) -> frozenset[str]:
        return frozenset().union(*self.codes.values())

    def contains(self, code: str, system: Optional[str] = None) -> bool:
        """Return True if *code* (optionally from *system*) is bound.

        Without a system, the code is looked up across every system of
        the value set.  A system the value set does not draw from never
        matches.
        """
        if system is None:
            return any(code in codes for codes in self.codes.values())
        codes = self.codes.get(system)
        return codes is not None and code in codes


@dataclass(frozen=True)
class FieldType:
    """One (wire name, declared type) pair of a field."""

    wire_name: str
    type_code: str


@dataclass(frozen=True)
class FieldSchema:
    """Declaration of one field (or one choice group) of a type."""

    name: str
    types: tuple[FieldType, ...]
    min: int = 0
    max: Optional[int] = 1
    path: str = ""
    binding: Optional[Binding] = None
    profiles: tuple[str, ...] = ()

    @property
    def is_choice(self) -> bool:
        return self.name.endswith("[x]")

    @property
    def is_repeating(self) -> bool:
        return self.max is None

    @property
    def is_required(self) -> bool:
        return self.min >= 1

    @property
    def wire_names(self) -> tuple[str, ...]:
        return tuple(t.wire_name for t in self.types)

    def type_for(self, wire_name: str) -> str:
        """Return the declared type code for one of this field's wire names."""
        for t in self.types:
            if t.wire_name == wire_name:
                return t.type_code
        raise KeyError(wire_name)

    @property
    def cardinality(self) -> str:
        return f"{self.min}..{'*' if self.max is None else self.max}"


@dataclass(frozen=True)
class ResourceSchema:
    """Declaration of a resource, complex data type or nested component."""

    name: str
    kind: SchemaKind
    fields: tuple[FieldSchema, ...]
    _by_wire: Mapping[str, FieldSchema] = field(
        init=False, repr=False, compare=False,
    )
    _by_name: Mapping[str, FieldSchema] = field(
        init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        by_wire: dict[str, FieldSchema] = {}
        by_name: dict[str, FieldSchema] = {}
        for f in self.fields:
            by_name[f.name] = f
            for wire in f.wire_names:
                by_wire[wire] = f
        # frozen dataclass: derived lookup tables are set once here
        object.__setattr__(self, "_by_wire", MappingProxyType(by_wire))
        object.__setattr__(self, "_by_name", MappingProxyType(by_name))

    @property
    def is_resource(self) -> bool:
        return self.kind is SchemaKind.RESOURCE

    def field_for_wire(self, wire_name: str) -> Optional[FieldSchema]:
        """Return the field declaring *wire_name*, or None if undeclared."""
        return self._by_wire.get(wire_name)

    def field_named(self, name: str) -> FieldSchema:
        """Return the field with logical *name* (``value[x]`` for choices)."""
        return self._by_name[name]

    def has_wire_name(self, wire_name: str) -> bool:
        return wire_name in self._by_wire


# ── Construction from packaged data ───────────────────────────────


def field_from_data(data: Mapping[str, Any]) -> FieldSchema:
    """Build a :class:`FieldSchema` from one entry of a schema data file."""
    binding = None
    raw_binding = data.get("binding")
    if raw_binding is not None:
        binding = Binding(
            strength=BindingStrength(raw_binding["strength"]),
            uri=raw_binding["uri"],
            codes=MappingProxyType({
                system: frozenset(codes)
                for system, codes in raw_binding.get("codes", {}).items()
            }),
        )
    raw_max = data.get("max", 1)
    return FieldSchema(
        name=data["name"],
        types=tuple(
            FieldType(wire_name=t["wire"], type_code=t["type"])
            for t in data["types"]
        ),
        min=int(data.get("min", 0)),
        max=None if raw_max == "*" else int(raw_max),
        path=data.get("path", ""),
        binding=binding,
        profiles=tuple(data.get("profiles", ())),
    )


def schema_from_data(
    data: Mapping[str, Any], kind: SchemaKind,
) -> ResourceSchema:
    """Build a :class:`ResourceSchema` from one ``definitions`` entry."""
    return ResourceSchema(
        name=data["name"],
        kind=kind,
        fields=tuple(field_from_data(f) for f in data["fields"]),
    )
