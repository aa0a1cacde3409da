"""Generic in-memory FHIR object: one class for every resource and type.

An :class:`Instance` is an ordered mapping from wire name (``status``,
``valueQuantity``, ``component``) to value, bound to the
:class:`~fhir_codec.schema.ResourceSchema` it was built for.

Values are:

- ``str``, ``bool``, ``int`` or :class:`decimal.Decimal` for primitives,
- nested :class:`Instance` objects for complex types and components,
- ``list`` for repeating fields (insertion order preserved).

Keys the schema does not declare live in :attr:`Instance.extras` and are
carried through decode/encode untouched.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from decimal import Decimal
from typing import Any, Iterator, NamedTuple, Optional

from fhir_codec.errors import AmbiguousChoiceError, UnknownFieldError
from fhir_codec.schema import DECIMAL_TYPE_CODE, FieldSchema, ResourceSchema


class ChoiceValue(NamedTuple):
    """The populated alternative of a choice group."""

    wire_name: str
    type_code: str
    value: Any


class Instance(MutableMapping):
    """Schema-bound mapping of wire name -> value.

    Declared fields are also readable as attributes (``obs.status``);
    an unset field reads as ``None``.  Item access is authoritative where
    a wire name collides with a mapping method name.

    Raises on assignment:
        UnknownFieldError: The wire name is not declared by the schema.
        AmbiguousChoiceError: Another alternative of the same choice
            group is already set.
    """

    __slots__ = ("_schema", "_values", "extras")

    def __init__(
        self,
        schema: ResourceSchema,
        values: Optional[dict[str, Any]] = None,
        *,
        extras: Optional[dict[str, Any]] = None,
    ) -> None:
        self._schema = schema
        self._values: dict[str, Any] = {}
        self.extras: dict[str, Any] = dict(extras or {})
        if values:
            for wire_name, value in values.items():
                self[wire_name] = value

    # ── Schema ────────────────────────────────────────────────────

    @property
    def schema(self) -> ResourceSchema:
        return self._schema

    @property
    def type_name(self) -> str:
        return self._schema.name

    @property
    def resource_type(self) -> Optional[str]:
        """The ``resourceType`` for resources, ``None`` for data types."""
        return self._schema.name if self._schema.is_resource else None

    def _field(self, wire_name: str) -> FieldSchema:
        f = self._schema.field_for_wire(wire_name)
        if f is None:
            raise UnknownFieldError(self._schema.name, wire_name)
        return f

    # ── Mapping protocol ──────────────────────────────────────────

    def __getitem__(self, wire_name: str) -> Any:
        return self._values[wire_name]

    def __setitem__(self, wire_name: str, value: Any) -> None:
        f = self._field(wire_name)
        if isinstance(value, tuple):
            value = list(value)
        # an empty list is the same as an unset field
        if value is None or (isinstance(value, list) and not value):
            self._values.pop(wire_name, None)
            return
        if f.is_choice:
            others = [
                w for w in f.wire_names
                if w != wire_name and w in self._values
            ]
            if others:
                raise AmbiguousChoiceError(f.name, [*others, wire_name])
        if f.is_repeating and not isinstance(value, list):
            value = [value]
        if f.type_for(wire_name) == DECIMAL_TYPE_CODE:
            value = _exact(value)
        self._values[wire_name] = value

    def __delitem__(self, wire_name: str) -> None:
        del self._values[wire_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, wire_name: object) -> bool:
        return wire_name in self._values

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        schema = object.__getattribute__(self, "_schema")
        if schema.has_wire_name(name):
            return object.__getattribute__(self, "_values").get(name)
        raise AttributeError(
            f"{schema.name} has no field '{name}'"
        )

    # ── Choice groups ─────────────────────────────────────────────

    def choice(self, name: str) -> Optional[ChoiceValue]:
        """Return the populated alternative of choice group *name*.

        *name* may be given with or without the ``[x]`` suffix
        (``"value[x]"`` or ``"value"``).  Returns ``None`` when no
        alternative is set.
        """
        group = name if name.endswith("[x]") else f"{name}[x]"
        try:
            f = self._schema.field_named(group)
        except KeyError:
            raise UnknownFieldError(self._schema.name, group) from None
        for t in f.types:
            if t.wire_name in self._values:
                return ChoiceValue(t.wire_name, t.type_code, self._values[t.wire_name])
        return None

    # ── Comparison ────────────────────────────────────────────────

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Instance):
            return NotImplemented
        return (
            self._schema.name == other._schema.name
            and self._values == other._values
            and self.extras == other.extras
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        if self.extras:
            body += f", extras={self.extras!r}" if body else f"extras={self.extras!r}"
        return f"{self._schema.name}({body})"


def _exact(value: Any) -> Any:
    """Convert Python numbers for a ``decimal`` field to :class:`Decimal`.

    Floats go through ``str()`` so ``72.1`` becomes ``Decimal('72.1')``.
    Other values are left for validation to report.
    """
    if isinstance(value, list):
        return [_exact(v) for v in value]
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, int):
        return Decimal(value)
    return value
