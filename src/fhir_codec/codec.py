"""
Generic, table-driven FHIR codec.

One decoder and one encoder serve every resource: they walk the fields of
a :class:`~fhir_codec.schema.ResourceSchema` instead of calling
per-resource code.  Input and output are JSON-shaped wire nodes (the
result of ``json.loads``); see :mod:`fhir_codec.json_format` and
:mod:`fhir_codec.xml_format` for text and bytes.

Structural problems raise :class:`~fhir_codec.errors.DecodeError`
subclasses immediately.  Semantic problems (cardinality, code bindings)
are left in the instance for :func:`fhir_codec.validation.validate`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from fhir_codec.config import DecodeMode, get_settings
from fhir_codec.errors import (
    AmbiguousChoiceError,
    DecodeError,
    MalformedWireError,
    MissingRequiredFieldError,
    UnknownFieldError,
    UnknownTypeError,
)
from fhir_codec.instance import Instance
from fhir_codec.logging_config import get_logger
from fhir_codec.registry import PrimitiveType, SchemaRegistry, default_registry
from fhir_codec.schema import RESOURCE_TYPE_CODE, FieldSchema, ResourceSchema

logger = get_logger(__name__)

SchemaRef = Union[ResourceSchema, str]

RESOURCE_TYPE_KEY = "resourceType"


# ═══════════════════════════════════════════════════════════════════
# REPORTS
# ═══════════════════════════════════════════════════════════════════


@dataclass
class SkippedField:
    """A field dropped by :func:`decode_best_effort`."""

    path: str
    field: str
    reason: str
    error: str


@dataclass
class DecodeReport:
    """Report from a best-effort decode."""

    skipped: list[SkippedField] = field(default_factory=list)
    extras_preserved: int = 0

    @property
    def success(self) -> bool:
        """True when no field had to be dropped."""
        return not self.skipped


# ═══════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _resolve_schema(schema: SchemaRef, registry: SchemaRegistry) -> ResourceSchema:
    if isinstance(schema, ResourceSchema):
        return schema
    return registry.lookup(schema)


def _resolve_mode(mode: Union[DecodeMode, str, None]) -> DecodeMode:
    if mode is None:
        return get_settings().decode_mode
    return DecodeMode(mode)


# ═══════════════════════════════════════════════════════════════════
# DECODER
# ═══════════════════════════════════════════════════════════════════


class _Decoder:
    """One decode pass.  Holds no state beyond the optional report."""

    def __init__(
        self,
        registry: SchemaRegistry,
        mode: DecodeMode,
        report: Optional[DecodeReport] = None,
    ) -> None:
        self.registry = registry
        self.mode = mode
        self.report = report

    def node(self, wire: Any, schema: ResourceSchema, path: str) -> Instance:
        if not isinstance(wire, dict):
            raise MalformedWireError(
                f"{schema.name} must be a JSON object, got {_json_kind(wire)}",
                path=path,
                value=wire,
            )

        consumed: set[str] = set()
        if schema.is_resource:
            consumed.add(RESOURCE_TYPE_KEY)
            declared = wire.get(RESOURCE_TYPE_KEY)
            if declared is not None and declared != schema.name:
                raise MalformedWireError(
                    f"resourceType '{declared}' does not match {schema.name}",
                    path=_join(path, RESOURCE_TYPE_KEY),
                    value=declared,
                )

        instance = Instance(schema)
        for f in schema.fields:
            keys = [w for w in f.wire_names if w in wire]
            consumed.update(keys)
            present = [w for w in keys if wire[w] is not None]
            if not present:
                if f.is_required and self.mode is DecodeMode.STRICT:
                    raise MissingRequiredFieldError(f.name, path=_join(path, f.name))
                continue
            try:
                if len(present) > 1:
                    raise AmbiguousChoiceError(
                        f.name, present, path=_join(path, f.name),
                    )
                wire_name = present[0]
                instance[wire_name] = self.field(
                    wire[wire_name], f, wire_name, _join(path, wire_name),
                )
            except DecodeError as exc:
                if self.report is None:
                    raise
                self._skip(exc, f, path)

        for key, value in wire.items():
            if key in consumed:
                continue
            instance.extras[key] = value
            if self.report is not None:
                self.report.extras_preserved += 1
            logger.debug(
                "unknown_field_preserved",
                type_name=schema.name,
                key=key,
                path=path,
            )
        return instance

    def field(
        self, raw: Any, f: FieldSchema, wire_name: str, path: str,
    ) -> Any:
        type_code = f.type_for(wire_name)
        if f.is_repeating:
            if not isinstance(raw, list):
                raise MalformedWireError(
                    f"'{wire_name}' repeats and must be a JSON array, "
                    f"got {_json_kind(raw)}",
                    path=path,
                    value=raw,
                )
            return [
                self.value(item, type_code, f"{path}[{i}]", in_array=True)
                for i, item in enumerate(raw)
            ]
        if isinstance(raw, list):
            raise MalformedWireError(
                f"'{wire_name}' is single-valued but got a JSON array",
                path=path,
                value=raw,
            )
        return self.value(raw, type_code, path)

    def value(
        self, raw: Any, type_code: str, path: str, *, in_array: bool = False,
    ) -> Any:
        if self.registry.is_primitive(type_code):
            # null entries keep repeating primitives aligned with their
            # ``_name`` extension companions
            if raw is None and in_array:
                return None
            return _primitive(raw, self.registry.primitive(type_code), path)
        if type_code == RESOURCE_TYPE_CODE:
            return self.resource(raw, path)
        return self.node(raw, self.registry.lookup(type_code), path)

    def resource(self, raw: Any, path: str) -> Instance:
        if not isinstance(raw, dict):
            raise MalformedWireError(
                f"Resource must be a JSON object, got {_json_kind(raw)}",
                path=path,
                value=raw,
            )
        declared = raw.get(RESOURCE_TYPE_KEY)
        if declared is None:
            raise MalformedWireError(
                "Nested resource has no resourceType", path=path,
            )
        if not isinstance(declared, str) or not self.registry.is_resource_type(declared):
            raise MalformedWireError(
                f"Unknown resourceType '{declared}'",
                path=_join(path, RESOURCE_TYPE_KEY),
                value=declared,
            )
        return self.node(raw, self.registry.lookup(declared), path)

    def _skip(self, exc: DecodeError, f: FieldSchema, path: str) -> None:
        skipped = SkippedField(
            path=exc.path or _join(path, f.name),
            field=f.name,
            reason=exc.message,
            error=type(exc).__name__,
        )
        self.report.skipped.append(skipped)
        logger.warning(
            "field_skipped",
            path=skipped.path,
            field=skipped.field,
            error=skipped.error,
            reason=skipped.reason,
        )


def _primitive(raw: Any, primitive: PrimitiveType, path: str) -> Any:
    kind = primitive.json_kind
    if kind == "boolean":
        if isinstance(raw, bool):
            return raw
    elif kind == "integer":
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
    elif kind == "decimal":
        if isinstance(raw, float):
            raw = Decimal(str(raw))
        if isinstance(raw, Decimal):
            if not raw.is_finite():
                raise MalformedWireError(
                    f"{primitive.name} must be a finite number, got {raw}",
                    path=path,
                    value=raw,
                )
            return raw
        if isinstance(raw, int) and not isinstance(raw, bool):
            return Decimal(raw)
    elif isinstance(raw, str):
        return raw
    raise MalformedWireError(
        f"{primitive.name} must be a JSON {kind}, got {_json_kind(raw)}",
        path=path,
        value=raw,
    )


# ═══════════════════════════════════════════════════════════════════
# PUBLIC DECODE API
# ═══════════════════════════════════════════════════════════════════


def decode(
    wire: Mapping[str, Any],
    schema: SchemaRef,
    *,
    registry: Optional[SchemaRegistry] = None,
    mode: Union[DecodeMode, str, None] = None,
) -> Instance:
    """Decode a JSON-shaped wire node into an :class:`Instance`.

    Args:
        wire: Parsed JSON object (``dict``).
        schema: Schema, or the name of a registered type.
        registry: Registry to resolve nested types with; defaults to
            :func:`~fhir_codec.registry.default_registry`.
        mode: ``"lenient"`` or ``"strict"``; defaults to the
            ``decode_mode`` setting.

    Raises:
        AmbiguousChoiceError: Two alternatives of a choice group are set.
        MalformedWireError: A value has the wrong JSON shape or kind.
        MissingRequiredFieldError: Strict mode only.
        UnknownTypeError: *schema* names an unregistered type.
    """
    registry = registry or default_registry()
    resolved = _resolve_schema(schema, registry)
    return _Decoder(registry, _resolve_mode(mode)).node(wire, resolved, "")


def decode_best_effort(
    wire: Mapping[str, Any],
    schema: SchemaRef,
    *,
    registry: Optional[SchemaRegistry] = None,
) -> tuple[Instance, DecodeReport]:
    """Decode *wire*, dropping fields that cannot be decoded.

    Each failing field is skipped and recorded in the report; its
    siblings are kept.  Failures at the root (not an object,
    mismatched ``resourceType``) still raise.
    """
    registry = registry or default_registry()
    resolved = _resolve_schema(schema, registry)
    report = DecodeReport()
    instance = _Decoder(registry, DecodeMode.LENIENT, report).node(wire, resolved, "")
    return instance, report


def decode_resource(
    wire: Mapping[str, Any],
    *,
    registry: Optional[SchemaRegistry] = None,
    mode: Union[DecodeMode, str, None] = None,
) -> Instance:
    """Decode a resource, choosing its schema from ``resourceType``.

    Raises:
        MalformedWireError: *wire* is not an object or has no
            ``resourceType``.
        UnknownTypeError: ``resourceType`` is not a registered resource.
    """
    registry = registry or default_registry()
    if not isinstance(wire, dict):
        raise MalformedWireError(
            f"Resource must be a JSON object, got {_json_kind(wire)}",
            value=wire,
        )
    declared = wire.get(RESOURCE_TYPE_KEY)
    if declared is None:
        raise MalformedWireError("Resource has no resourceType")
    if not isinstance(declared, str) or not registry.is_resource_type(declared):
        raise UnknownTypeError(str(declared), registry.fhir_version)
    return decode(wire, registry.lookup(declared), registry=registry, mode=mode)


def new_instance(
    type_name: SchemaRef,
    values: Optional[Mapping[str, Any]] = None,
    *,
    registry: Optional[SchemaRegistry] = None,
    **fields: Any,
) -> Instance:
    """Build an instance of *type_name* from Python values.

    Structured fields accept either :class:`Instance` objects or wire
    dicts, which are decoded (leniently) against the field's type.
    Assignment goes through the same checks as :class:`Instance`
    setters.

    Example::

        obs = new_instance(
            "Observation",
            status="final",
            code={"text": "Heart rate"},
            valueQuantity={"value": 72, "unit": "/min"},
        )
    """
    registry = registry or default_registry()
    schema = _resolve_schema(type_name, registry)
    decoder = _Decoder(registry, DecodeMode.LENIENT)
    instance = Instance(schema)
    for wire_name, value in {**(values or {}), **fields}.items():
        f = schema.field_for_wire(wire_name)
        if f is None:
            raise UnknownFieldError(schema.name, wire_name)
        type_code = f.type_for(wire_name)
        if not registry.is_primitive(type_code):
            value = _coerce(decoder, value, type_code, wire_name)
        instance[wire_name] = value
    return instance


def _coerce(decoder: _Decoder, value: Any, type_code: str, path: str) -> Any:
    if isinstance(value, (list, tuple)):
        return [
            _coerce(decoder, v, type_code, f"{path}[{i}]")
            for i, v in enumerate(value)
        ]
    if isinstance(value, Mapping) and not isinstance(value, Instance):
        return decoder.value(dict(value), type_code, path)
    return value


# ═══════════════════════════════════════════════════════════════════
# ENCODER
# ═══════════════════════════════════════════════════════════════════


def encode(
    instance: Instance,
    schema: Optional[SchemaRef] = None,
    *,
    registry: Optional[SchemaRegistry] = None,
) -> dict[str, Any]:
    """Encode *instance* into a JSON-shaped wire node.

    Fields are emitted in schema order (``resourceType`` first for
    resources); unset values and empty lists are skipped; extras follow
    verbatim.  Decimals stay :class:`~decimal.Decimal` so
    :func:`fhir_codec.json_format.to_json` can keep their lexical form.

    Raises:
        ValueError: *schema* is given and is not the instance's type.
    """
    if schema is None:
        resolved = instance.schema
    else:
        resolved = _resolve_schema(schema, registry or default_registry())
        if resolved.name != instance.type_name:
            raise ValueError(
                f"Cannot encode a {instance.type_name} instance as {resolved.name}"
            )

    out: dict[str, Any] = {}
    if resolved.is_resource:
        out[RESOURCE_TYPE_KEY] = resolved.name
    for f in resolved.fields:
        for wire_name in f.wire_names:
            value = instance.get(wire_name)
            if value is None or (isinstance(value, list) and not value):
                continue
            out[wire_name] = _encode_value(value)
    for key, value in instance.extras.items():
        if key not in out:
            out[key] = value
    return out


def _encode_value(value: Any) -> Any:
    if isinstance(value, Instance):
        return encode(value)
    if isinstance(value, list):
        return [_encode_value(v) for v in value]
    return value
