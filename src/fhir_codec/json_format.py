"""FHIR JSON text <-> :class:`~fhir_codec.instance.Instance`.

Numbers are parsed as :class:`decimal.Decimal` and written back in the
same lexical form, so ``1.50`` stays ``1.50`` through a round trip.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Optional, Union

from fhir_codec.codec import decode, decode_resource, encode
from fhir_codec.config import DecodeMode
from fhir_codec.errors import MalformedWireError
from fhir_codec.instance import Instance
from fhir_codec.registry import SchemaRegistry
from fhir_codec.schema import ResourceSchema


def loads(text: Union[str, bytes, bytearray]) -> Any:
    """Parse FHIR JSON text into a wire node, keeping decimals exact.

    Raises:
        MalformedWireError: *text* is not valid JSON, or uses the
            ``NaN`` / ``Infinity`` extensions FHIR JSON does not allow.
    """
    try:
        return json.loads(text, parse_float=Decimal, parse_constant=_reject_constant)
    except MalformedWireError:
        raise
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedWireError(f"Invalid JSON: {exc}") from exc


def _reject_constant(name: str) -> Any:
    raise MalformedWireError(f"Invalid JSON: {name} is not a JSON number", value=name)


def dumps(wire: Any, *, indent: Optional[int] = None) -> str:
    """Serialize a wire node to JSON text, writing decimals verbatim."""
    return _emit(wire, indent, 0)


def _emit(value: Any, indent: Optional[int], level: int) -> str:
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = [
            f"{json.dumps(str(k), ensure_ascii=False)}:{'' if indent is None else ' '}"
            f"{_emit(v, indent, level + 1)}"
            for k, v in value.items()
        ]
        return _wrap("{", "}", items, indent, level)
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        items = [_emit(v, indent, level + 1) for v in value]
        return _wrap("[", "]", items, indent, level)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Cannot serialize non-finite decimal {value}")
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def _wrap(
    open_: str, close: str, items: list[str], indent: Optional[int], level: int,
) -> str:
    if indent is None:
        return open_ + ",".join(items) + close
    inner = "\n" + " " * (indent * (level + 1))
    outer = "\n" + " " * (indent * level)
    return open_ + inner + ("," + inner).join(items) + outer + close


def from_json(
    text: Union[str, bytes, bytearray],
    schema: Optional[Union[ResourceSchema, str]] = None,
    *,
    registry: Optional[SchemaRegistry] = None,
    mode: Union[DecodeMode, str, None] = None,
) -> Instance:
    """Decode FHIR JSON text.

    Without *schema* the text must be a resource and its
    ``resourceType`` selects the schema.
    """
    wire = loads(text)
    if schema is None:
        return decode_resource(wire, registry=registry, mode=mode)
    return decode(wire, schema, registry=registry, mode=mode)


def to_json(instance: Instance, *, indent: Optional[int] = None) -> str:
    """Encode *instance* as FHIR JSON text."""
    return dumps(encode(instance), indent=indent)
