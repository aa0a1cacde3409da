"""
FHIR XML <-> :class:`~fhir_codec.instance.Instance`.

The XML form is converted to and from the same JSON-shaped wire node the
codec consumes, so XML and JSON share one decode path and one set of
structural checks.  The conversion is schema-guided:

- primitives are ``<name value="..."/>`` elements; their ``id`` and
  extensions map to the JSON ``_name`` companion,
- ``id`` on data types and components and ``url`` on ``Extension`` are
  XML attributes; a resource ``id`` is an ordinary child element,
- contained resources (fields typed ``Resource``) are wrapped:
  ``<contained><Patient>...</Patient></contained>``,
- ``Narrative.div`` is embedded XHTML and travels as a string.

Parsing goes through :mod:`defusedxml`; building uses the standard
:mod:`xml.etree.ElementTree`.  Output has FHIR as the default namespace;
the narrative ``div`` re-declares XHTML as its own default.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from xml.sax.saxutils import escape

import defusedxml
import defusedxml.ElementTree as DefusedET

from fhir_codec.codec import RESOURCE_TYPE_KEY, decode, encode
from fhir_codec.config import DecodeMode
from fhir_codec.errors import MalformedWireError, UnknownTypeError
from fhir_codec.instance import Instance
from fhir_codec.logging_config import get_logger
from fhir_codec.registry import SchemaRegistry, default_registry
from fhir_codec.schema import RESOURCE_TYPE_CODE, FieldSchema, ResourceSchema

logger = get_logger(__name__)

FHIR_NS = "http://hl7.org/fhir"
XHTML_NS = "http://www.w3.org/1999/xhtml"
XML_NS = "http://www.w3.org/XML/1998/namespace"

_XML_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")

# type name -> attribute-borne wire names (besides ``id``)
_ATTRIBUTE_FIELDS: dict[str, frozenset[str]] = {
    "Extension": frozenset({"url"}),
}


def _split(tag: str) -> tuple[str, str]:
    if tag.startswith("{"):
        ns, _, local = tag[1:].partition("}")
        return ns, local
    return "", tag


def _attribute_fields(schema: ResourceSchema) -> frozenset[str]:
    if schema.is_resource:
        return frozenset()
    return _ATTRIBUTE_FIELDS.get(schema.name, frozenset()) | {"id"}


# ═══════════════════════════════════════════════════════════════════
# XML -> WIRE
# ═══════════════════════════════════════════════════════════════════


class _Reader:
    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry

    def resource(self, elem: ET.Element, path: str) -> dict[str, Any]:
        ns, name = _split(elem.tag)
        if ns != FHIR_NS:
            raise MalformedWireError(
                f"Element <{name}> is not in the FHIR namespace",
                path=path,
            )
        if not self.registry.is_resource_type(name):
            raise MalformedWireError(
                f"Unknown resourceType '{name}'", path=path, value=name,
            )
        return self.element(elem, self.registry.lookup(name), path)

    def element(
        self, elem: ET.Element, schema: ResourceSchema, path: str,
    ) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if schema.is_resource:
            out[RESOURCE_TYPE_KEY] = schema.name

        for attr in sorted(_attribute_fields(schema)):
            text = elem.get(attr)
            f = schema.field_for_wire(attr)
            if text is not None and f is not None:
                out[attr] = self.scalar(text, f.type_for(attr), f"{path}@{attr}")

        # repeating primitives: values and ``_name`` companions stay aligned
        companions: dict[str, list[Any]] = {}
        for child in elem:
            ns, local = _split(child.tag)
            child_path = f"{path}.{local}" if path else local
            f = schema.field_for_wire(local)
            expected = XHTML_NS if f is not None and f.type_for(local) == "xhtml" else FHIR_NS
            if ns != expected:
                raise MalformedWireError(
                    f"Element <{local}> is not in the namespace {expected}",
                    path=child_path,
                )
            if f is None:
                logger.debug("unknown_element_preserved", type_name=schema.name, element=local)
                _append(out, local, _generic(child))
                continue
            self.child(child, f, local, child_path, out, companions)

        for wire_name, items in companions.items():
            if any(c is not None for c in items):
                out[f"_{wire_name}"] = items
            if all(v is None for v in out.get(wire_name, ())):
                out.pop(wire_name, None)
        return out

    def child(
        self,
        child: ET.Element,
        f: FieldSchema,
        wire_name: str,
        path: str,
        out: dict[str, Any],
        companions: dict[str, list[Any]],
    ) -> None:
        type_code = f.type_for(wire_name)
        if not f.is_repeating and wire_name in out:
            raise MalformedWireError(
                f"'{wire_name}' is single-valued but occurs more than once",
                path=path,
            )

        if type_code == "xhtml":
            out[wire_name] = _serialize(child)
            return
        if type_code == RESOURCE_TYPE_CODE:
            inner = list(child)
            if len(inner) != 1:
                raise MalformedWireError(
                    f"<{wire_name}> must wrap exactly one resource",
                    path=path,
                )
            value = self.resource(inner[0], path)
        elif self.registry.is_primitive(type_code):
            text = child.get("value")
            value = None if text is None else self.scalar(text, type_code, path)
            companion = self.companion(child, path)
            if f.is_repeating:
                out.setdefault(wire_name, []).append(value)
                companions.setdefault(wire_name, []).append(companion)
            else:
                if value is not None:
                    out[wire_name] = value
                if companion is not None:
                    out[f"_{wire_name}"] = companion
            return
        else:
            value = self.element(child, self.registry.lookup(type_code), path)

        if f.is_repeating:
            out.setdefault(wire_name, []).append(value)
        else:
            out[wire_name] = value

    def companion(self, child: ET.Element, path: str) -> Optional[dict[str, Any]]:
        """Return the ``_name`` object for a primitive's id and extensions."""
        result: dict[str, Any] = {}
        if child.get("id") is not None:
            result["id"] = child.get("id")
        extension_schema = self.registry.lookup("Extension")
        extensions = [
            self.element(ext, extension_schema, f"{path}.extension")
            for ext in child
            if _split(ext.tag) == (FHIR_NS, "extension")
        ]
        if extensions:
            result["extension"] = extensions
        return result or None

    def scalar(self, text: str, type_code: str, path: str) -> Any:
        kind = self.registry.primitive(type_code).json_kind
        if kind == "boolean":
            if text in ("true", "false"):
                return text == "true"
        elif kind == "integer":
            try:
                return int(text)
            except ValueError:
                pass
        elif kind == "decimal":
            try:
                return Decimal(text)
            except InvalidOperation:
                pass
        else:
            return text
        raise MalformedWireError(
            f"'{text}' is not a valid {type_code}", path=path, value=text,
        )


def _append(out: dict[str, Any], key: str, value: Any) -> None:
    if key not in out:
        out[key] = value
    elif isinstance(out[key], list):
        out[key].append(value)
    else:
        out[key] = [out[key], value]


def _generic(elem: ET.Element) -> Any:
    """Convert an undeclared element to a plain JSON-like value."""
    if len(elem) == 0:
        if "value" in elem.attrib:
            return elem.get("value")
        return dict(elem.attrib) or (elem.text or "").strip() or None
    out: dict[str, Any] = dict(elem.attrib)
    for child in elem:
        _append(out, _split(child.tag)[1], _generic(child))
    return out


# ── Serialization ─────────────────────────────────────────────────

_ATTR_ENTITIES = {'"': "&quot;", "\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}


def _serialize(elem: ET.Element, default_ns: str = "") -> str:
    """Write *elem* as XML text, declaring each namespace as the default
    on the outermost element that uses it.

    Namespaced attributes get ``xml:`` for the XML namespace and a
    generated ``nsN`` prefix otherwise.
    """
    ns, local = _split(elem.tag)
    head = [local]
    if ns != default_ns:
        head.append(f'xmlns="{escape(ns, _ATTR_ENTITIES)}"')
    prefixes: dict[str, str] = {}
    for key, value in elem.attrib.items():
        attr_ns, attr_local = _split(key)
        if attr_ns == XML_NS:
            attr_local = f"xml:{attr_local}"
        elif attr_ns:
            prefix = prefixes.setdefault(attr_ns, f"ns{len(prefixes)}")
            attr_local = f"{prefix}:{attr_local}"
        head.append(f'{attr_local}="{escape(value, _ATTR_ENTITIES)}"')
    for attr_ns, prefix in prefixes.items():
        head.append(f'xmlns:{prefix}="{escape(attr_ns, _ATTR_ENTITIES)}"')

    body = []
    if elem.text:
        body.append(escape(elem.text, {"\r": "&#13;"}))
    for child in elem:
        body.append(_serialize(child, ns))
        if child.tail:
            body.append(escape(child.tail, {"\r": "&#13;"}))
    if not body:
        return f"<{' '.join(head)} />"
    return f"<{' '.join(head)}>{''.join(body)}</{local}>"


# ═══════════════════════════════════════════════════════════════════
# WIRE -> XML
# ═══════════════════════════════════════════════════════════════════


def _lexical(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _Writer:
    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry

    def resource(self, wire: dict[str, Any]) -> ET.Element:
        name = wire[RESOURCE_TYPE_KEY]
        return self.element(name, wire, self.registry.lookup(name))

    def element(
        self, tag: str, wire: dict[str, Any], schema: ResourceSchema,
    ) -> ET.Element:
        elem = ET.Element(f"{{{FHIR_NS}}}{tag}")
        as_attributes = _attribute_fields(schema)
        for attr in sorted(as_attributes):
            if wire.get(attr) is not None:
                elem.set(attr, _lexical(wire[attr]))

        for f in schema.fields:
            for wire_name in f.wire_names:
                if wire_name in as_attributes:
                    continue
                value = wire.get(wire_name)
                companion = wire.get(f"_{wire_name}")
                if value is None and companion is None:
                    continue
                type_code = f.type_for(wire_name)
                if f.is_repeating:
                    values = value if isinstance(value, list) else []
                    extra = companion if isinstance(companion, list) else []
                    for i in range(max(len(values), len(extra))):
                        self.child(
                            elem, wire_name, type_code,
                            values[i] if i < len(values) else None,
                            extra[i] if i < len(extra) else None,
                        )
                else:
                    self.child(elem, wire_name, type_code, value, companion)

        for key, value in wire.items():
            if key == RESOURCE_TYPE_KEY or schema.has_wire_name(key):
                continue
            if key.startswith("_") and schema.has_wire_name(key[1:]):
                continue
            if _XML_NAME.fullmatch(key) is None:
                logger.debug("extra_not_written_to_xml", type_name=schema.name, key=key)
                continue
            _generic_element(elem, key, value)
        return elem

    def child(
        self,
        parent: ET.Element,
        wire_name: str,
        type_code: str,
        value: Any,
        companion: Any,
    ) -> None:
        tag = f"{{{FHIR_NS}}}{wire_name}"
        if type_code == "xhtml":
            if value is not None:
                div = _parse(value)
                if _split(div.tag)[0] != XHTML_NS:
                    raise MalformedWireError(
                        f"<{wire_name}> must be in the namespace {XHTML_NS}",
                        value=value,
                    )
                parent.append(div)
            return
        if type_code == RESOURCE_TYPE_CODE:
            if value is not None:
                ET.SubElement(parent, tag).append(self.resource(value))
            return
        if self.registry.is_primitive(type_code):
            if value is None and not companion:
                return
            child = ET.SubElement(parent, tag)
            if isinstance(companion, dict) and companion.get("id") is not None:
                child.set("id", _lexical(companion["id"]))
            if value is not None:
                child.set("value", _lexical(value))
            if isinstance(companion, dict):
                extension_schema = self.registry.lookup("Extension")
                for ext in companion.get("extension") or []:
                    child.append(self.element("extension", ext, extension_schema))
            return
        if value is not None:
            parent.append(self.element(wire_name, value, self.registry.lookup(type_code)))


def _generic_element(parent: ET.Element, key: str, value: Any) -> None:
    """Write an undeclared value back as elements; the inverse of :func:`_generic`."""
    if isinstance(value, list):
        for item in value:
            _generic_element(parent, key, item)
        return
    child = ET.SubElement(parent, f"{{{FHIR_NS}}}{key}")
    if isinstance(value, dict):
        for k, v in value.items():
            if _XML_NAME.fullmatch(k) is None:
                logger.debug("extra_not_written_to_xml", key=k)
                continue
            _generic_element(child, k, v)
    elif value is not None:
        child.set("value", _lexical(value))


# ═══════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════


def _parse(text: Union[str, bytes, bytearray]) -> ET.Element:
    try:
        return DefusedET.fromstring(text)
    except (ET.ParseError, defusedxml.DefusedXmlException) as exc:
        raise MalformedWireError(f"Invalid XML: {exc}") from exc


def xml_to_wire(
    text: Union[str, bytes, bytearray],
    *,
    registry: Optional[SchemaRegistry] = None,
) -> dict[str, Any]:
    """Convert a FHIR XML resource into a JSON-shaped wire node.

    Raises:
        MalformedWireError: Invalid XML or a structure the schema rejects.
        UnknownTypeError: The root element is not a registered resource.
    """
    registry = registry or default_registry()
    root = _parse(text)
    ns, name = _split(root.tag)
    if ns == FHIR_NS and not registry.is_resource_type(name):
        raise UnknownTypeError(name, registry.fhir_version)
    return _Reader(registry).resource(root, "")


def wire_to_xml(
    wire: dict[str, Any],
    *,
    registry: Optional[SchemaRegistry] = None,
) -> str:
    """Serialize a JSON-shaped resource wire node as FHIR XML."""
    registry = registry or default_registry()
    if RESOURCE_TYPE_KEY not in wire:
        raise MalformedWireError("Resource has no resourceType")
    return _serialize(_Writer(registry).resource(wire))


def from_xml(
    text: Union[str, bytes, bytearray],
    *,
    registry: Optional[SchemaRegistry] = None,
    mode: Union[DecodeMode, str, None] = None,
) -> Instance:
    """Decode a FHIR XML resource into an :class:`Instance`."""
    registry = registry or default_registry()
    wire = xml_to_wire(text, registry=registry)
    return decode(wire, wire[RESOURCE_TYPE_KEY], registry=registry, mode=mode)


def to_xml(
    instance: Instance,
    *,
    registry: Optional[SchemaRegistry] = None,
) -> str:
    """Encode a resource instance as FHIR XML.

    Raises:
        ValueError: *instance* is a data type, not a resource.
    """
    if not instance.schema.is_resource:
        raise ValueError(
            f"Only resources have an XML document form, not {instance.type_name}"
        )
    return wire_to_xml(encode(instance), registry=registry)
