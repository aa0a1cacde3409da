"""
fhir-codec MCP Server: Model Context Protocol integration.

Exposes the FHIR R4 codec as MCP tools for LLM agents.
5 read-only tools: schema browsing (list/describe), decoding,
validation and JSON <-> XML conversion.

Usage::

    python -m fhir_codec.mcp          # stdio transport (default)
    python -m fhir_codec.mcp --http   # streamable HTTP

Requires: pip install fhir-codec[mcp]
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Union

from mcp.server.fastmcp import FastMCP

from fhir_codec.errors import FhirCodecError
from fhir_codec.instance import Instance
from fhir_codec.json_format import from_json, to_json
from fhir_codec.logging_config import get_logger
from fhir_codec.registry import default_registry
from fhir_codec.validation import ValidationResult, validate
from fhir_codec.xml_format import from_xml, to_xml

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════
# Server instance
# ═══════════════════════════════════════════════════════════════════

mcp = FastMCP(
    "fhir-codec",
    instructions=(
        "Schema-driven HL7 FHIR R4 codec. Decodes, validates and "
        "converts FHIR resources in JSON or XML, and describes the "
        "resource model (fields, cardinality, choice elements, code "
        "bindings). All tools are read-only and stateless."
    ),
)

_FORMATS = {"json", "xml"}


# ── Helpers ────────────────────────────────────────────────────────

def _check_format(fmt: str, label: str = "format") -> str:
    fmt = fmt.lower()
    if fmt not in _FORMATS:
        raise ValueError(
            f"Unknown {label} '{fmt}'. Must be one of: {sorted(_FORMATS)}"
        )
    return fmt


def _read(resource_text: str, fmt: str) -> Instance:
    if _check_format(fmt) == "xml":
        return from_xml(resource_text)
    return from_json(resource_text)


def _plain(value: Any) -> Any:
    """Make a violation value JSON-safe."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _malformed(exc: FhirCodecError) -> dict[str, Any]:
    """Map a decode failure to the "malformed resource" diagnostic."""
    logger.warning("mcp_decode_failed", error=type(exc).__name__, message=str(exc))
    return {
        "ok": False,
        "diagnostic": "malformed resource",
        "error": type(exc).__name__,
        "path": getattr(exc, "path", ""),
        "message": getattr(exc, "message", str(exc)),
    }


def _result_to_dict(result: ValidationResult) -> dict[str, Any]:
    return {
        "ok": True,
        "valid": result.valid,
        "errors": [
            {
                "path": e.path,
                "kind": e.kind.value,
                "message": e.message,
                "value": _plain(e.value),
                "binding": e.binding,
            }
            for e in result.errors
        ],
        "warnings": [
            {"path": w.path, "code": w.code.value, "message": w.message}
            for w in result.warnings
        ],
    }


# ═══════════════════════════════════════════════════════════════════
# Group 1: Schema Tools
# ═══════════════════════════════════════════════════════════════════


@mcp.tool()
def list_resource_types() -> list[str]:
    """List every FHIR resource type the codec knows, sorted by name."""
    return list(default_registry().resource_types)


@mcp.tool()
def describe_type(type_name: str) -> dict:
    """Describe a resource, data type or component.

    Args:
        type_name: A resource (``Observation``), data type (``Quantity``)
            or component name (``Observation.Component``).

    Returns:
        Dict with 'name', 'kind' and 'fields'. Each field lists its
        wire names and types, cardinality, binding and reference targets.
    """
    schema = default_registry().lookup(type_name)
    fields = []
    for f in schema.fields:
        entry: dict[str, Any] = {
            "name": f.name,
            "cardinality": f.cardinality,
            "types": {t.wire_name: t.type_code for t in f.types},
        }
        if f.binding is not None:
            entry["binding"] = {
                "strength": f.binding.strength.value,
                "valueSet": f.binding.uri,
                "codes": sorted(f.binding.all_codes),
            }
        if f.profiles:
            entry["targetProfiles"] = list(f.profiles)
        fields.append(entry)
    return {"name": schema.name, "kind": schema.kind.value, "fields": fields}


# ═══════════════════════════════════════════════════════════════════
# Group 2: Codec Tools
# ═══════════════════════════════════════════════════════════════════


@mcp.tool()
def decode_resource(resource_text: str, format: str = "json") -> dict:
    """Decode a FHIR resource and return it in normalized JSON.

    Structural problems (wrong JSON shapes, two values for one choice
    element, unknown resourceType) yield a "malformed resource"
    diagnostic instead of a result.

    Args:
        resource_text: The resource as FHIR JSON or FHIR XML text.
        format: 'json' (default) or 'xml'.

    Returns:
        Dict with 'ok', 'resourceType' and 'resource' (JSON text in
        schema order), or the malformed-resource diagnostic.
    """
    try:
        instance = _read(resource_text, format)
    except FhirCodecError as exc:
        return _malformed(exc)
    return {
        "ok": True,
        "resourceType": instance.type_name,
        "resource": to_json(instance),
        "extras": sorted(instance.extras),
    }


@mcp.tool()
def validate_resource(resource_text: str, format: str = "json") -> dict:
    """Decode and validate a FHIR resource.

    Checks cardinality, choice elements, required code bindings and
    primitive formats at every level of the resource.

    Args:
        resource_text: The resource as FHIR JSON or FHIR XML text.
        format: 'json' (default) or 'xml'.

    Returns:
        Dict with 'valid' (bool), 'errors' (itemized violations with
        path, kind, message, value and binding) and 'warnings'; or the
        malformed-resource diagnostic when decoding fails.
    """
    try:
        instance = _read(resource_text, format)
    except FhirCodecError as exc:
        return _malformed(exc)
    return _result_to_dict(validate(instance))


@mcp.tool()
def convert_resource(
    resource_text: str,
    source_format: str = "json",
    target_format: str = "xml",
) -> Union[str, dict]:
    """Convert a FHIR resource between JSON and XML.

    Args:
        resource_text: The resource in *source_format*.
        source_format: 'json' or 'xml'.
        target_format: 'json' or 'xml'.

    Returns:
        The resource in *target_format*, or the malformed-resource
        diagnostic when it cannot be decoded or written.
    """
    target = _check_format(target_format, "target_format")
    source = _check_format(source_format, "source_format")
    try:
        instance = _read(resource_text, source)
        if target == "xml":
            return to_xml(instance)
        return to_json(instance, indent=2)
    except FhirCodecError as exc:
        return _malformed(exc)


# ═══════════════════════════════════════════════════════════════════
# Resources
# ═══════════════════════════════════════════════════════════════════


@mcp.resource("fhir-codec://schema/{type_name}")
def get_type_schema(type_name: str) -> str:
    """Field table of one FHIR type, as JSON."""
    return json.dumps(describe_type(type_name))


# ═══════════════════════════════════════════════════════════════════
# Prompts
# ═══════════════════════════════════════════════════════════════════


@mcp.prompt()
def fix_validation_errors(resource_text: str) -> str:
    """Guide for repairing a FHIR resource that fails validation."""
    return (
        f"You have this FHIR resource:\n```json\n{resource_text}\n```\n\n"
        "Repair it step by step:\n"
        "1. Call validate_resource on it.\n"
        "2. For each MissingRequiredFieldError, use describe_type on the "
        "owning type to see what the field expects, and add it.\n"
        "3. For each UnboundCodeError, pick a code from the binding's "
        "'codes' list in describe_type.\n"
        "4. For each AmbiguousChoiceError, keep exactly one of the "
        "alternatives.\n"
        "5. Validate again until 'valid' is true.\n"
    )
