"""Batch API for decoding, validating and encoding many resources.

All functions accept lists and return one result per input, in order,
sharing a single registry lookup across the batch.
"""

from __future__ import annotations
from typing import Any, Optional, Sequence, Union

from fhir_codec.codec import decode, decode_resource, encode
from fhir_codec.config import DecodeMode
from fhir_codec.errors import FhirCodecError
from fhir_codec.instance import Instance
from fhir_codec.registry import SchemaRegistry, default_registry
from fhir_codec.schema import ResourceSchema
from fhir_codec.validation import ValidationResult, validate


def decode_batch(
    wires: Sequence[Any],
    schema: Optional[Union[ResourceSchema, str]] = None,
    *,
    registry: Optional[SchemaRegistry] = None,
    mode: Union[DecodeMode, str, None] = None,
) -> list[tuple[Optional[Instance], Optional[FhirCodecError]]]:
    """Decode a list of wire nodes.

    Without *schema* each node is dispatched on its ``resourceType``.

    Returns ``(instance, None)`` for each node that decoded and
    ``(None, error)`` for each that did not, so one bad document does
    not stop the batch.
    """
    registry = registry or default_registry()
    results: list[tuple[Optional[Instance], Optional[FhirCodecError]]] = []
    for wire in wires:
        try:
            if schema is None:
                instance = decode_resource(wire, registry=registry, mode=mode)
            else:
                instance = decode(wire, schema, registry=registry, mode=mode)
        except FhirCodecError as exc:
            results.append((None, exc))
        else:
            results.append((instance, None))
    return results


def validate_batch(
    instances: Sequence[Instance],
    *,
    registry: Optional[SchemaRegistry] = None,
) -> list[ValidationResult]:
    """Validate a list of instances against their own schemas.

    Returns one :class:`ValidationResult` per instance, in order.
    """
    registry = registry or default_registry()
    return [validate(instance, registry=registry) for instance in instances]


def encode_batch(instances: Sequence[Instance]) -> list[dict[str, Any]]:
    """Encode a list of instances into wire nodes, in order."""
    return [encode(instance) for instance in instances]
