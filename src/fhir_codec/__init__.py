"""
fhir-codec: schema-driven HL7 FHIR R4 codec and validator.

One generic engine decodes, encodes and validates every FHIR resource
from declarative schema data packaged with the library, instead of one
hand-written class per resource.
"""

__version__ = "0.1.0"

from fhir_codec.errors import (
    FhirCodecError,
    UnknownTypeError,
    SchemaLoadError,
    UnknownFieldError,
    DecodeError,
    AmbiguousChoiceError,
    MissingRequiredFieldError,
    MalformedWireError,
)
from fhir_codec.schema import (
    Binding,
    BindingStrength,
    FieldSchema,
    FieldType,
    ResourceSchema,
    SchemaKind,
)
from fhir_codec.registry import PrimitiveType, SchemaRegistry, default_registry
from fhir_codec.config import CodecSettings, DecodeMode, LogFormat, get_settings
from fhir_codec.logging_config import configure_logging, get_logger
from fhir_codec.instance import ChoiceValue, Instance
from fhir_codec.codec import (
    DecodeReport,
    SkippedField,
    decode,
    decode_best_effort,
    decode_resource,
    encode,
    new_instance,
)
from fhir_codec.validation import (
    Advisory,
    AdvisoryCode,
    ValidationResult,
    Violation,
    ViolationKind,
    validate,
)
from fhir_codec.json_format import from_json, to_json
from fhir_codec.xml_format import from_xml, to_xml
from fhir_codec.batch import decode_batch, validate_batch, encode_batch

__all__ = [
    # Errors
    "FhirCodecError",
    "UnknownTypeError",
    "SchemaLoadError",
    "UnknownFieldError",
    "DecodeError",
    "AmbiguousChoiceError",
    "MissingRequiredFieldError",
    "MalformedWireError",
    # Schema registry
    "Binding",
    "BindingStrength",
    "FieldSchema",
    "FieldType",
    "ResourceSchema",
    "SchemaKind",
    "PrimitiveType",
    "SchemaRegistry",
    "default_registry",
    # Configuration & logging
    "CodecSettings",
    "DecodeMode",
    "LogFormat",
    "get_settings",
    "configure_logging",
    "get_logger",
    # Codec
    "ChoiceValue",
    "Instance",
    "DecodeReport",
    "SkippedField",
    "decode",
    "decode_best_effort",
    "decode_resource",
    "encode",
    "new_instance",
    # Validation
    "Advisory",
    "AdvisoryCode",
    "ValidationResult",
    "Violation",
    "ViolationKind",
    "validate",
    # Wire formats
    "from_json",
    "to_json",
    "from_xml",
    "to_xml",
    # Batch
    "decode_batch",
    "validate_batch",
    "encode_batch",
]
