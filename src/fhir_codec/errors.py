"""Exception hierarchy for fhir-codec.

Structural problems (the document cannot be represented at all) are
raised as :class:`DecodeError` subclasses.  Semantic problems
(cardinality, code bindings) are never raised; they come back from
:func:`fhir_codec.validation.validate` as data.
"""

from __future__ import annotations

from typing import Optional


class FhirCodecError(Exception):
    """Base class for every error raised by fhir-codec."""


class UnknownTypeError(FhirCodecError, KeyError):
    """A type name is not registered in the schema registry."""

    def __init__(self, type_name: str, fhir_version: str = "R4") -> None:
        self.type_name = type_name
        self.fhir_version = fhir_version
        super().__init__(
            f"Unknown FHIR {fhir_version} type '{type_name}'"
        )

    # KeyError.__str__ wraps the message in quotes
    def __str__(self) -> str:
        return str(self.args[0])


class SchemaLoadError(FhirCodecError):
    """Packaged schema data is missing or inconsistent."""


class UnknownFieldError(FhirCodecError, KeyError):
    """A wire name is not declared by the instance's schema."""

    def __init__(self, type_name: str, wire_name: str) -> None:
        self.type_name = type_name
        self.wire_name = wire_name
        super().__init__(
            f"'{wire_name}' is not a field of {type_name}; "
            f"store undeclared data in Instance.extras"
        )

    def __str__(self) -> str:
        return str(self.args[0])


class DecodeError(FhirCodecError, ValueError):
    """A wire node cannot be decoded against its schema.

    Attributes:
        path: Dotted/indexed path of the offending element
            (``component[1].valueQuantity``), or ``""`` for the root.
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if path else message)


class AmbiguousChoiceError(DecodeError):
    """More than one alternative of a choice group (``value[x]``) is set."""

    def __init__(
        self,
        field: str,
        present: tuple[str, ...] | list[str],
        *,
        path: str = "",
    ) -> None:
        self.field = field
        self.present = tuple(present)
        super().__init__(
            f"Choice element '{field}' has more than one value: "
            f"{', '.join(self.present)}",
            path=path,
        )


class MissingRequiredFieldError(DecodeError):
    """A field with ``min=1`` is absent (strict decode only)."""

    def __init__(self, field: str, *, path: str = "") -> None:
        self.field = field
        super().__init__(f"Required field '{field}' is missing", path=path)


class MalformedWireError(DecodeError):
    """The wire value has the wrong shape (array vs object vs scalar)."""

    def __init__(
        self,
        message: str,
        *,
        path: str = "",
        value: Optional[object] = None,
    ) -> None:
        self.value = value
        super().__init__(message, path=path)
