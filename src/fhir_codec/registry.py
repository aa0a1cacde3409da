"""
Schema registry: the immutable table of FHIR type declarations.

The registry is built once from the JSON data files packaged under
``fhir_codec/data/<version>/`` and never mutated afterwards, so one
instance is shared by every decode, encode and validate call in the
process (see :func:`default_registry`).

Layout of the packaged data::

    data/r4/primitives.json         primitive type -> JSON kind + pattern
    data/r4/resources/<Name>.json   one file per resource
    data/r4/types/<Name>.json       one file per complex data type

Each type file holds the top-level definition followed by its nested
components (``Observation.Component``, ``Questionnaire.Item.EnableWhen``).
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from fhir_codec.config import get_settings
from fhir_codec.errors import SchemaLoadError, UnknownTypeError
from fhir_codec.logging_config import get_logger
from fhir_codec.schema import (
    RESOURCE_TYPE_CODE,
    FieldSchema,
    ResourceSchema,
    SchemaKind,
    schema_from_data,
)

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════

SUPPORTED_FHIR_VERSIONS: dict[str, str] = {
    "R4": "r4",
}
"""FHIR release name -> packaged data directory."""

_SCHEMA_DIRS = ("types", "resources")

_JSON_KINDS = frozenset({"boolean", "integer", "decimal", "string"})


@dataclass(frozen=True)
class PrimitiveType:
    """A FHIR primitive type: its JSON representation and lexical pattern."""

    name: str
    json_kind: str
    pattern: Optional[re.Pattern] = None

    def matches(self, text: str) -> bool:
        """Return True if *text* is in the lexical space of this type."""
        if self.pattern is None:
            return True
        return self.pattern.fullmatch(text) is not None


# ═══════════════════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════════════════


class SchemaRegistry:
    """Read-only lookup of :class:`ResourceSchema` and primitive types.

    Use :meth:`load` for the packaged FHIR data or
    :meth:`from_definitions` to build a registry from in-memory
    documents (handy for tests and custom models).
    """

    __slots__ = ("_fhir_version", "_schemas", "_primitives", "_resource_types")

    def __init__(
        self,
        schemas: Mapping[str, ResourceSchema],
        primitives: Mapping[str, PrimitiveType],
        *,
        fhir_version: str = "R4",
    ) -> None:
        self._fhir_version = fhir_version
        self._schemas = MappingProxyType(dict(schemas))
        self._primitives = MappingProxyType(dict(primitives))
        self._resource_types = tuple(sorted(
            name for name, schema in self._schemas.items()
            if schema.is_resource
        ))
        self._check_references()

    # ── Construction ──────────────────────────────────────────────

    @classmethod
    def load(cls, fhir_version: str = "R4") -> SchemaRegistry:
        """Load the packaged schema data for *fhir_version*.

        Raises:
            ValueError: If *fhir_version* is not supported.
            SchemaLoadError: If the packaged data is missing or
                references a type it does not declare.
        """
        if fhir_version not in SUPPORTED_FHIR_VERSIONS:
            raise ValueError(
                f"Unsupported FHIR version '{fhir_version}'; "
                f"expected one of: {', '.join(SUPPORTED_FHIR_VERSIONS)}"
            )
        root = resources.files("fhir_codec") / "data" / SUPPORTED_FHIR_VERSIONS[fhir_version]

        primitives_file = root / "primitives.json"
        if not primitives_file.is_file():
            raise SchemaLoadError(f"Missing primitive type table for {fhir_version}")
        primitives = _read_json(primitives_file)

        documents: list[dict[str, Any]] = []
        for dirname in _SCHEMA_DIRS:
            folder = root / dirname
            if not folder.is_dir():
                raise SchemaLoadError(
                    f"Missing schema directory '{dirname}' for {fhir_version}"
                )
            entries = sorted(
                (e for e in folder.iterdir() if e.name.endswith(".json")),
                key=lambda e: e.name,
            )
            documents.extend(_read_json(e) for e in entries)

        registry = cls.from_definitions(
            documents, primitives, fhir_version=fhir_version,
        )
        logger.info(
            "schema_registry_loaded",
            fhir_version=fhir_version,
            resources=len(registry.resource_types),
            types=len(registry.type_names),
            primitives=len(registry.primitive_names),
        )
        return registry

    @classmethod
    def from_definitions(
        cls,
        documents: Iterable[Mapping[str, Any]],
        primitives: Mapping[str, Mapping[str, Any]],
        *,
        fhir_version: str = "R4",
    ) -> SchemaRegistry:
        """Build a registry from schema documents in the packaged format.

        Args:
            documents: Type files, each ``{"kind", "name", "definitions"}``.
                The first definition of a document takes the document's
                kind; the remaining ones are nested components.
            primitives: Primitive name -> ``{"json": kind, "pattern": re}``.
        """
        schemas: dict[str, ResourceSchema] = {}
        for doc in documents:
            try:
                kind = SchemaKind(doc["kind"])
                definitions = doc["definitions"]
            except (KeyError, ValueError) as exc:
                raise SchemaLoadError(
                    f"Malformed schema document '{doc.get('name', '?')}': {exc}"
                ) from exc
            for i, definition in enumerate(definitions):
                try:
                    schema = schema_from_data(
                        definition, kind if i == 0 else SchemaKind.COMPONENT,
                    )
                except (KeyError, TypeError, ValueError) as exc:
                    raise SchemaLoadError(
                        f"Malformed definition in '{doc.get('name', '?')}': {exc}"
                    ) from exc
                if schema.name in schemas:
                    raise SchemaLoadError(f"Duplicate type '{schema.name}'")
                schemas[schema.name] = schema

        prims: dict[str, PrimitiveType] = {}
        for name, entry in primitives.items():
            json_kind = entry.get("json", "string")
            if json_kind not in _JSON_KINDS:
                raise SchemaLoadError(
                    f"Primitive '{name}' has unknown JSON kind '{json_kind}'"
                )
            pattern = entry.get("pattern")
            try:
                compiled = re.compile(pattern) if pattern else None
            except re.error as exc:
                raise SchemaLoadError(
                    f"Primitive '{name}' has an invalid pattern: {exc}"
                ) from exc
            prims[name] = PrimitiveType(name, json_kind, compiled)

        return cls(schemas, prims, fhir_version=fhir_version)

    def _check_references(self) -> None:
        unresolved: list[str] = []
        for schema in self._schemas.values():
            for f in schema.fields:
                for t in f.types:
                    code = t.type_code
                    if (
                        code == RESOURCE_TYPE_CODE
                        or code in self._primitives
                        or code in self._schemas
                    ):
                        continue
                    unresolved.append(f"{schema.name}.{t.wire_name} -> {code}")
        if unresolved:
            raise SchemaLoadError(
                "Unresolved type references: " + "; ".join(unresolved)
            )

    # ── Lookup ────────────────────────────────────────────────────

    @property
    def fhir_version(self) -> str:
        return self._fhir_version

    def lookup(self, type_name: str) -> ResourceSchema:
        """Return the schema registered as *type_name*.

        Raises:
            UnknownTypeError: If no such type is registered.
        """
        try:
            return self._schemas[type_name]
        except KeyError:
            raise UnknownTypeError(type_name, self._fhir_version) from None

    def fields_of(
        self, schema_or_name: Union[ResourceSchema, str],
    ) -> tuple[FieldSchema, ...]:
        """Return the fields of a type in declared wire order."""
        if isinstance(schema_or_name, ResourceSchema):
            return schema_or_name.fields
        return self.lookup(schema_or_name).fields

    def is_primitive(self, type_code: str) -> bool:
        return type_code in self._primitives

    def primitive(self, type_code: str) -> PrimitiveType:
        """Return the primitive type *type_code*.

        Raises:
            UnknownTypeError: If *type_code* is not a primitive.
        """
        try:
            return self._primitives[type_code]
        except KeyError:
            raise UnknownTypeError(type_code, self._fhir_version) from None

    def is_resource_type(self, type_name: str) -> bool:
        schema = self._schemas.get(type_name)
        return schema is not None and schema.is_resource

    @property
    def resource_types(self) -> tuple[str, ...]:
        """Names of all registered resources, sorted."""
        return self._resource_types

    @property
    def type_names(self) -> tuple[str, ...]:
        """Names of all registered schemas (resources, types, components)."""
        return tuple(self._schemas)

    @property
    def primitive_names(self) -> tuple[str, ...]:
        return tuple(self._primitives)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def __repr__(self) -> str:
        return (
            f"SchemaRegistry(fhir_version={self._fhir_version!r}, "
            f"types={len(self._schemas)}, resources={len(self._resource_types)})"
        )


def _read_json(entry: Any) -> Any:
    try:
        return json.loads(entry.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SchemaLoadError(f"Cannot read schema file '{entry.name}': {exc}") from exc


# ═══════════════════════════════════════════════════════════════════
# PROCESS-WIDE INSTANCE
# ═══════════════════════════════════════════════════════════════════


@lru_cache(maxsize=None)
def _cached_registry(fhir_version: str) -> SchemaRegistry:
    return SchemaRegistry.load(fhir_version)


def default_registry(fhir_version: Optional[str] = None) -> SchemaRegistry:
    """Return the shared registry for *fhir_version*.

    Defaults to the ``fhir_version`` setting (``FHIR_CODEC_FHIR_VERSION``).
    The packaged data is read on first use only.
    """
    if fhir_version is None:
        fhir_version = get_settings().fhir_version
    return _cached_registry(fhir_version)
