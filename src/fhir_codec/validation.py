"""Schema validation for decoded FHIR instances.

:func:`validate` never raises on invalid content: every problem found is
returned as data in a :class:`ValidationResult`.  Blocking problems are
:class:`Violation` records; non-blocking ones are :class:`Advisory`
records.

Checks run in phases on every instance in the tree, so the errors of
one instance come back in this order:

1. cardinality (missing required fields, lists on single-valued fields),
2. choice exclusivity,
3. code bindings (``code``, ``Coding``, ``CodeableConcept``,
   ``Quantity``) on values of the declared type,
4. primitive lexical forms and Python types,
5. reference targets,
6. recursive descent into nested instances.

Paths use wire names, with a zero-based index for repeating fields:
``component[1].code``, ``valueQuantity.value``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Optional, Union

from fhir_codec.instance import Instance
from fhir_codec.registry import SchemaRegistry, default_registry
from fhir_codec.schema import (
    CODED_TYPES,
    RESOURCE_TYPE_CODE,
    Binding,
    FieldSchema,
    ResourceSchema,
)


class ViolationKind(str, Enum):
    MISSING_REQUIRED = "MissingRequiredFieldError"
    CARDINALITY = "CardinalityError"
    AMBIGUOUS_CHOICE = "AmbiguousChoiceError"
    UNBOUND_CODE = "UnboundCodeError"
    INVALID_PRIMITIVE = "InvalidPrimitiveError"
    TYPE_MISMATCH = "TypeMismatchError"


class AdvisoryCode(str, Enum):
    UNBOUND_CODE = "unbound-code"
    REFERENCE_TARGET = "reference-target"
    MODIFIER_EXTENSION = "modifier-extension"


@dataclass
class Violation:
    path: str
    kind: ViolationKind
    message: str
    value: Any = None
    binding: Optional[str] = None


@dataclass
class Advisory:
    path: str
    code: AdvisoryCode
    message: str
    value: Any = None


@dataclass
class ValidationResult:
    valid: bool
    errors: list[Violation] = field(default_factory=list)
    warnings: list[Advisory] = field(default_factory=list)

    def errors_of(self, kind: Union[ViolationKind, str]) -> list[Violation]:
        """Return the violations of one *kind*."""
        return [e for e in self.errors if e.kind == kind]


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, list) and not value)


def _items(value: Any, path: str) -> Iterator[tuple[Any, str]]:
    """Yield ``(item, path)`` for a single value or each list entry.

    ``None`` entries keep repeating primitives aligned with their
    ``_name`` list and are not checked.
    """
    if not isinstance(value, list):
        yield value, path
        return
    for i, item in enumerate(value):
        if item is not None:
            yield item, f"{path}[{i}]"


# ═══════════════════════════════════════════════════════════════════
# VALIDATOR
# ═══════════════════════════════════════════════════════════════════


class _Validator:
    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self.errors: list[Violation] = []
        self.warnings: list[Advisory] = []

    def error(self, path: str, kind: ViolationKind, message: str, **kw: Any) -> None:
        self.errors.append(Violation(path, kind, message, **kw))

    def warn(self, path: str, code: AdvisoryCode, message: str, value: Any = None) -> None:
        self.warnings.append(Advisory(path, code, message, value))

    # ── Instances ─────────────────────────────────────────────────

    def instance(self, inst: Instance, schema: ResourceSchema, path: str) -> None:
        if not _is_empty(inst.get("modifierExtension")):
            self.warn(
                _join(path, "modifierExtension"),
                AdvisoryCode.MODIFIER_EXTENSION,
                f"{schema.name} carries modifier extensions, which are "
                f"preserved but not interpreted",
            )

        populated: list[tuple[FieldSchema, list[str]]] = []
        for f in schema.fields:
            present = [
                w for w in f.wire_names
                if w in inst and not _is_empty(inst[w])
            ]
            if present:
                populated.append((f, present))
            elif f.is_required:
                self.error(
                    _join(path, f.name),
                    ViolationKind.MISSING_REQUIRED,
                    f"Required field '{f.name}' ({f.cardinality}) is missing",
                )

        for f, present in populated:
            for wire_name in present:
                self.cardinality(inst[wire_name], f, wire_name, _join(path, wire_name))

        for f, present in populated:
            if len(present) > 1:
                self.error(
                    _join(path, f.name),
                    ViolationKind.AMBIGUOUS_CHOICE,
                    f"Choice element '{f.name}' has more than one value: "
                    f"{', '.join(present)}",
                    value=present,
                )

        items = [
            (f, f.type_for(wire_name), item, item_path)
            for f, present in populated
            for wire_name in present
            for item, item_path in _items(inst[wire_name], _join(path, wire_name))
        ]
        problems = [self.problem(item, type_code) for _, type_code, item, _ in items]

        for (f, type_code, item, item_path), problem in zip(items, problems):
            if problem is None and f.binding is not None and type_code in CODED_TYPES:
                self.binding(item, f.binding, type_code, item_path)

        for (_, _, item, item_path), problem in zip(items, problems):
            if problem is not None:
                kind, message = problem
                value = None if isinstance(item, Instance) else item
                self.error(item_path, kind, message, value=value)

        for (f, type_code, item, item_path), problem in zip(items, problems):
            if problem is None and type_code == "Reference" and f.profiles:
                self.reference(item, f.profiles, item_path)

        for (_, _, item, item_path), problem in zip(items, problems):
            if problem is None and isinstance(item, Instance):
                self.instance(item, item.schema, item_path)

    def cardinality(self, value: Any, f: FieldSchema, wire_name: str, path: str) -> None:
        if not isinstance(value, list):
            return
        if not f.is_repeating:
            self.error(
                path,
                ViolationKind.CARDINALITY,
                f"'{wire_name}' is single-valued but holds a list of "
                f"{len(value)}; cardinality is {f.cardinality}",
                value=len(value),
            )
        elif f.max is not None and len(value) > f.max:
            self.error(
                path,
                ViolationKind.CARDINALITY,
                f"'{wire_name}' holds {len(value)} values; "
                f"cardinality is {f.cardinality}",
                value=len(value),
            )

    def problem(self, item: Any, type_code: str) -> Optional[tuple[ViolationKind, str]]:
        """Return the primitive or type violation of *item*, if any."""
        if self.registry.is_primitive(type_code):
            primitive = self.registry.primitive(type_code)
            text = _lexical(item, primitive.json_kind)
            if text is None:
                return (
                    ViolationKind.INVALID_PRIMITIVE,
                    f"Expected a {primitive.json_kind} for {primitive.name}, "
                    f"got {type(item).__name__}",
                )
            if not primitive.matches(text):
                return ViolationKind.INVALID_PRIMITIVE, f"'{text}' is not a valid {primitive.name}"
            return None
        if not isinstance(item, Instance):
            return (
                ViolationKind.TYPE_MISMATCH,
                f"Expected {type_code}, got {type(item).__name__}",
            )
        if type_code == RESOURCE_TYPE_CODE:
            if not item.schema.is_resource:
                return ViolationKind.TYPE_MISMATCH, f"Expected a resource, got {item.type_name}"
        elif item.type_name != type_code:
            return ViolationKind.TYPE_MISMATCH, f"Expected {type_code}, got {item.type_name}"
        return None

    # ── Bindings ──────────────────────────────────────────────────

    def binding(self, item: Any, binding: Binding, type_code: str, path: str) -> None:
        if not binding.is_expanded:
            return
        candidates = _coded(item, type_code)
        if not candidates:
            return
        if any(binding.contains(code, system) for code, system in candidates):
            return

        codes = [code for code, _ in candidates]
        shown = codes[0] if len(codes) == 1 else codes
        if binding.is_required:
            self.error(
                path,
                ViolationKind.UNBOUND_CODE,
                f"Code {shown!r} is not in the required value set {binding.uri}",
                value=shown,
                binding=binding.uri,
            )
        else:
            self.warn(
                path,
                AdvisoryCode.UNBOUND_CODE,
                f"Code {shown!r} is not in the {binding.strength.value} "
                f"value set {binding.uri}",
                value=shown,
            )

    # ── References ────────────────────────────────────────────────

    def reference(self, item: Instance, profiles: tuple[str, ...], path: str) -> None:
        allowed = {p.rsplit("/", 1)[-1] for p in profiles}
        if RESOURCE_TYPE_CODE in allowed:
            return
        target = _reference_target(item)
        if target is None or not self.registry.is_resource_type(target):
            return
        if target not in allowed:
            self.warn(
                path,
                AdvisoryCode.REFERENCE_TARGET,
                f"Reference to {target} is not one of the allowed targets: "
                f"{', '.join(sorted(allowed))}",
                value=item.get("reference"),
            )


def _lexical(item: Any, json_kind: str) -> Optional[str]:
    """Return the FHIR lexical form of *item*, or None on a kind mismatch."""
    if json_kind == "boolean":
        if isinstance(item, bool):
            return "true" if item else "false"
        return None
    if isinstance(item, bool):
        return None
    if json_kind == "integer":
        return str(item) if isinstance(item, int) else None
    if json_kind == "decimal":
        if isinstance(item, (int, Decimal)):
            return str(item)
        if isinstance(item, float):
            return repr(item)
        return None
    return item if isinstance(item, str) else None


def _coded(item: Any, type_code: str) -> list[tuple[str, Optional[str]]]:
    """Return the ``(code, system)`` pairs a coded value carries."""
    if type_code == "code":
        return [(item, None)] if isinstance(item, str) else []
    if not isinstance(item, Instance):
        return []
    if type_code == "CodeableConcept":
        pairs = []
        for coding in item.get("coding") or []:
            if isinstance(coding, Instance) and isinstance(coding.get("code"), str):
                pairs.append((coding["code"], coding.get("system")))
        return pairs
    code = item.get("code")
    return [(code, item.get("system"))] if isinstance(code, str) else []


def _reference_target(item: Instance) -> Optional[str]:
    """Return the resource type a Reference points at, when it says."""
    declared = item.get("type")
    if isinstance(declared, str) and declared:
        return declared.rsplit("/", 1)[-1]
    ref = item.get("reference")
    if not isinstance(ref, str) or not ref or ref.startswith(("#", "urn:")):
        return None
    segments = ref.split("/_history/", 1)[0].rstrip("/").split("/")
    if len(segments) < 2:
        return None
    return segments[-2]


# ═══════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════


def validate(
    instance: Instance,
    schema: Optional[Union[ResourceSchema, str]] = None,
    *,
    registry: Optional[SchemaRegistry] = None,
) -> ValidationResult:
    """Validate *instance* and everything nested in it.

    Args:
        instance: The instance to check.
        schema: Schema or type name to check against; defaults to the
            instance's own schema.
        registry: Registry for primitive types and reference targets.

    Returns:
        A :class:`ValidationResult`; ``valid`` is True when there are
        no errors (advisories do not affect it).

    Raises:
        ValueError: *schema* is given and is not the instance's type.
    """
    registry = registry or default_registry()
    if schema is None:
        resolved = instance.schema
    else:
        resolved = schema if isinstance(schema, ResourceSchema) else registry.lookup(schema)
        if resolved.name != instance.type_name:
            raise ValueError(
                f"Cannot validate a {instance.type_name} instance as {resolved.name}"
            )
    v = _Validator(registry)
    v.instance(instance, resolved, "")
    return ValidationResult(valid=not v.errors, errors=v.errors, warnings=v.warnings)
