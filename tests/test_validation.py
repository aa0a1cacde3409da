"""Tests for validate(): violations and advisories as data."""

from decimal import Decimal

import pytest

from fhir_codec.codec import decode, decode_resource, new_instance
from fhir_codec.config import DecodeMode
from fhir_codec.instance import Instance
from fhir_codec.validation import (
    AdvisoryCode,
    ValidationResult,
    ViolationKind,
    validate,
)


def _kinds(result: ValidationResult) -> list[str]:
    return sorted(e.kind.value for e in result.errors)


def _condition(**overrides):
    wire = {
        "resourceType": "Condition",
        "subject": {"reference": "Patient/example"},
        "clinicalStatus": {
            "coding": [
                {
                    "system": "http://terminology.hl7.org/CodeSystem/condition-clinical",
                    "code": "active",
                }
            ]
        },
        "code": {"text": "Asthma"},
    }
    wire.update(overrides)
    return wire


# ═══════════════════════════════════════════════════════════════════
# Reference scenarios
# ═══════════════════════════════════════════════════════════════════


class TestScenarios:

    def test_valid_observation(self, heart_rate):
        result = validate(decode(heart_rate, "Observation"))
        assert result.valid
        assert result.errors == []

    def test_bogus_status_missing_code(self):
        obs = decode({"status": "bogus"}, "Observation", mode=DecodeMode.LENIENT)
        result = validate(obs)
        assert not result.valid
        assert _kinds(result) == ["MissingRequiredFieldError", "UnboundCodeError"]

        missing = result.errors_of(ViolationKind.MISSING_REQUIRED)[0]
        assert missing.path == "code"

        unbound = result.errors_of("UnboundCodeError")[0]
        assert unbound.path == "status"
        assert unbound.value == "bogus"
        assert unbound.binding == "http://hl7.org/fhir/ValueSet/observation-status"

    def test_second_component_missing_code(self, blood_pressure):
        del blood_pressure["component"][1]["code"]
        result = validate(decode(blood_pressure, "Observation"))
        assert len(result.errors) == 1
        assert result.errors[0].path == "component[1].code"
        assert result.errors[0].kind is ViolationKind.MISSING_REQUIRED

    def test_two_choice_alternatives(self, heart_rate):
        obs = decode(heart_rate, "Observation")
        # bypasses the setter check to simulate a hand-assembled instance
        obs._values["valueString"] = "72 bpm"
        result = validate(obs)
        assert _kinds(result) == ["AmbiguousChoiceError"]
        assert result.errors[0].path == "value[x]"
        assert set(result.errors[0].value) == {"valueQuantity", "valueString"}


# ═══════════════════════════════════════════════════════════════════
# Cardinality
# ═══════════════════════════════════════════════════════════════════


class TestCardinality:

    def test_missing_required_choice_group(self, registry):
        usage = Instance(registry.lookup("UsageContext"))
        usage["code"] = decode({"code": "focus"}, "Coding")
        result = validate(usage)
        assert [e.path for e in result.errors] == ["value[x]"]

    def test_list_on_single_valued_field(self, heart_rate):
        obs = decode(heart_rate, "Observation")
        obs._values["subject"] = [obs.subject, obs.subject]
        result = validate(obs)
        assert _kinds(result) == ["CardinalityError"]
        assert result.errors[0].path == "subject"
        assert result.errors[0].value == 2

    def test_one_item_list_on_single_valued_field(self, heart_rate):
        obs = decode(heart_rate, "Observation")
        obs["status"] = ["final"]
        result = validate(obs)
        assert [(e.path, e.kind.value, e.value) for e in result.errors] == [
            ("status", "CardinalityError", 1),
        ]

    def test_empty_list_counts_as_missing(self, blood_pressure):
        obs = decode(blood_pressure, "Observation")
        obs.component[0]._values["code"] = []
        result = validate(obs)
        assert [e.path for e in result.errors] == ["component[0].code"]

    def test_errors_reported_in_phase_order(self, heart_rate):
        heart_rate["valueQuantity"]["comparator"] = "~"
        obs = decode(heart_rate, "Observation")
        del obs["code"]
        obs["status"] = "bogus"
        obs["issued"] = "yesterday"
        obs._values["subject"] = [obs.subject, obs.subject]
        obs._values["valueString"] = "72 bpm"
        result = validate(obs)
        assert [(e.path, e.kind.value) for e in result.errors] == [
            ("code", "MissingRequiredFieldError"),
            ("subject", "CardinalityError"),
            ("value[x]", "AmbiguousChoiceError"),
            ("status", "UnboundCodeError"),
            ("issued", "InvalidPrimitiveError"),
            ("valueQuantity.comparator", "UnboundCodeError"),
        ]

    def test_validate_never_raises(self, registry):
        result = validate(Instance(registry.lookup("Bundle")))
        assert not result.valid
        assert result.errors[0].path == "type"


# ═══════════════════════════════════════════════════════════════════
# Bindings
# ═══════════════════════════════════════════════════════════════════


class TestBindings:

    def test_required_code_outside_value_set(self, patient):
        patient["gender"] = "robot"
        result = validate(decode_resource(patient))
        assert len(result.errors) == 1
        err = result.errors[0]
        assert err.kind is ViolationKind.UNBOUND_CODE
        assert err.path == "gender"
        assert err.value == "robot"
        assert err.binding == "http://hl7.org/fhir/ValueSet/administrative-gender"

    def test_nested_required_binding(self, patient):
        patient["name"][0]["use"] = "stage-name"
        result = validate(decode_resource(patient))
        assert [e.path for e in result.errors] == ["name[0].use"]

    def test_quantity_comparator(self, heart_rate):
        heart_rate["valueQuantity"]["comparator"] = "~"
        result = validate(decode(heart_rate, "Observation"))
        assert [(e.path, e.kind.value) for e in result.errors] == [
            ("valueQuantity.comparator", "UnboundCodeError"),
        ]

    def test_codeable_concept_in_value_set(self):
        result = validate(decode_resource(_condition()))
        assert result.valid

    def test_codeable_concept_any_coding_matches(self):
        status = {
            "coding": [
                {"system": "http://example.org/local", "code": "live"},
                {"system": "http://terminology.hl7.org/CodeSystem/condition-clinical",
                 "code": "active"},
            ]
        }
        assert validate(decode_resource(_condition(clinicalStatus=status))).valid

    def test_codeable_concept_outside_value_set(self):
        status = {"coding": [{"system": "http://example.org/local", "code": "live"}]}
        result = validate(decode_resource(_condition(clinicalStatus=status)))
        assert _kinds(result) == ["UnboundCodeError"]
        assert result.errors[0].path == "clinicalStatus"

    def test_coding_with_wrong_system(self):
        status = {"coding": [{"system": "http://example.org/local", "code": "active"}]}
        result = validate(decode_resource(_condition(clinicalStatus=status)))
        assert _kinds(result) == ["UnboundCodeError"]

    def test_text_only_concept_not_checked(self):
        assert validate(decode_resource(_condition(clinicalStatus={"text": "Active"}))).valid

    def test_preferred_binding_is_advisory(self, patient):
        patient["language"] = "tlh"
        result = validate(decode_resource(patient))
        assert result.valid
        assert [(w.path, w.code) for w in result.warnings] == [
            ("language", AdvisoryCode.UNBOUND_CODE),
        ]

    def test_preferred_binding_inside_value_set(self, heart_rate):
        result = validate(decode(heart_rate, "Observation"))
        assert not [w for w in result.warnings if w.code is AdvisoryCode.UNBOUND_CODE]


# ═══════════════════════════════════════════════════════════════════
# Primitives
# ═══════════════════════════════════════════════════════════════════


class TestPrimitives:

    def test_bad_date(self, patient):
        patient["birthDate"] = "25/12/1974"
        result = validate(decode_resource(patient))
        assert _kinds(result) == ["InvalidPrimitiveError"]
        assert result.errors[0].path == "birthDate"

    def test_partial_date_is_valid(self, patient):
        patient["birthDate"] = "1974-12"
        assert validate(decode_resource(patient)).valid

    def test_bad_id(self, heart_rate):
        heart_rate["meta"] = {"versionId": "has spaces"}
        result = validate(decode(heart_rate, "Observation"))
        assert [(e.path, e.kind.value) for e in result.errors] == [
            ("meta.versionId", "InvalidPrimitiveError"),
        ]

    def test_python_type_mismatch(self, heart_rate):
        obs = decode(heart_rate, "Observation")
        obs.valueQuantity["value"] = "72"
        result = validate(obs)
        assert [(e.path, e.kind.value) for e in result.errors] == [
            ("valueQuantity.value", "InvalidPrimitiveError"),
        ]

    def test_decimal_with_trailing_zero(self):
        obs = new_instance(
            "Observation", status="final", code={"text": "x"},
        )
        obs["valueQuantity"] = new_instance("Quantity", value=Decimal("72.0"))
        assert validate(obs).valid

    def test_repeating_primitive_index(self, patient):
        patient["name"][0]["given"] = ["Peter", ""]
        result = validate(decode_resource(patient))
        assert [e.path for e in result.errors] == ["name[0].given[1]"]


class TestTypes:

    def test_wrong_nested_type(self, heart_rate, registry):
        obs = decode(heart_rate, "Observation")
        obs._values["valueQuantity"] = Instance(registry.lookup("Coding"), {"code": "x"})
        result = validate(obs)
        assert _kinds(result) == ["TypeMismatchError"]

    def test_plain_dict_instead_of_instance(self, heart_rate):
        obs = decode(heart_rate, "Observation")
        obs._values["code"] = {"text": "Heart rate"}
        result = validate(obs)
        assert [(e.path, e.kind.value) for e in result.errors] == [
            ("code", "TypeMismatchError"),
        ]

    def test_contained_must_be_resource(self, heart_rate, registry):
        obs = decode(heart_rate, "Observation")
        obs._values["contained"] = [Instance(registry.lookup("Quantity"))]
        result = validate(obs)
        assert result.errors[0].path == "contained[0]"

    def test_contained_resources_validated(self, heart_rate):
        heart_rate["contained"] = [{"resourceType": "Patient", "id": "p1", "gender": "robot"}]
        result = validate(decode(heart_rate, "Observation"))
        assert [e.path for e in result.errors] == ["contained[0].gender"]

    def test_schema_argument(self, heart_rate, registry):
        obs = decode(heart_rate, "Observation")
        assert validate(obs, "Observation").valid
        with pytest.raises(ValueError):
            validate(obs, registry.lookup("Patient"))


# ═══════════════════════════════════════════════════════════════════
# Advisories
# ═══════════════════════════════════════════════════════════════════


class TestAdvisories:

    def test_reference_to_disallowed_target(self, heart_rate):
        heart_rate["subject"] = {"reference": "Practitioner/123"}
        result = validate(decode(heart_rate, "Observation"))
        assert result.valid
        warning = [w for w in result.warnings if w.code is AdvisoryCode.REFERENCE_TARGET][0]
        assert warning.path == "subject"
        assert warning.value == "Practitioner/123"

    def test_absolute_reference_and_history(self, heart_rate):
        heart_rate["subject"] = {"reference": "http://example.org/fhir/Patient/1/_history/2"}
        result = validate(decode(heart_rate, "Observation"))
        assert not [w for w in result.warnings if w.code is AdvisoryCode.REFERENCE_TARGET]

    def test_reference_type_element(self, patient):
        patient["managingOrganization"] = {"type": "Practitioner", "display": "Dr X"}
        result = validate(decode_resource(patient))
        assert [w.code for w in result.warnings] == [AdvisoryCode.REFERENCE_TARGET]

    def test_local_references_not_checked(self, heart_rate):
        heart_rate["subject"] = {"reference": "#p1"}
        assert validate(decode(heart_rate, "Observation")).warnings == []

    def test_modifier_extension(self, heart_rate):
        heart_rate["modifierExtension"] = [
            {"url": "http://example.org/negated", "valueBoolean": True}
        ]
        result = validate(decode(heart_rate, "Observation"))
        assert result.valid
        assert [(w.path, w.code) for w in result.warnings] == [
            ("modifierExtension", AdvisoryCode.MODIFIER_EXTENSION),
        ]
