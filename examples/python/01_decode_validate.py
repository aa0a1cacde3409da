"""
Example 01: Decode and Validate
================================

Decodes a heart-rate Observation, inspects it through the generic
Instance API and validates a few broken variants.

Use case: checking wearable vital-sign readings before they are
stored in a clinical data repository.
"""

import json

from fhir_codec import (
    DecodeMode,
    MissingRequiredFieldError,
    decode_best_effort,
    decode_resource,
    validate,
)

heart_rate = {
    "resourceType": "Observation",
    "id": "heart-rate",
    "status": "final",
    "category": [
        {
            "coding": [
                {
                    "system": "http://terminology.hl7.org/CodeSystem/observation-category",
                    "code": "vital-signs",
                }
            ]
        }
    ],
    "code": {"coding": [{"system": "http://loinc.org", "code": "8867-4"}]},
    "subject": {"reference": "Patient/example"},
    "effectiveDateTime": "2024-03-01T09:30:00Z",
    "valueQuantity": {"value": 72, "unit": "beats/minute", "code": "/min"},
}

# ── 1. Decoding ─────────────────────────────────────────────────

print("=== 1. Decoding ===\n")

obs = decode_resource(heart_rate)
print(f"Type:   {obs.type_name}")
print(f"Status: {obs.status}")
print(f"Value:  {obs.choice('value').value!r}")
print(f"Code:   {obs.code.coding[0].code}")

# ── 2. A valid resource ─────────────────────────────────────────

print("\n=== 2. Valid Resource ===\n")

result = validate(obs)
print(f"Valid: {result.valid}")
print(f"Errors: {len(result.errors)}")

# ── 3. Missing field and unbound code ───────────────────────────

print("\n=== 3. Missing Code, Bogus Status ===\n")

broken = decode_resource({"resourceType": "Observation", "status": "bogus"})
result = validate(broken)
print(f"Valid: {result.valid}")
for err in result.errors:
    print(f"  ✗ [{err.kind.value}] {err.path}: {err.message}")

# ── 4. Strict decoding ──────────────────────────────────────────

print("\n=== 4. Strict Decoding ===\n")

try:
    decode_resource({"resourceType": "Observation", "status": "final"}, mode=DecodeMode.STRICT)
except MissingRequiredFieldError as exc:
    print(f"  ✗ {type(exc).__name__} at {exc.path!r}")

# ── 5. Advisories ───────────────────────────────────────────────

print("\n=== 5. Advisories ===\n")

odd_subject = dict(heart_rate, subject={"reference": "Practitioner/123"})
result = validate(decode_resource(odd_subject))
print(f"Valid: {result.valid}")
for warning in result.warnings:
    print(f"  ! [{warning.code.value}] {warning.path}: {warning.message}")

# ── 6. Best-effort decoding ─────────────────────────────────────

print("\n=== 6. Best-Effort Decoding ===\n")

damaged = dict(heart_rate, category={"text": "vital signs"}, vendorScore=0.93)
obs, report = decode_best_effort(damaged, "Observation")
print(f"Success: {report.success}")
for skipped in report.skipped:
    print(f"  - skipped {skipped.path} ({skipped.error}): {skipped.reason}")
print(f"Unknown keys preserved: {json.dumps(sorted(obs.extras))}")
