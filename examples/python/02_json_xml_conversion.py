"""
Example 02: JSON and XML
=========================

Converts a Patient between FHIR JSON and FHIR XML, showing primitive
extensions, narrative XHTML and exact decimals surviving the trip.
"""

from fhir_codec import from_json, from_xml, new_instance, to_json, to_xml

patient_json = """{
  "resourceType": "Patient",
  "id": "example",
  "text": {
    "status": "generated",
    "div": "<div xmlns=\\"http://www.w3.org/1999/xhtml\\"><p>Peter Chalmers</p></div>"
  },
  "active": true,
  "name": [{"use": "official", "family": "Chalmers", "given": ["Peter", "James"]}],
  "gender": "male",
  "birthDate": "1974-12-25",
  "_birthDate": {
    "extension": [
      {"url": "http://hl7.org/fhir/StructureDefinition/patient-birthTime",
       "valueDateTime": "1974-12-25T14:35:45-05:00"}
    ]
  }
}"""

# ── 1. JSON -> XML ──────────────────────────────────────────────

print("=== 1. JSON -> XML ===\n")

patient = from_json(patient_json)
xml_text = to_xml(patient)
print(xml_text)

# ── 2. XML -> JSON ──────────────────────────────────────────────

print("\n=== 2. XML -> JSON ===\n")

again = from_xml(xml_text)
print(to_json(again, indent=2))
print(f"\nSame instance after round trip: {again == patient}")

# ── 3. Decimals keep their digits ───────────────────────────────

print("\n=== 3. Decimal Precision ===\n")

dose = from_json('{"value": 1.50, "unit": "mg"}', "Quantity")
print(f"Decoded value: {dose.value!r}")
print(f"Re-encoded:    {to_json(dose)}")

# ── 4. Building instances in code ───────────────────────────────

print("\n=== 4. Building Instances ===\n")

obs = new_instance(
    "Observation",
    status="final",
    code={"coding": [{"system": "http://loinc.org", "code": "8310-5"}]},
    valueQuantity={"value": 36.6, "unit": "Cel"},
)
print(to_json(obs))
