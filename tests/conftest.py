"""Shared fixtures: the packaged registry and a few realistic resources."""

import copy

import pytest

from fhir_codec.registry import default_registry


@pytest.fixture(scope="session")
def registry():
    return default_registry("R4")


_HEART_RATE = {
    "resourceType": "Observation",
    "id": "heart-rate",
    "status": "final",
    "category": [
        {
            "coding": [
                {
                    "system": "http://terminology.hl7.org/CodeSystem/observation-category",
                    "code": "vital-signs",
                    "display": "Vital Signs",
                }
            ]
        }
    ],
    "code": {
        "coding": [
            {"system": "http://loinc.org", "code": "8867-4", "display": "Heart rate"}
        ],
        "text": "Heart rate",
    },
    "subject": {"reference": "Patient/example"},
    "effectiveDateTime": "2024-03-01T09:30:00Z",
    "valueQuantity": {
        "value": 72,
        "unit": "beats/minute",
        "system": "http://unitsofmeasure.org",
        "code": "/min",
    },
}

_BLOOD_PRESSURE = {
    "resourceType": "Observation",
    "id": "blood-pressure",
    "status": "final",
    "code": {
        "coding": [
            {"system": "http://loinc.org", "code": "85354-9", "display": "Blood pressure panel"}
        ]
    },
    "subject": {"reference": "Patient/example"},
    "component": [
        {
            "code": {"coding": [{"system": "http://loinc.org", "code": "8480-6"}]},
            "valueQuantity": {"value": 107, "unit": "mmHg"},
        },
        {
            "code": {"coding": [{"system": "http://loinc.org", "code": "8462-4"}]},
            "valueQuantity": {"value": 60, "unit": "mmHg"},
        },
    ],
}

_PATIENT = {
    "resourceType": "Patient",
    "id": "example",
    "active": True,
    "name": [
        {"use": "official", "family": "Chalmers", "given": ["Peter", "James"]}
    ],
    "gender": "male",
    "birthDate": "1974-12-25",
    "managingOrganization": {"reference": "Organization/1"},
}


@pytest.fixture
def heart_rate():
    return copy.deepcopy(_HEART_RATE)


@pytest.fixture
def blood_pressure():
    return copy.deepcopy(_BLOOD_PRESSURE)


@pytest.fixture
def patient():
    return copy.deepcopy(_PATIENT)
