import json

import pytest

from medjournal.classifier.decoding import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MOOD,
    DEFAULT_SUMMARY,
    MAX_SYMPTOMS,
    decode_classification,
    extract_json_object,
)
from medjournal.errors import UnparsableResponse
from medjournal.models.journal_entry import Severity


def test_well_formed_output_decodes():
    raw = (
        '{"symptoms": ["headache", "nausea"], "mood": "uncomfortable", '
        '"severity": "high", "summary": "Acute headache.", "confidence": 0.9}'
    )
    result = decode_classification(raw)

    assert result.symptoms == ["headache", "nausea"]
    assert result.mood == "uncomfortable"
    assert result.severity == Severity.HIGH
    assert result.summary == "Acute headache."
    assert result.confidence == 0.9


def test_json_wrapped_in_prose_is_extracted():
    raw = 'Sure! Here is the analysis:\n```json\n{"severity": "low", "symptoms": []}\n```\nThanks.'
    parsed = extract_json_object(raw)
    assert parsed == {"severity": "low", "symptoms": []}


def test_non_object_output_is_unparsable():
    with pytest.raises(UnparsableResponse) as exc:
        extract_json_object("I cannot help with that.")
    assert exc.value.raw == "I cannot help with that."

    with pytest.raises(UnparsableResponse):
        extract_json_object('["headache"]')


def test_missing_fields_fall_back_to_defaults():
    result = decode_classification("{}")

    assert result.symptoms == []
    assert result.mood == DEFAULT_MOOD
    assert result.severity == Severity.MEDIUM
    assert result.summary == DEFAULT_SUMMARY
    assert result.confidence == DEFAULT_CONFIDENCE


@pytest.mark.parametrize("severity", ["HIGH", "severe", "", None, 3])
def test_unknown_severity_becomes_medium(severity):
    result = decode_classification(f'{{"severity": {json.dumps(severity)}}}')
    assert result.severity == Severity.MEDIUM


@pytest.mark.parametrize(
    "confidence, expected",
    [
        (1.7, 1.0),
        (-0.2, 0.0),
        ("0.35", 0.35),
        ("very sure", DEFAULT_CONFIDENCE),
        (True, DEFAULT_CONFIDENCE),
        (None, DEFAULT_CONFIDENCE),
    ],
)
def test_confidence_is_coerced_and_clamped(confidence, expected):
    result = decode_classification(f'{{"confidence": {json.dumps(confidence)}}}')
    assert result.confidence == expected


def test_symptoms_are_truncated_and_cleaned():
    symptoms = [f"  s{i}  " for i in range(12)]
    raw = '{"symptoms": ' + json.dumps(symptoms) + "}"
    result = decode_classification(raw)

    assert len(result.symptoms) == MAX_SYMPTOMS
    assert result.symptoms[0] == "s0"


def test_non_list_symptoms_are_dropped():
    result = decode_classification('{"symptoms": "headache"}')
    assert result.symptoms == []
