"""
Best-effort decoding of untyped model output into a ClassificationResult.

Nothing about the upstream shape is trusted: every field is defaulted,
coerced or clamped before a result is built.
"""
import json
import math
import logging
from typing import Any, Dict, Optional

from medjournal.errors import UnparsableResponse
from medjournal.models.journal_entry import ClassificationResult, Severity, SEVERITY_VALUES

logger = logging.getLogger("medjournal.classifier")

MAX_SYMPTOMS = 8
DEFAULT_CONFIDENCE = 0.8
DEFAULT_MOOD = "unknown"
DEFAULT_SUMMARY = "No summary"


def _try_parse_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_object(raw_text: str) -> Dict[str, Any]:
    """
    Direct parse first; otherwise parse the span from the first '{'
    to the last '}'. Raises UnparsableResponse when both fail.
    """
    parsed = _try_parse_object(raw_text)
    if parsed is not None:
        return parsed

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end > start:
        parsed = _try_parse_object(raw_text[start:end + 1])
        if parsed is not None:
            return parsed

    logger.error(f"Classifier output is not a JSON object (length={len(raw_text)})")
    raise UnparsableResponse("Failed to parse AI output", raw=raw_text)


def _normalize_symptoms(value: Any) -> list:
    if not isinstance(value, list):
        return []
    symptoms = []
    for item in value[:MAX_SYMPTOMS]:
        if item is None:
            continue
        text = str(item).strip()
        if text:
            symptoms.append(text)
    return symptoms


def _normalize_severity(value: Any) -> Severity:
    if isinstance(value, str) and value in SEVERITY_VALUES:
        return Severity(value)
    return Severity.MEDIUM


def _normalize_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return DEFAULT_CONFIDENCE
    else:
        return DEFAULT_CONFIDENCE

    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


def _normalize_text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def normalize_analysis(parsed: Dict[str, Any]) -> ClassificationResult:
    return ClassificationResult(
        symptoms=_normalize_symptoms(parsed.get("symptoms")),
        mood=_normalize_text(parsed.get("mood"), DEFAULT_MOOD),
        severity=_normalize_severity(parsed.get("severity")),
        summary=_normalize_text(parsed.get("summary"), DEFAULT_SUMMARY),
        confidence=_normalize_confidence(parsed.get("confidence")),
    )


def decode_classification(raw_text: str) -> ClassificationResult:
    return normalize_analysis(extract_json_object(raw_text))
