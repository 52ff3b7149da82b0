"""
Parser for assessor response bodies.

Decodes the JSON body returned by the assessor and checks it has the
expected per-criterion shape before anything is assigned or cached.
"""

import json
from collections.abc import Mapping
from typing import Any

from assessment_pipeline.errors import AssessmentValidationError
from assessment_pipeline.models import CRITERIA, Assessment, AssessmentSet


def normalise_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Lower-case the top-level keys of a mapping."""
    return {str(key).lower(): value for key, value in data.items()}


def is_criterion_shape(value: Any) -> bool:
    """Check for ``{"score": number, "reasoning": string}``."""
    if not isinstance(value, Mapping):
        return False
    score = value.get("score")
    # bool is an int subclass but never a valid score
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return False
    return isinstance(value.get("reasoning"), str)


def validate_assessment_data(data: Any, raw_response: str | None = None) -> AssessmentSet:
    """
    Validate a decoded criteria map and build an AssessmentSet.

    Args:
        data: Decoded JSON, expected ``{criterion: {score, reasoning}}``.
        raw_response: Original body for error reporting.

    Returns:
        The validated AssessmentSet.

    Raises:
        AssessmentValidationError: If any known criterion is missing or malformed.
    """
    if not isinstance(data, Mapping):
        raise AssessmentValidationError(
            "Assessment data must be a JSON object", raw_response=raw_response
        )

    normalised = normalise_keys(data)

    for criterion in CRITERIA:
        if criterion not in normalised:
            raise AssessmentValidationError(
                f"Missing criterion: {criterion}", raw_response=raw_response
            )
        if not is_criterion_shape(normalised[criterion]):
            raise AssessmentValidationError(
                f"Criterion '{criterion}' must have a numeric score and string reasoning",
                raw_response=raw_response,
            )

    known = {
        name: Assessment(score=normalised[name]["score"], reasoning=normalised[name]["reasoning"])
        for name in CRITERIA
    }
    extra = {
        name: Assessment(score=value["score"], reasoning=value["reasoning"])
        for name, value in normalised.items()
        if name not in CRITERIA and is_criterion_shape(value)
    }
    return AssessmentSet(**known, extra_criteria=extra)


def parse_assessment_payload(text: str) -> AssessmentSet:
    """
    Parse an assessor response body.

    Args:
        text: Raw response body.

    Returns:
        The validated AssessmentSet.

    Raises:
        AssessmentValidationError: If the body is not JSON or fails validation.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise AssessmentValidationError(f"Invalid JSON in response: {e}", raw_response=text) from e

    return validate_assessment_data(data, raw_response=text)
