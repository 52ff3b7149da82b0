"""
Assessor Request Module.

Request generation, batched dispatch, response validation and caching for
the LLM-backed assessor.
"""

from assessment_pipeline.assessor.cache import AssessmentCache
from assessment_pipeline.assessor.dispatcher import (
    RequestDispatcher,
    RequestOutcome,
    classify_status,
)
from assessment_pipeline.assessor.orchestrator import AssessmentRequestOrchestrator, RunSummary
from assessment_pipeline.assessor.transport import HttpTransport, Transport
from assessment_pipeline.assessor.validation import parse_assessment_payload

__all__ = [
    "AssessmentCache",
    "AssessmentRequestOrchestrator",
    "HttpTransport",
    "RequestDispatcher",
    "RequestOutcome",
    "RunSummary",
    "Transport",
    "classify_status",
    "parse_assessment_payload",
]
