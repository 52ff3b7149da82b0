"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules, including an in-memory
transport that scripts assessor responses per request uid.
"""

import json
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import httpx
import pytest

from assessment_pipeline.assessor import AssessmentCache, AssessmentRequestOrchestrator
from assessment_pipeline.assessor.dispatcher import RequestDispatcher
from assessment_pipeline.config import Settings
from assessment_pipeline.models import (
    Artifact,
    Assignment,
    RequestDescriptor,
    StudentSubmission,
    SubmissionItem,
    TaskArtifacts,
    TaskDefinition,
    TaskType,
)


# ==============================================================================
# Response Helpers
# ==============================================================================


def assessment_body(score: float = 4, reasoning: str = "Clear and accurate.") -> str:
    """A valid assessor body, with key casing as the backend sends it."""
    criterion = {"score": score, "reasoning": reasoning}
    return json.dumps({"Completeness": criterion, "Accuracy": criterion, "SPaG": criterion})


def ok(body: str | None = None) -> httpx.Response:
    return httpx.Response(200, text=body if body is not None else assessment_body())


def status(code: int, body: str = "") -> httpx.Response:
    return httpx.Response(code, text=body)


# ==============================================================================
# Transport Double
# ==============================================================================


ScriptEntry = httpx.Response | Exception


class ScriptedTransport:
    """
    Transport double returning scripted outcomes per request uid.

    Each uid has a list of outcomes consumed in order; the last outcome repeats
    once the list is exhausted. Unscripted uids get a valid assessment.
    """

    def __init__(self, script: dict[str, list[ScriptEntry]] | None = None):
        self.script = {uid: list(entries) for uid, entries in (script or {}).items()}
        self.sent: list[str] = []
        self.batches: list[list[str]] = []
        self.closed = False

    def _next(self, request: RequestDescriptor) -> ScriptEntry:
        self.sent.append(request.uid)
        entries = self.script.get(request.uid)
        if not entries:
            return ok()
        return entries.pop(0) if len(entries) > 1 else entries[0]

    def fetch(self, request: RequestDescriptor) -> httpx.Response:
        outcome = self._next(request)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def fetch_all(self, requests: Sequence[RequestDescriptor]) -> list[httpx.Response | None]:
        self.batches.append([r.uid for r in requests])
        results: list[httpx.Response | None] = []
        for request in requests:
            outcome = self._next(request)
            results.append(None if isinstance(outcome, Exception) else outcome)
        return results

    @property
    def network_calls(self) -> int:
        return len(self.sent)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "ScriptedTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ==============================================================================
# Model Builders
# ==============================================================================


def make_artifact(uid: str, content: Any, type: TaskType = TaskType.TEXT) -> Artifact:
    return Artifact(uid=uid, type=type, content=content)


def make_task(
    task_id: str,
    reference: Any,
    template: Any,
    type: TaskType = TaskType.TEXT,
) -> TaskDefinition:
    return TaskDefinition(
        id=task_id,
        task_title=f"Task {task_id}",
        artifacts=TaskArtifacts(
            reference=[make_artifact(f"{task_id}-reference", reference, type)],
            template=[make_artifact(f"{task_id}-template", template, type)],
        ),
    )


def make_assignment(
    tasks: list[TaskDefinition],
    responses: dict[str, dict[str, Any]],
    assignment_id: str = "assignment-1",
) -> Assignment:
    """Build an assignment from ``{student_id: {task_id: content}}``."""
    task_map = {task.id: task for task in tasks}
    submissions = []
    for student_id, answers in responses.items():
        items = {}
        for task_id, content in answers.items():
            task = task_map.get(task_id)
            task_type = task.artifacts.reference[0].type if task else TaskType.TEXT
            items[task_id] = SubmissionItem(
                task_id=task_id,
                artifact=make_artifact(f"{student_id}-{task_id}", content, task_type),
            )
        submissions.append(StudentSubmission(student_id=student_id, items=items))
    return Assignment(assignment_id=assignment_id, tasks=task_map, submissions=submissions)


SAMPLE_ASSIGNMENT = {
    "assignmentId": "a-1",
    "tasks": {
        "t1": {
            "id": "t1",
            "taskTitle": "Photosynthesis",
            "artifacts": {
                "reference": [{"uid": "t1-ref", "type": "TEXT", "content": "Light to sugar."}],
                "template": [{"uid": "t1-tpl", "type": "TEXT", "content": "Explain:"}],
            },
        }
    },
    "submissions": [
        {
            "studentId": "s-1",
            "studentName": "Sam",
            "items": {
                "t1": {
                    "taskId": "t1",
                    "artifact": {
                        "uid": "s-1-t1",
                        "type": "TEXT",
                        "content": "Plants make sugar.",
                        "contentHash": "supplied-hash",
                    },
                }
            },
        }
    ],
}


def make_request(uid: str, url: str = "https://assessor.test/v1/assessor") -> RequestDescriptor:
    return RequestDescriptor(uid=uid, url=url, payload="{}")


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with mocked values."""
    return Settings(
        assessor_api_key="test-api-key",
        assessor_backend_url="https://assessor.test/",
        assessor_batch_size=2,
        initial_backoff_seconds=5.0,
        backoff_multiplier=1.5,
        cache_directory=temp_dir / "cache",
    )


# ==============================================================================
# Pipeline Fixtures
# ==============================================================================


@pytest.fixture
def sleeps() -> list[float]:
    """Records every backoff sleep instead of blocking."""
    return []


@pytest.fixture
def progress() -> MagicMock:
    return MagicMock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def cache() -> AssessmentCache:
    return AssessmentCache()


@pytest.fixture
def make_dispatcher(
    test_settings: Settings, progress: MagicMock, sleeps: list[float]
) -> Callable[[ScriptedTransport], RequestDispatcher]:
    def factory(transport: ScriptedTransport) -> RequestDispatcher:
        return RequestDispatcher(
            test_settings,
            transport,
            progress=progress,
            max_retries=test_settings.max_request_retries,
            initial_delay=test_settings.initial_backoff_seconds,
            multiplier=test_settings.backoff_multiplier,
            sleep=sleeps.append,
        )

    return factory


@pytest.fixture
def make_orchestrator(
    test_settings: Settings,
    cache: AssessmentCache,
    progress: MagicMock,
    make_dispatcher: Callable[[ScriptedTransport], RequestDispatcher],
) -> Callable[[ScriptedTransport], AssessmentRequestOrchestrator]:
    def factory(transport: ScriptedTransport) -> AssessmentRequestOrchestrator:
        return AssessmentRequestOrchestrator(
            test_settings,
            cache,
            make_dispatcher(transport),
            progress=progress,
            validation_retry_limit=1,
            validation_request_retries=3,
            max_backend_build_errors=2,
        )

    return factory
