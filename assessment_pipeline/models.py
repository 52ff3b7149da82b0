"""
Pydantic models for the assessment pipeline.

These models define the schemas for:
- Artifacts and the task definitions that own reference/template artifacts
- Student submissions and their per-task items
- Assessments, the fixed set of scored criteria per item
- Request descriptors sent to the assessor backend

Artifact content hashes are treated as opaque, stable identifiers.
"""

import json
from collections.abc import Iterator
from enum import Enum
from hashlib import sha256
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

NOT_ATTEMPTED_SCORE = "N"
NOT_ATTEMPTED_REASONING = "Task not attempted"
CRITERIA: tuple[str, ...] = ("completeness", "accuracy", "spag")


class _CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==============================================================================
# Artifact Models
# ==============================================================================


class TaskType(str, Enum):
    """Kind of content an artifact holds."""

    TEXT = "TEXT"
    TABLE = "TABLE"
    SPREADSHEET = "SPREADSHEET"  # Assessed by a separate formula checker
    IMAGE = "IMAGE"

    @property
    def is_assessable(self) -> bool:
        """Whether the assessor backend scores this type."""
        return self is not TaskType.SPREADSHEET


class Artifact(_CamelModel):
    """
    A piece of task content with a stable hash.

    The same model serves reference, template and student-response roles.
    """

    uid: str = Field(..., min_length=1, description="Unique id of this artifact instance")
    type: TaskType = Field(default=TaskType.TEXT, description="Content kind")
    content: Any = Field(default=None, description="Canonical content (text, table rows, ...)")
    content_hash: str | None = Field(
        default=None,
        description="Digest of the canonical content; used as cache key",
    )

    @model_validator(mode="after")
    def ensure_hash(self) -> "Artifact":
        """Derive a content hash when the source did not supply one."""
        if self.content_hash is None and not self.is_empty:
            self.content_hash = self.compute_hash(self.content)
        return self

    @property
    def is_empty(self) -> bool:
        """Check if the artifact carries no content."""
        if self.content is None:
            return True
        if isinstance(self.content, str):
            return self.content == ""
        if isinstance(self.content, (list, dict)):
            return len(self.content) == 0
        return False

    @staticmethod
    def compute_hash(content: Any) -> str:
        """Compute SHA-256 hash of a stable JSON rendering of content."""
        stable = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return sha256(stable.encode("utf-8")).hexdigest()


class TaskArtifacts(_CamelModel):
    """Artifacts attached to a task definition, grouped by role."""

    reference: list[Artifact] = Field(default_factory=list)
    template: list[Artifact] = Field(default_factory=list)


class TaskDefinition(_CamelModel):
    """A task with its reference (model answer) and template (blank) artifacts."""

    id: str = Field(..., min_length=1)
    task_title: str = Field(default="")
    artifacts: TaskArtifacts = Field(default_factory=TaskArtifacts)

    def get_primary_reference(self) -> Artifact | None:
        return self.artifacts.reference[0] if self.artifacts.reference else None

    def get_primary_template(self) -> Artifact | None:
        return self.artifacts.template[0] if self.artifacts.template else None


# ==============================================================================
# Assessment Models
# ==============================================================================


class Assessment(_CamelModel):
    """Score and reasoning for one criterion. A score of "N" means unscored."""

    model_config = ConfigDict(frozen=True)

    score: int | float | Literal["N"]
    reasoning: str

    @property
    def attempted(self) -> bool:
        return self.score != NOT_ATTEMPTED_SCORE


class AssessmentSet(_CamelModel):
    """
    Assessments for the three known criteria of one student/task pair.

    Criteria the backend adds beyond the known three are kept in
    ``extra_criteria`` rather than widening the record.
    """

    model_config = ConfigDict(frozen=True)

    completeness: Assessment
    accuracy: Assessment
    spag: Assessment
    extra_criteria: dict[str, Assessment] = Field(default_factory=dict)

    def criteria(self) -> Iterator[tuple[str, Assessment]]:
        """Yield (criterion, assessment) pairs, known criteria first."""
        yield "completeness", self.completeness
        yield "accuracy", self.accuracy
        yield "spag", self.spag
        yield from self.extra_criteria.items()

    def to_criteria_map(self) -> dict[str, dict[str, Any]]:
        """Flatten to the backend wire shape ``{criterion: {score, reasoning}}``."""
        return {name: a.model_dump() for name, a in self.criteria()}

    @classmethod
    def not_attempted(cls) -> "AssessmentSet":
        """Build the sentinel set used for blank or untouched responses."""
        blank = Assessment(score=NOT_ATTEMPTED_SCORE, reasoning=NOT_ATTEMPTED_REASONING)
        return cls(completeness=blank, accuracy=blank, spag=blank)


# ==============================================================================
# Submission Models
# ==============================================================================


class SubmissionItem(_CamelModel):
    """One student's response to one task."""

    task_id: str = Field(..., min_length=1)
    artifact: Artifact
    assessment: AssessmentSet | None = None

    @property
    def type(self) -> TaskType:
        return self.artifact.type

    def assign(self, assessment: AssessmentSet) -> None:
        self.assessment = assessment


class StudentSubmission(_CamelModel):
    """All of one student's items for an assignment, keyed by task id."""

    student_id: str = Field(..., min_length=1)
    student_name: str | None = None
    items: dict[str, SubmissionItem] = Field(default_factory=dict)


class Assignment(_CamelModel):
    """Task definitions plus every student's submission."""

    assignment_id: str = Field(..., min_length=1)
    tasks: dict[str, TaskDefinition] = Field(default_factory=dict)
    submissions: list[StudentSubmission] = Field(default_factory=list)


# ==============================================================================
# Request Models
# ==============================================================================


class RequestDescriptor(BaseModel):
    """
    A single HTTP request to the assessor.

    ``uid`` is the student artifact uid and routes the response back.
    """

    model_config = ConfigDict(frozen=True)

    uid: str
    url: str
    method: str = "post"
    content_type: str = "application/json"
    payload: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
