"""
Assessment request orchestrator - the core of the pipeline.

Turns an assignment into assessor requests, skipping work that is already
known (blank responses, cached assessments, duplicates within the run),
dispatches what remains and routes each response back to the student item
that produced it.
"""

import json
import logging
from typing import NamedTuple

import httpx
from pydantic import BaseModel, Field

from assessment_pipeline.assessor.cache import AssessmentCache
from assessment_pipeline.assessor.dispatcher import RequestDispatcher, SUCCESS_CODES, is_success
from assessment_pipeline.assessor.transport import HttpTransport, Transport
from assessment_pipeline.assessor.validation import parse_assessment_payload
from assessment_pipeline.config import ConfigProvider, Settings
from assessment_pipeline.errors import (
    AssessmentValidationError,
    AuthorizationError,
    BackendBuildError,
    ConfigurationError,
)
from assessment_pipeline.models import (
    Artifact,
    Assignment,
    AssessmentSet,
    RequestDescriptor,
    StudentSubmission,
    SubmissionItem,
    TaskDefinition,
)
from assessment_pipeline.progress import LoggingProgressReporter, ProgressReporter

logger = logging.getLogger(__name__)

ASSESSOR_PATH = "/v1/assessor"
BUILD_ERROR_MARKER = "Error running graph: Error building Component"


class UidEntry(NamedTuple):
    """Where a request's response must be written."""

    submission: StudentSubmission
    item: SubmissionItem
    task_def: TaskDefinition
    # Items from other students with byte-identical responses to the same task
    duplicates: list[SubmissionItem]


class RunSummary(BaseModel):
    """Counts describing one orchestration run."""

    not_attempted: int = 0
    cache_hits: int = 0
    duplicates: int = 0
    requests: int = 0
    skipped: int = 0
    assessed: int = 0
    failed_uids: list[str] = Field(default_factory=list)


class RunState:
    """
    Correlation state for one run.

    Replaced wholesale by every ``generate_request_objects`` call; nothing
    here outlives the run that created it.
    """

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        self.uid_index: dict[str, UidEntry] = {}
        self.retry_attempts: dict[str, int] = {}
        self.build_error_count = 0
        self.summary = RunSummary()


class AssessmentRequestOrchestrator:
    """
    Builds, sends and post-processes assessor requests for an assignment.

    Collaborators are injected: configuration, cache and dispatcher are never
    looked up globally.
    """

    def __init__(
        self,
        config: ConfigProvider,
        cache: AssessmentCache,
        dispatcher: RequestDispatcher,
        progress: ProgressReporter | None = None,
        validation_retry_limit: int = 1,
        validation_request_retries: int = 3,
        max_backend_build_errors: int = 2,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Backend URL, API key and batch size.
            cache: Content-hash keyed assessment cache.
            dispatcher: Sends requests with retry and backoff.
            progress: Progress and warning sink.
            validation_retry_limit: Re-requests allowed per uid after an invalid body.
            validation_request_retries: Transport retries for each re-request.
            max_backend_build_errors: Build failures tolerated before the run aborts.
        """
        self._config = config
        self._cache = cache
        self._dispatcher = dispatcher
        self._progress = progress or LoggingProgressReporter()
        self._validation_retry_limit = validation_retry_limit
        self._validation_request_retries = validation_request_retries
        self._max_backend_build_errors = max_backend_build_errors
        self._run: RunState | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Transport | None = None,
        cache: AssessmentCache | None = None,
        progress: ProgressReporter | None = None,
    ) -> "AssessmentRequestOrchestrator":
        """Wire an orchestrator and its collaborators from settings."""
        progress = progress or LoggingProgressReporter()
        dispatcher = RequestDispatcher(
            settings,
            transport or HttpTransport(timeout=settings.request_timeout_seconds),
            progress=progress,
            max_retries=settings.max_request_retries,
            initial_delay=settings.initial_backoff_seconds,
            multiplier=settings.backoff_multiplier,
        )
        return cls(
            settings,
            cache or AssessmentCache.from_settings(settings),
            dispatcher,
            progress=progress,
            validation_retry_limit=settings.validation_retry_limit,
            validation_request_retries=settings.validation_request_retries,
            max_backend_build_errors=settings.max_backend_build_errors,
        )

    @property
    def summary(self) -> RunSummary | None:
        """Summary of the most recent run, if any."""
        return self._run.summary if self._run else None

    def assess(self, assignment: Assignment) -> RunSummary:
        """
        Assess every outstanding student/task pair of an assignment.

        Returns:
            Summary of the run.

        Raises:
            AbortRequestError: On an authentication, permission or endpoint error.
            BackendBuildError: If the backend keeps failing to build its pipeline.
        """
        requests = self.generate_request_objects(assignment)
        self.process_student_responses(requests, assignment)
        return self._require_run().summary

    # ==========================================================================
    # Request generation
    # ==========================================================================

    def generate_request_objects(self, assignment: Assignment) -> list[RequestDescriptor]:
        """
        Build requests for every pair that needs the assessor.

        Blank or untouched responses are marked not attempted and cached
        assessments are assigned straight away; neither produces a request.
        Identical responses to the same task share a single request.

        Args:
            assignment: The assignment to assess. Items are updated in place.

        Returns:
            Requests that need a network call.
        """
        run = RunState(assignment.assignment_id)
        self._run = run
        summary = run.summary

        base_url = self._config.get_backend_url()
        api_key = self._config.get_api_key()
        pending: dict[tuple[str, str], str] = {}  # (ref hash, response hash) -> uid
        requests: list[RequestDescriptor] = []

        for submission in assignment.submissions:
            for item in submission.items.values():
                if not item.type.is_assessable:
                    continue

                try:
                    task_def, reference, template = self._resolve_task(assignment, item)
                except ConfigurationError as e:
                    logger.error(str(e))
                    self._progress.log_error(str(e))
                    summary.skipped += 1
                    continue

                student = item.artifact
                if student.is_empty or (
                    student.content_hash and student.content_hash == template.content_hash
                ):
                    item.assign(AssessmentSet.not_attempted())
                    summary.not_attempted += 1
                    continue

                cached = self._cache.get(reference.content_hash, student.content_hash)
                if cached is not None:
                    item.assign(cached)
                    summary.cache_hits += 1
                    continue

                if reference.content_hash and student.content_hash:
                    pair = (reference.content_hash, student.content_hash)
                    if pair in pending:
                        run.uid_index[pending[pair]].duplicates.append(item)
                        summary.duplicates += 1
                        continue
                    pending[pair] = student.uid

                run.uid_index[student.uid] = UidEntry(submission, item, task_def, [])
                requests.append(
                    self._build_request(base_url, api_key, item, reference, template)
                )

        summary.requests = len(requests)
        logger.info(
            "Generated %d request objects for the assessor "
            "(cache hits: %d, duplicates: %d, not attempted: %d, skipped: %d).",
            len(requests),
            summary.cache_hits,
            summary.duplicates,
            summary.not_attempted,
            summary.skipped,
        )
        return requests

    def _resolve_task(
        self, assignment: Assignment, item: SubmissionItem
    ) -> tuple[TaskDefinition, Artifact, Artifact]:
        task_def = assignment.tasks.get(item.task_id)
        if task_def is None:
            raise ConfigurationError(f"No TaskDefinition for taskId {item.task_id}", item.task_id)

        reference = task_def.get_primary_reference()
        template = task_def.get_primary_template()
        if reference is None or template is None:
            raise ConfigurationError(
                f"Missing reference/template artifacts for taskId {item.task_id}", item.task_id
            )
        return task_def, reference, template

    @staticmethod
    def _build_request(
        base_url: str,
        api_key: str,
        item: SubmissionItem,
        reference: Artifact,
        template: Artifact,
    ) -> RequestDescriptor:
        payload = {
            "taskType": item.type.value,
            "reference": reference.content,
            "template": template.content,
            "studentResponse": item.artifact.content,
        }
        return RequestDescriptor(
            uid=item.artifact.uid,
            url=f"{base_url}{ASSESSOR_PATH}",
            method="post",
            content_type="application/json",
            payload=json.dumps(payload),
            headers={"Authorization": f"Bearer {api_key}"},
        )

    # ==========================================================================
    # Dispatch and response handling
    # ==========================================================================

    def process_student_responses(
        self, requests: list[RequestDescriptor], assignment: Assignment
    ) -> None:
        """Send requests in configured batches and process the responses."""
        if not requests:
            logger.info("No requests to send.")
            return

        batch_size = self._config.get_batch_size()
        logger.info("Sending student responses in batches of %d.", batch_size)
        responses = self._dispatcher.send_batch(requests, batch_size)
        self.process_responses(responses, requests, assignment)

    def process_responses(
        self,
        responses: list[httpx.Response | None],
        requests: list[RequestDescriptor],
        assignment: Assignment,
    ) -> None:
        """
        Route each response to its student item.

        ``responses`` and ``requests`` are index-aligned.

        Raises:
            AuthorizationError: On a 401 or 403 response.
            BackendBuildError: If the backend build failure threshold is exceeded.
            ValueError: If the requests were generated for a different assignment.
        """
        run = self._current_run(assignment)
        self._progress.update("Double-checking all assessments.")

        for response, request in zip(responses, requests):
            self._process_single_response(run, response, request)

    def handle_validation_failure(self, uid: str, request: RequestDescriptor) -> None:
        """
        Re-request an assessment whose response failed validation.

        Bounded per uid by the validation retry limit. Exhausting the limit or
        failing the re-request is reported for this uid only; it never raises.

        Raises:
            AbortRequestError: If the re-request hits an abort status.
            BackendBuildError: If the backend build failure threshold is exceeded.
        """
        run = self._require_run()
        attempts = run.retry_attempts.get(uid, 0)

        if attempts >= self._validation_retry_limit:
            self._progress.log_error(f"Max validation retries reached for UID: {uid}.")
            self._mark_failed(run, uid)
            return

        run.retry_attempts[uid] = attempts + 1
        self._progress.log_error(
            f"Validation failed for UID: {uid}. Retrying attempt "
            f"{run.retry_attempts[uid]} of {self._validation_retry_limit}."
        )

        retry_response = self._dispatcher.send_one(
            request, max_retries=self._validation_request_retries
        )
        self._check_backend_build_error(run, retry_response, uid)

        if retry_response is None or not is_success(retry_response):
            self._progress.log_error(f"Retry failed for UID: {uid}")
            self._mark_failed(run, uid)
            return

        self._accept_response(run, retry_response, request)

    def _process_single_response(
        self,
        run: RunState,
        response: httpx.Response | None,
        request: RequestDescriptor,
    ) -> None:
        if response is not None and response.status_code in SUCCESS_CODES:
            self._accept_response(run, response, request)
        else:
            self._handle_http_error(run, response, request)

    def _accept_response(
        self, run: RunState, response: httpx.Response, request: RequestDescriptor
    ) -> None:
        uid = request.uid
        run.build_error_count = 0
        try:
            assessment = parse_assessment_payload(response.text)
        except AssessmentValidationError as e:
            self._progress.log_error(f"Invalid assessment data for UID: {uid}. {e}", e.raw_response)
            self.handle_validation_failure(uid, request)
            return

        self._assign_and_cache(run, uid, assessment)
        run.retry_attempts[uid] = 0

    def _handle_http_error(
        self,
        run: RunState,
        response: httpx.Response | None,
        request: RequestDescriptor,
    ) -> None:
        uid = request.uid
        self._check_backend_build_error(run, response, uid)

        code = response.status_code if response is not None else None
        text = response.text if response is not None else "No response"

        if code in (401, 403):
            reason = "Invalid API key" if code == 401 else "Check API key permissions"
            message = f"Request for UID: {uid} was rejected ({code}). {reason}. Aborting run."
            self._progress.log_error(message, text)
            raise AuthorizationError(code, request.url, text)

        if code == 400:
            logger.warning("Bad Request (400) for UID: %s. Skipping request. Response: %s", uid, text)
            self._progress.log_error(f"Bad Request (400) for UID: {uid}. Payload invalid.", text)
        elif code == 413:
            logger.warning(
                "Payload Too Large (413) for UID: %s. Skipping request. Response: %s", uid, text
            )
            self._progress.log_error(
                f"Payload Too Large (413) for UID: {uid}. Request body exceeds size limit.", text
            )
        else:
            self._progress.log_error(f"HTTP error for UID: {uid} - Code: {code}", text)
        self._mark_failed(run, uid)

    def _check_backend_build_error(
        self, run: RunState, response: httpx.Response | None, uid: str
    ) -> None:
        if response is None or BUILD_ERROR_MARKER not in response.text:
            return

        run.build_error_count += 1
        if run.build_error_count > self._max_backend_build_errors:
            message = (
                "Critical backend error: the assessor failed to build a required component "
                f"{run.build_error_count} times. Please check the backend server and try again later."
            )
            self._progress.log_error(message, {"count": run.build_error_count, "last_uid": uid})
            raise BackendBuildError(message, run.build_error_count, uid)

    def _assign_and_cache(self, run: RunState, uid: str, assessment: AssessmentSet) -> None:
        entry = run.uid_index.get(uid)
        if entry is None:
            logger.warning("No matching submission item found for UID: %s", uid)
            return

        for item in (entry.item, *entry.duplicates):
            item.assign(assessment)
            run.summary.assessed += 1

        reference = entry.task_def.get_primary_reference()
        self._cache.set(
            reference.content_hash if reference else None,
            entry.item.artifact.content_hash,
            assessment,
        )

    def _mark_failed(self, run: RunState, uid: str) -> None:
        entry = run.uid_index.get(uid)
        uids = [uid]
        if entry is not None:
            uids.extend(item.artifact.uid for item in entry.duplicates)

        for failed_uid in uids:
            self._progress.notify(f"Failed to process assessment for UID: {failed_uid}")
            if failed_uid not in run.summary.failed_uids:
                run.summary.failed_uids.append(failed_uid)

    def _require_run(self) -> RunState:
        if self._run is None:
            raise ValueError("No requests have been generated yet")
        return self._run

    def _current_run(self, assignment: Assignment) -> RunState:
        run = self._require_run()
        if run.assignment_id != assignment.assignment_id:
            raise ValueError(
                f"Requests were generated for assignment {run.assignment_id}, "
                f"not {assignment.assignment_id}"
            )
        return run
