"""
Exception types for the assessment pipeline.

Only AbortRequestError (and its AuthorizationError subclass) and
BackendBuildError stop a run. Everything else is handled per student/task.
"""


class AssessmentPipelineError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(AssessmentPipelineError):
    """Raised when a task lacks the definition or artifacts needed to assess it."""

    def __init__(self, message: str, task_id: str | None = None):
        self.task_id = task_id
        super().__init__(message)


class AbortRequestError(AssessmentPipelineError):
    """Raised when a response status means no further request can succeed."""

    def __init__(self, status_code: int, url: str, response_text: str = ""):
        self.status_code = status_code
        self.url = url
        self.response_text = response_text
        super().__init__(f"Request to {url} failed with status {status_code}")


class AuthorizationError(AbortRequestError):
    """Raised when the assessor rejects the API key (401) or its permissions (403)."""


class AssessmentValidationError(AssessmentPipelineError):
    """Raised when a successful response body is not a valid assessment."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class BackendBuildError(AssessmentPipelineError):
    """Raised when the assessor repeatedly fails to build its scoring pipeline."""

    def __init__(self, message: str, count: int, last_uid: str | None = None):
        self.count = count
        self.last_uid = last_uid
        super().__init__(message)
