"""
Batched HTTP dispatch with retry and backoff.

The dispatcher knows nothing about assessments: it sends RequestDescriptors,
classifies each status code, retries what is worth retrying and returns the
responses in the order the requests were given.
"""

import logging
import time
from collections.abc import Callable, Sequence
from enum import Enum

import httpx

from assessment_pipeline.assessor.transport import Transport
from assessment_pipeline.config import ConfigProvider
from assessment_pipeline.errors import AbortRequestError
from assessment_pipeline.models import RequestDescriptor
from assessment_pipeline.progress import LoggingProgressReporter, ProgressReporter

logger = logging.getLogger(__name__)

SUCCESS_CODES = frozenset({200, 201})
ABORT_CODES = frozenset({401, 403, 404})


class RequestOutcome(str, Enum):
    """How the dispatcher treats a status code."""

    SUCCESS = "success"
    ABORT = "abort"  # Bad key, missing permission or wrong endpoint
    RETRYABLE = "retryable"  # Rate limited or server-side failure
    TERMINAL = "terminal"  # Client error; the same payload will fail again


def classify_status(status_code: int) -> RequestOutcome:
    """Map an HTTP status code to the dispatcher's handling policy."""
    if status_code in SUCCESS_CODES:
        return RequestOutcome.SUCCESS
    if status_code in ABORT_CODES:
        return RequestOutcome.ABORT
    if status_code == 429 or status_code >= 500:
        return RequestOutcome.RETRYABLE
    if 400 <= status_code < 500:
        return RequestOutcome.TERMINAL
    # 1xx/3xx and other 2xx are unexpected from the assessor
    return RequestOutcome.RETRYABLE


def is_success(response: httpx.Response | None) -> bool:
    return response is not None and response.status_code in SUCCESS_CODES


class RequestDispatcher:
    """
    Sends requests in fixed-size batches with bounded exponential backoff.

    The backoff delay starts at ``initial_delay`` and grows by ``multiplier``
    after every failed attempt. Within one ``send_batch`` call the delay
    carries over from one retried request to the next, so a backend that
    keeps rate limiting sees progressively longer pauses.
    """

    def __init__(
        self,
        config: ConfigProvider,
        transport: Transport,
        progress: ProgressReporter | None = None,
        max_retries: int = 2,
        initial_delay: float = 5.0,
        multiplier: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the dispatcher.

        Args:
            config: Supplies the batch size.
            transport: Blocking HTTP primitives.
            progress: Receives one update per batch.
            max_retries: Default retries per request after the first attempt.
            initial_delay: Seconds to wait before the first retry.
            multiplier: Growth factor for the delay.
            sleep: Blocking sleep function.
        """
        self._config = config
        self._transport = transport
        self._progress = progress or LoggingProgressReporter()
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._multiplier = multiplier
        self._sleep = sleep
        self._delay = initial_delay

    def send_one(
        self, request: RequestDescriptor, max_retries: int | None = None
    ) -> httpx.Response | None:
        """
        Send a single request with retries and exponential backoff.

        Args:
            request: Request to send.
            max_retries: Retries after the first attempt. Uses the default if None.

        Returns:
            The first 2xx response, a non-retryable 4xx response as-is, or
            None when every attempt failed.

        Raises:
            AbortRequestError: On 401, 403 or 404. Never retried.
        """
        self._delay = self._initial_delay
        return self._send_with_retries(request, max_retries)

    def send_batch(
        self,
        requests: Sequence[RequestDescriptor],
        batch_size: int | None = None,
        label: str = "Assessing responses",
    ) -> list[httpx.Response | None]:
        """
        Send requests in batches, retrying failed ones individually.

        Each batch is fanned out in one blocking transport call. Any response
        in the batch that is not 200/201 gets exactly one ``send_one``-style
        retry; if that also fails the original response is kept.

        Args:
            requests: Requests to send.
            batch_size: Requests per batch. Uses the configured size if None.
            label: Prefix for progress messages.

        Returns:
            One entry per request, index-aligned with ``requests``.

        Raises:
            AbortRequestError: If a retried request hits an abort status.
        """
        size = batch_size or self._config.get_batch_size()
        batches = [requests[i : i + size] for i in range(0, len(requests), size)]
        self._delay = self._initial_delay

        all_responses: list[httpx.Response | None] = []
        for index, batch in enumerate(batches):
            self._progress.update(f"{label}: Sending batch {index + 1} of {len(batches)}.")
            responses = self._transport.fetch_all(batch)

            for position, (request, response) in enumerate(zip(batch, responses)):
                if is_success(response):
                    all_responses.append(response)
                    continue

                logger.warning(
                    "Batch %d, request %d failed with status %s. Retrying...",
                    index + 1,
                    position + 1,
                    response.status_code if response is not None else "no response",
                )
                retry_response = self._send_with_retries(request)
                all_responses.append(retry_response if retry_response is not None else response)

        return all_responses

    def _send_with_retries(
        self, request: RequestDescriptor, max_retries: int | None = None
    ) -> httpx.Response | None:
        retries = self._max_retries if max_retries is None else max_retries
        attempts = retries + 1

        for attempt in range(1, attempts + 1):
            try:
                response = self._transport.fetch(request)
                outcome = classify_status(response.status_code)

                if outcome is RequestOutcome.SUCCESS:
                    return response

                if outcome is RequestOutcome.ABORT:
                    logger.error(
                        "Request to %s failed with status %d. Check the API key and backend URL.",
                        request.url,
                        response.status_code,
                    )
                    raise AbortRequestError(response.status_code, request.url, response.text)

                if outcome is RequestOutcome.TERMINAL:
                    logger.warning(
                        "Non-retryable client error %d for %s: %s",
                        response.status_code,
                        request.url,
                        response.text,
                    )
                    return response

                logger.warning(
                    "Request to %s failed with status %d: %s. Attempt %d of %d.",
                    request.url,
                    response.status_code,
                    response.text,
                    attempt,
                    attempts,
                )

            except AbortRequestError:
                raise
            except (httpx.HTTPError, OSError) as e:
                logger.error(
                    "Network error during request to %s: %s. Attempt %d of %d.",
                    request.url,
                    e,
                    attempt,
                    attempts,
                )

            if attempt < attempts:
                self._sleep(self._delay)
                self._delay *= self._multiplier

        logger.error("All %d attempts failed for request to %s.", attempts, request.url)
        return None
