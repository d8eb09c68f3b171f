# Copyright (c) Syntropy Systems
"""HTTP client for talking to a codeduel server."""
from __future__ import annotations

import json as jsonlib
import time
from collections.abc import Iterator
from typing import TYPE_CHECKING, Optional, TypeVar, cast, overload

import httpx
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from codeduel.models.api import (
    AttemptHistoryResponse,
    ErrorResponse,
    HealthResponse,
    JobCancelResponse,
    JobCreateResponse,
    JobListResponse,
    JobResponse,
)
from codeduel.progress import EventType, ProgressEvent

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from codeduel.models.base import JSONObject, JSONValue

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)

EVENT_TYPES: frozenset[str] = frozenset(
    {"progress", "result", "refinement_result", "complete", "error"}
)


class CodeduelClientError(Exception):
    """Error from codeduel server communication."""


def parse_sse_lines(lines: Iterator[str]) -> Iterator[ProgressEvent]:
    """Decode Server-Sent Event frames into progress events.

    Frames with an unknown event name or a non-object payload are skipped.
    """
    event_name: Optional[str] = None
    data_lines: list[str] = []
    for line in lines:
        if line.startswith("event:"):
            event_name = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip())
        elif not line.strip():
            if event_name in EVENT_TYPES and data_lines:
                try:
                    data = jsonlib.loads("\n".join(data_lines))
                except ValueError:
                    data = None
                if isinstance(data, dict):
                    yield ProgressEvent(
                        type=cast("EventType", event_name),
                        data=cast("JSONObject", data),
                    )
            event_name = None
            data_lines = []


class CodeduelClient:
    """HTTP client for submitting and watching competitions."""

    server_url: str
    timeout: float

    def __init__(self, server_url: str, timeout: float = 30.0) -> None:
        """Initialize the client.

        Args:
            server_url: Base URL of the codeduel server (e.g., "http://localhost:8080")
            timeout: Request timeout in seconds

        """
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        """Enter the client context and return self."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the client context and close the HTTP client."""
        self.close()

    @staticmethod
    def _error_detail(error: httpx.HTTPStatusError) -> str:
        try:
            return ErrorResponse.model_validate(error.response.json()).detail
        except (ValidationError, ValueError):
            return str(error)

    @overload
    def _request(
        self,
        method: str,
        path: str,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, object] | None = None,
        *,
        response_model: type[ResponseModel],
    ) -> ResponseModel:
        ...

    @overload
    def _request(
        self,
        method: str,
        path: str,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, object] | None = None,
        *,
        response_model: None = None,
    ) -> dict[str, JSONValue]:
        ...

    def _request(
        self,
        method: str,
        path: str,
        json: Mapping[str, object] | None = None,
        params: Mapping[str, object] | None = None,
        *,
        response_model: type[ResponseModel] | None = None,
    ) -> ResponseModel | dict[str, JSONValue]:
        """Make an HTTP request to the server."""
        url = f"{self.server_url}{path}"
        try:
            response = self._client.request(method, url, json=json, params=params)
            _ = response.raise_for_status()
            data = response.json()
            if response_model is None:
                return cast("dict[str, JSONValue]", data)
            return response_model.model_validate(data)
        except httpx.HTTPStatusError as e:
            msg = f"Server error: {self._error_detail(e)}"
            raise CodeduelClientError(msg) from e
        except httpx.RequestError as e:
            msg = f"Connection error: {e}"
            raise CodeduelClientError(msg) from e

    @staticmethod
    def _compete_body(
        challenge: str,
        models: Optional[list[str]],
        max_attempts: Optional[int],
        refinement: bool,
        debug: bool,
        stream: bool,
    ) -> dict[str, object]:
        body: dict[str, object] = {
            "challenge": challenge,
            "refinement": refinement,
            "debug": debug,
            "stream": stream,
        }
        if models:
            body["models"] = models
        if max_attempts is not None:
            body["max_attempts"] = max_attempts
        return body

    # --- Competition Operations ---

    def submit(
        self,
        challenge: str,
        models: Optional[list[str]] = None,
        max_attempts: Optional[int] = None,
        refinement: bool = False,
        debug: bool = False,
    ) -> JobCreateResponse:
        """Submit a competition without streaming.

        Args:
            challenge: Challenge identifier
            models: Competing models (server default when omitted)
            max_attempts: Attempts per model (server default when omitted)
            refinement: Run a refinement round after the first pass
            debug: Keep attempt history and the workspace

        Returns:
            Job creation response with the new job id

        """
        return self._request(
            "POST",
            "/api/v1/compete",
            json=self._compete_body(challenge, models, max_attempts, refinement, debug, False),
            response_model=JobCreateResponse,
        )

    def compete(
        self,
        challenge: str,
        models: Optional[list[str]] = None,
        max_attempts: Optional[int] = None,
        refinement: bool = False,
        debug: bool = False,
    ) -> Iterator[ProgressEvent]:
        """Submit a competition and yield its progress events as they arrive.

        The stream ends after a ``complete`` or ``error`` event.
        """
        url = f"{self.server_url}/api/v1/compete"
        body = self._compete_body(challenge, models, max_attempts, refinement, debug, True)
        try:
            with self._client.stream("POST", url, json=body, timeout=None) as response:
                if response.is_error:
                    _ = response.read()
                _ = response.raise_for_status()
                yield from parse_sse_lines(response.iter_lines())
        except httpx.HTTPStatusError as e:
            msg = f"Server error: {self._error_detail(e)}"
            raise CodeduelClientError(msg) from e
        except httpx.RequestError as e:
            msg = f"Connection error: {e}"
            raise CodeduelClientError(msg) from e

    # --- Job Operations ---

    def get_job(self, job_id: str) -> JobResponse | None:
        """Get job details.

        Args:
            job_id: Job ID

        Returns:
            Job or None if not found

        """
        try:
            return self._request("GET", f"/api/v1/jobs/{job_id}", response_model=JobResponse)
        except CodeduelClientError:
            return None

    def list_jobs(self) -> list[JobResponse]:
        """List every job the server still retains, newest first."""
        result = self._request("GET", "/api/v1/jobs", response_model=JobListResponse)
        return result.jobs

    def cancel_job(self, job_id: str) -> JobCancelResponse:
        """Cancel a queued or running job.

        Args:
            job_id: Job ID

        Returns:
            Cancellation response

        """
        return self._request(
            "POST",
            f"/api/v1/jobs/{job_id}/cancel",
            response_model=JobCancelResponse,
        )

    def get_attempts(self, job_id: str) -> AttemptHistoryResponse:
        """Get the attempt history of a job submitted in debug mode."""
        return self._request(
            "GET",
            f"/api/v1/jobs/{job_id}/attempts",
            response_model=AttemptHistoryResponse,
        )

    def health(self) -> HealthResponse:
        """Get server health and job counts."""
        return self._request("GET", "/health", response_model=HealthResponse)

    # --- Convenience Methods ---

    def wait_for_job(
        self,
        job_id: str,
        poll_interval: float = 1.0,
        timeout: float | None = None,
    ) -> JobResponse:
        """Wait for a job to finish.

        Polls the job status until it's no longer queued or running.

        Raises:
            TimeoutError: If timeout is reached before job finishes
            CodeduelClientError: If job not found or server error

        """
        start = time.time()
        while True:
            job = self.get_job(job_id)
            if job is None:
                msg = f"Job {job_id} not found"
                raise CodeduelClientError(msg)

            if job.is_terminal:
                return job

            if timeout is not None and (time.time() - start) > timeout:
                msg = f"Job {job_id} did not finish within {timeout}s"
                raise TimeoutError(msg)

            time.sleep(poll_interval)
