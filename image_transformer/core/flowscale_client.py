"""
Flowscale API Client

This module provides a clean abstraction layer for the Flowscale workflow HTTP API.
Handles queuing runs, polling their output, cancelling, and listing run history.
"""

import logging
import mimetypes
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from ..config import (
    API_KEY_HEADER,
    DEFAULT_TIMEOUTS,
    STATUS_SUCCESS,
    TERMINAL_GENERATION_STATUSES,
    FlowscaleEndpoints,
    TimeoutConfig,
)
from ..exceptions import CancelFailureError, RemoteFailureError, RemoteTimeoutError
from ..utils.image_utils import UploadFile

logger = logging.getLogger(__name__)


@dataclass
class QueuedRun:
    """Response from queuing a workflow run"""
    run_id: str
    output_names: List[str] = field(default_factory=list)


@dataclass
class RunResult:
    """Outcome of a finished (or finished-polling) run"""
    status: str
    run_id: str
    download_url: str = ""
    generation_status: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS and self.generation_status == STATUS_SUCCESS


@dataclass
class RunOutput:
    filename: str
    url: str


@dataclass
class Run:
    """A run record as listed by the service"""
    id: str
    status: str
    outputs: List[RunOutput] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Run":
        return cls(
            id=str(data.get("_id", "")),
            status=str(data.get("status", "")),
            outputs=[
                RunOutput(filename=str(o.get("filename", "")), url=str(o.get("url", "")))
                for o in data.get("outputs") or []
            ],
        )


@dataclass
class RunHistory:
    """Previously executed runs, newest first as returned by the service"""
    group_id: str = ""
    count: int = 0
    runs: List[Run] = field(default_factory=list)


class FlowscaleClient:
    """
    Client for interacting with the Flowscale HTTP API

    Provides methods for:
    - Queuing workflow runs (POST /api/v1/runs)
    - Polling run output (/api/v1/runs/output)
    - Cancelling runs (/api/v1/runs/{id}/cancel)
    - Listing run history (GET /api/v1/runs)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_config: Optional[TimeoutConfig] = None
    ):
        """
        Initialize Flowscale client

        Args:
            api_key: Flowscale API key, sent as X-API-KEY
            base_url: Flowscale API base URL
            timeout_config: Timeout configuration (uses DEFAULT_TIMEOUTS if None)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout_config = timeout_config or DEFAULT_TIMEOUTS
        self.session = requests.Session()
        self.session.headers.update({API_KEY_HEADER: api_key})

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        data: Optional[Dict] = None,
        files: Optional[Dict] = None,
        retry: bool = True
    ) -> requests.Response:
        """
        Make HTTP request with retry logic

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            params: URL query parameters
            data: Form fields for multipart POST requests
            files: File parts for multipart POST requests
            retry: Whether to retry on failure

        Returns:
            requests.Response object

        Raises:
            requests.RequestException: If request fails after all retries
        """
        url = f"{self.base_url}{endpoint}"
        max_retries = self.timeout_config.max_retries if retry else 1

        for attempt in range(max_retries):
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    files=files,
                    timeout=self.timeout_config.http_request
                )
                response.raise_for_status()
                return response

            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    logger.warning(
                        "%s %s failed (attempt %d/%d): %s",
                        method, endpoint, attempt + 1, max_retries, e
                    )
                    time.sleep(self.timeout_config.retry_delay)
                    continue
                raise

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteFailureError(f"Malformed response from {response.url}") from e
        if not isinstance(payload, dict):
            raise RemoteFailureError(f"Unexpected response shape from {response.url}")
        return payload

    def execute_workflow(
        self,
        workflow_id: str,
        inputs: Dict[str, Any],
        group_id: Optional[str] = None
    ) -> QueuedRun:
        """
        Queue a workflow run

        UploadFile values are uploaded as file parts with their detected MIME
        type, Path values with a type guessed from the name. Everything else
        is sent as a form field.

        Args:
            workflow_id: Remote workflow identifier
            inputs: Mapping from workflow input slot to value
            group_id: Optional run group for history filtering

        Returns:
            QueuedRun with run_id for tracking execution
        """
        params = {"workflow_id": workflow_id}
        if group_id:
            params["group_id"] = group_id

        form: Dict[str, str] = {}
        with ExitStack() as stack:
            files = {}
            for slot, value in inputs.items():
                if isinstance(value, UploadFile):
                    handle = stack.enter_context(open(value.path, "rb"))
                    files[slot] = (value.filename, handle, value.mime_type)
                elif isinstance(value, Path):
                    mime_type = mimetypes.guess_type(value.name)[0] or "application/octet-stream"
                    handle = stack.enter_context(open(value, "rb"))
                    files[slot] = (value.name, handle, mime_type)
                elif value is not None:
                    form[slot] = str(value)

            logger.info("Queuing workflow %s (%d file(s), %d field(s))", workflow_id, len(files), len(form))
            response = self._make_request(
                "POST",
                FlowscaleEndpoints.RUNS,
                params=params,
                data=form,
                files=files or None,
                retry=False
            )

        payload = self._json(response)
        data = payload.get("data") or {}
        run_id = data.get("run_id")
        if payload.get("status") != STATUS_SUCCESS or not run_id:
            raise RemoteFailureError(f"Workflow {workflow_id} was not queued: {payload}")

        return QueuedRun(
            run_id=str(run_id),
            output_names=list(data.get("output_names") or [])
        )

    def get_output(self, filename: str, run_id: str = "") -> Optional[RunResult]:
        """
        Query the output endpoint for one named output

        Response structure:
        {
          "status": "success",
          "data": {"download_url": "...", "generation_status": "success"}
        }

        Returns:
            RunResult, or None if the output is not available yet
        """
        response = self._make_request(
            "GET",
            FlowscaleEndpoints.RUN_OUTPUT,
            params={"filename": filename}
        )
        if response.status_code == 204 or not response.content:
            return None

        payload = self._json(response)
        data = payload.get("data") or {}
        return RunResult(
            status=str(payload.get("status", "")),
            run_id=run_id,
            download_url=str(data.get("download_url") or ""),
            generation_status=str(data.get("generation_status") or "")
        )

    def wait_for_run(
        self,
        queued: QueuedRun,
        timeout: Optional[float] = None,
        stop_event: Optional[threading.Event] = None
    ) -> RunResult:
        """
        Poll the run's first output until it reaches a terminal status (blocking)

        Args:
            queued: Run returned by execute_workflow
            timeout: Max wait time in seconds (uses config default if None)
            stop_event: Set by another thread to abandon polling

        Returns:
            RunResult for the run

        Raises:
            RemoteTimeoutError: If the deadline passes first
            RemoteFailureError: If the run has no outputs to poll, or polling
                was stopped through stop_event
        """
        if not queued.output_names:
            raise RemoteFailureError(f"Run {queued.run_id} reported no outputs")

        timeout = timeout or self.timeout_config.run_execution
        deadline = time.time() + timeout
        poll_interval = self.timeout_config.run_poll_interval
        output_name = queued.output_names[0]

        while time.time() < deadline:
            if stop_event is not None and stop_event.is_set():
                raise RemoteFailureError(f"Stopped waiting for run {queued.run_id}")

            result = self.get_output(output_name, run_id=queued.run_id)
            if result is not None and result.generation_status in TERMINAL_GENERATION_STATUSES:
                logger.info(
                    "Run %s finished: status=%s generation_status=%s",
                    queued.run_id, result.status, result.generation_status
                )
                return result

            if stop_event is not None:
                stop_event.wait(poll_interval)
            else:
                time.sleep(poll_interval)

        raise RemoteTimeoutError(f"Workflow execution timed out after {timeout:g}s")

    def execute_workflow_async(
        self,
        workflow_id: str,
        inputs: Dict[str, Any],
        group_id: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> RunResult:
        """Queue a run and block until the service finishes it"""
        queued = self.execute_workflow(workflow_id, inputs, group_id)
        return self.wait_for_run(queued, timeout)

    def cancel_run(self, run_id: str) -> None:
        """
        Ask the service to cancel a run

        Raises:
            CancelFailureError: If the request fails
        """
        try:
            self._make_request("POST", FlowscaleEndpoints.get_cancel_url(run_id), retry=False)
        except requests.RequestException as e:
            raise CancelFailureError(f"Could not cancel run {run_id}: {e}") from e
        logger.info("Cancel requested for run %s", run_id)

    def get_run(self, run_id: str) -> Run:
        """Fetch a single run record"""
        response = self._make_request("GET", FlowscaleEndpoints.get_run_url(run_id))
        payload = self._json(response)
        return Run.from_dict(payload.get("data") or {})

    def get_runs(self, group_id: Optional[str] = None) -> RunHistory:
        """
        List previously executed runs

        Response structure:
        {
          "status": "success",
          "data": {
            "group_id": "...",
            "count": 2,
            "runs": [{"_id": "...", "status": "...", "outputs": [{"filename": "...", "url": "..."}]}]
          }
        }
        """
        params = {"group_id": group_id} if group_id else None
        response = self._make_request("GET", FlowscaleEndpoints.RUNS, params=params)
        payload = self._json(response)
        data = payload.get("data") or {}
        runs = [Run.from_dict(item) for item in data.get("runs") or []]
        return RunHistory(
            group_id=str(data.get("group_id") or ""),
            count=int(data.get("count") or len(runs)),
            runs=runs
        )

    def close(self):
        """Close the HTTP session"""
        self.session.close()
