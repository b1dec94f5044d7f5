# tests/conftest.py
from __future__ import annotations

import asyncio
import sys
import threading
import time
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

TESTS_DIR = Path(__file__).resolve().parent
REPO_ROOT = TESTS_DIR.parent

# Make "import image_transformer" work without an editable install
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from image_transformer.config import ProgressConfig  # noqa: E402
from image_transformer.core.flowscale_client import (  # noqa: E402
    QueuedRun,
    Run,
    RunHistory,
    RunOutput,
    RunResult,
)
from image_transformer.core.run_controller import RunController  # noqa: E402
from image_transformer.exceptions import RemoteFailureError  # noqa: E402
from image_transformer.utils.image_utils import build_pending_input  # noqa: E402


class FakeFlowscaleClient:
    """
    Stand-in for FlowscaleClient with the same blocking method signatures.

    Clear ``queue_gate`` or ``result_gate`` to hold the matching call until the
    test sets the event again.
    """

    def __init__(
        self,
        result: Optional[RunResult] = None,
        queue_error: Optional[Exception] = None,
        wait_error: Optional[Exception] = None,
        cancel_error: Optional[Exception] = None,
        history: Optional[RunHistory] = None,
    ):
        self.result = result or RunResult(
            status="success",
            run_id="run-1",
            download_url="https://x/out.png",
            generation_status="success",
        )
        self.queue_error = queue_error
        self.wait_error = wait_error
        self.cancel_error = cancel_error
        self.history = history or RunHistory(
            group_id="group-1",
            count=1,
            runs=[Run(id="old-1", status="completed", outputs=[RunOutput(filename="old.png", url="https://x/old.png")])],
        )
        self.queue_gate = threading.Event()
        self.queue_gate.set()
        self.result_gate = threading.Event()
        self.result_gate.set()
        self.calls = []
        self.stop_events = []

    def count(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)

    def execute_workflow(self, workflow_id, inputs, group_id=None):
        self.calls.append(("execute_workflow", (workflow_id, dict(inputs), group_id)))
        self.queue_gate.wait(5)
        if self.queue_error is not None:
            raise self.queue_error
        return QueuedRun(run_id=self.result.run_id, output_names=["out.png"])

    def wait_for_run(self, queued, timeout=None, stop_event=None):
        self.calls.append(("wait_for_run", (queued.run_id,)))
        self.stop_events.append(stop_event)
        deadline = time.monotonic() + 5
        while not self.result_gate.wait(0.01) and time.monotonic() < deadline:
            if stop_event is not None and stop_event.is_set():
                raise RemoteFailureError(f"Stopped waiting for run {queued.run_id}")
        if self.wait_error is not None:
            raise self.wait_error
        return self.result

    def cancel_run(self, run_id):
        self.calls.append(("cancel_run", (run_id,)))
        if self.cancel_error is not None:
            raise self.cancel_error

    def get_runs(self, group_id=None):
        self.calls.append(("get_runs", (group_id,)))
        return self.history


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() holds"""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_client() -> FakeFlowscaleClient:
    return FakeFlowscaleClient()


@pytest.fixture
def fast_progress() -> ProgressConfig:
    return ProgressConfig(step=5, interval=0.001, ceiling=95)


@pytest.fixture
def make_controller(fast_progress):
    def _make(client) -> RunController:
        return RunController(
            client,
            "wf-123",
            image_slot="image_slot",
            prompt_slot="prompt_slot",
            progress_config=fast_progress,
        )

    return _make


@pytest.fixture
def png_path(tmp_path) -> Path:
    path = tmp_path / "valid.png"
    Image.new("RGB", (16, 16), color=(200, 30, 30)).save(path, format="PNG")
    return path


@pytest.fixture
def pending_input(png_path):
    return build_pending_input(png_path, "a cat")
