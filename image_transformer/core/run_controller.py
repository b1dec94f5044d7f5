"""
Run Lifecycle Controller

This module owns the client-side state of a single workflow run:
- Validating the pending input
- Queuing the run and waiting for it through the Flowscale client
- Driving the cosmetic progress ticker
- Cancelling, and discarding results that arrive after a cancel
- Refreshing run history after a successful run

One run at a time: submitting while a run is in flight is rejected.
"""

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Set

import requests

from ..config import (
    DEFAULT_IMAGE_SLOT,
    DEFAULT_PROMPT_SLOT,
    MESSAGE_CANCELLED,
    MESSAGE_FAILURE,
    MESSAGE_NO_FILE,
    MESSAGE_SUCCESS,
    MESSAGE_TIMEOUT,
    ProgressConfig,
)
from ..exceptions import (
    InvalidInputError,
    RemoteFailureError,
    RemoteTimeoutError,
    RunInProgressError,
)
from ..utils.image_utils import PendingInput
from .flowscale_client import FlowscaleClient, QueuedRun, RunHistory, RunResult
from .progress_ticker import ProgressTicker

logger = logging.getLogger(__name__)


class RunState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_RESULT = "awaiting_result"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RunSnapshot:
    """Read-only view of the controller for the presentation layer"""
    state: RunState
    progress: int
    output_image_url: str
    message: str
    active_run_id: Optional[str]

    @property
    def is_busy(self) -> bool:
        return self.state is RunState.AWAITING_RESULT


def is_timeout(error: BaseException) -> bool:
    """Whether a failure should be reported as a timeout"""
    if isinstance(error, (RemoteTimeoutError, requests.Timeout)):
        return True
    return "timed out" in str(error).lower()


class RunController:
    """
    State machine around one remote workflow run

    States: IDLE -> AWAITING_RESULT -> SUCCEEDED | FAILED | CANCELLED.
    The three resting states accept a new submit().
    """

    def __init__(
        self,
        client: FlowscaleClient,
        workflow_id: str,
        image_slot: str = DEFAULT_IMAGE_SLOT,
        prompt_slot: str = DEFAULT_PROMPT_SLOT,
        group_id: Optional[str] = None,
        progress_config: Optional[ProgressConfig] = None
    ):
        """
        Initialize run controller

        Args:
            client: Flowscale API client (or any object with the same methods)
            workflow_id: Remote workflow to execute
            image_slot: Workflow input slot receiving the image
            prompt_slot: Workflow input slot receiving the prompt text
            group_id: Optional run group for queuing and history
            progress_config: Cosmetic progress settings
        """
        self.client = client
        self.workflow_id = workflow_id
        self.image_slot = image_slot
        self.prompt_slot = prompt_slot
        self.group_id = group_id

        self.state = RunState.IDLE
        self.output_image_url = ""
        self.message = ""
        self.active_run_id: Optional[str] = None
        self.history = RunHistory()

        self._ticker = ProgressTicker(progress_config)
        self._progress = 0
        # Bumped on every submit and cancel; continuations holding an older
        # value must not touch state.
        self._episode = 0
        # Signals for the in-flight episode: wakes submit() and stops polling
        self._cancelled: Optional[asyncio.Event] = None
        self._stop_polling: Optional[threading.Event] = None
        self._background: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def progress(self) -> int:
        if self.state is RunState.AWAITING_RESULT:
            return self._ticker.value
        return self._progress

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            state=self.state,
            progress=self.progress,
            output_image_url=self.output_image_url,
            message=self.message,
            active_run_id=self.active_run_id,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def submit(self, pending_input: Optional[PendingInput]) -> RunState:
        """
        Start a run and wait for it to settle

        Remote errors never escape: they end in FAILED with a user message.
        Returns as soon as cancel() runs, leaving the worker thread to wind
        down on its own.

        Raises:
            InvalidInputError: No file selected (state unchanged)
            RunInProgressError: A run is already in flight (state unchanged)
        """
        if pending_input is None or pending_input.file is None:
            raise InvalidInputError(MESSAGE_NO_FILE)
        if self.state is RunState.AWAITING_RESULT:
            raise RunInProgressError("A generation is already running")

        self._episode += 1
        episode = self._episode
        cancelled = self._cancelled = asyncio.Event()
        stop_polling = self._stop_polling = threading.Event()
        self._enter_awaiting()

        inputs = {
            self.image_slot: pending_input.file,
            self.prompt_slot: pending_input.prompt_text,
        }

        try:
            queueing = asyncio.ensure_future(asyncio.to_thread(
                self.client.execute_workflow, self.workflow_id, inputs, self.group_id
            ))
            if not await self._finished_before_cancel(queueing, cancelled):
                # Still queueing; cancel the run remotely once its id exists
                queueing.add_done_callback(self._cancel_once_queued)
                return self.state

            queued: QueuedRun = queueing.result()
            if episode != self._episode:
                logger.warning("Run %s queued after cancel; cancelling it remotely", queued.run_id)
                await self._cancel_remote(queued.run_id)
                return self.state

            self.active_run_id = queued.run_id
            logger.info("Run %s queued for workflow %s", queued.run_id, self.workflow_id)

            waiting = asyncio.ensure_future(asyncio.to_thread(
                self.client.wait_for_run, queued, None, stop_polling
            ))
            if not await self._finished_before_cancel(waiting, cancelled):
                waiting.add_done_callback(self._drop_abandoned)
                return self.state

            result: RunResult = waiting.result()
        except Exception as e:
            if episode != self._episode:
                logger.warning("Discarding failure of superseded run: %s", e)
                return self.state
            logger.error("Error processing image: %s", e, exc_info=True)
            self._enter_failed(e)
            return self.state

        if episode != self._episode:
            logger.warning("Discarding late result for run %s (status=%s)", result.run_id, result.status)
            return self.state

        if not result.succeeded:
            self._enter_failed(RemoteFailureError(
                f"Generation failed: status={result.status} generation_status={result.generation_status}"
            ))
            return self.state

        self._enter_succeeded(result)
        await self.refresh_history()
        return self.state

    async def cancel(self) -> RunState:
        """
        Cancel the in-flight run, best effort

        No-op unless a run is in flight. Local state always ends CANCELLED,
        even if the cancel request fails.
        """
        if self.state is not RunState.AWAITING_RESULT:
            return self.state

        run_id = self.active_run_id
        self._episode += 1
        self._release_episode()
        self._ticker.stop()
        self._progress = 0
        self.active_run_id = None
        self.state = RunState.CANCELLED
        self.message = MESSAGE_CANCELLED
        logger.info("Run %s cancelled locally", run_id or "<queueing>")

        # Still queueing: submit() cancels the id once it arrives.
        if run_id:
            await self._cancel_remote(run_id)
        return self.state

    async def refresh_history(self) -> RunHistory:
        """Replace the run history with the service's current list"""
        try:
            self.history = await asyncio.to_thread(self.client.get_runs, self.group_id)
        except Exception as e:
            logger.error("Error fetching past runs: %s", e)
        return self.history

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _enter_awaiting(self) -> None:
        self.state = RunState.AWAITING_RESULT
        self.output_image_url = ""
        self.message = ""
        self.active_run_id = None
        self._progress = 0
        self._ticker.start()

    def _enter_succeeded(self, result: RunResult) -> None:
        self._ticker.stop()
        self._progress = 100
        self.output_image_url = result.download_url
        self.active_run_id = None
        self.state = RunState.SUCCEEDED
        self.message = MESSAGE_SUCCESS
        logger.info("Run %s succeeded: %s", result.run_id, result.download_url)

    def _enter_failed(self, error: BaseException) -> None:
        self._ticker.stop()
        self._progress = self._ticker.value
        self.active_run_id = None
        self.state = RunState.FAILED
        self.message = MESSAGE_TIMEOUT if is_timeout(error) else MESSAGE_FAILURE

    async def _cancel_remote(self, run_id: str) -> None:
        try:
            await asyncio.to_thread(self.client.cancel_run, run_id)
        except Exception as e:
            logger.warning("Error cancelling run %s: %s", run_id, e)

    # ------------------------------------------------------------------
    # Cancellation plumbing
    # ------------------------------------------------------------------

    def _release_episode(self) -> None:
        """Wake the pending submit() and tell its worker thread to stop polling"""
        if self._cancelled is not None:
            self._cancelled.set()
        if self._stop_polling is not None:
            self._stop_polling.set()

    @staticmethod
    async def _finished_before_cancel(work: asyncio.Future, cancelled: asyncio.Event) -> bool:
        """Wait for work or the episode's cancel signal, whichever comes first"""
        waiter = asyncio.ensure_future(cancelled.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        return work.done()

    def _cancel_once_queued(self, queueing: asyncio.Future) -> None:
        if queueing.cancelled():
            return
        if queueing.exception() is not None:
            logger.warning("Queueing of cancelled run failed: %s", queueing.exception())
            return
        run_id = queueing.result().run_id
        logger.warning("Run %s queued after cancel; cancelling it remotely", run_id)
        task = asyncio.ensure_future(self._cancel_remote(run_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    def _drop_abandoned(waiting: asyncio.Future) -> None:
        if waiting.cancelled():
            return
        if waiting.exception() is not None:
            logger.info("Polling for cancelled run ended: %s", waiting.exception())
        else:
            result = waiting.result()
            logger.warning("Discarding late result for run %s (status=%s)", result.run_id, result.status)
