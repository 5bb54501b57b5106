"""
Trigger controller for cascade builds.

Turns file-change notifications into pipeline runs with at most one run
active at a time. The controller is a two-state machine:

    IDLE     a change starts a run immediately (state -> RUNNING)
    RUNNING  a change sets the single pending-rerun flag; any number of
             further changes before the run ends collapse into that one rerun

When a run ends the pending rerun (if any) starts at once against the chain
as it stands then; otherwise the controller returns to IDLE. A failed run
never stops watching. There is no cancellation of an in-flight run.
"""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..interrupt_utils import handle_keyboard_interrupt_properly
from .file_watcher import DEFAULT_POLL_INTERVAL, FileWatcher
from .pipeline_runner import PipelineRunner, RunResult
from .stage_chain import StageChain


class ControllerState(Enum):
    """Trigger controller state."""

    IDLE = "idle"
    RUNNING = "running"


class TriggerController:
    """
    Serializes cascade runs triggered by file changes.

    Example usage:
        controller = TriggerController(chain, runner, on_result=report)
        controller.start()
        try:
            while True:
                time.sleep(1)
        finally:
            controller.stop()
    """

    def __init__(
        self,
        chain: StageChain,
        runner: PipelineRunner,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        resume_from_changed: bool = False,
        on_result: Optional[Callable[[RunResult], None]] = None
    ):
        """
        Initialize trigger controller.

        Args:
            chain: Chain whose sources are watched (every stage after the seed)
            runner: Pipeline runner executing the cascade
            poll_interval: Seconds between file-system polls
            resume_from_changed: Start runs at the earliest changed stage
                instead of rebuilding from stage 1
            on_result: Called on the worker thread with every run result
        """
        self.chain = chain
        self.runner = runner
        self.resume_from_changed = resume_from_changed
        self.on_result = on_result

        self.watcher = FileWatcher(
            [stage.source_path for stage in chain.watched_stages()],
            on_change=self.notify_change,
            poll_interval=poll_interval,
        )

        self._condition = threading.Condition()
        self._state = ControllerState.IDLE
        self._run_requested = False
        self._rerun_pending = False
        self._stopping = False
        self._next_trigger: Optional[Path] = None
        self._next_start = 1
        self._pending_trigger: Optional[Path] = None
        self._pending_start = 1
        self._worker: Optional[threading.Thread] = None

        self.runs_started = 0
        self.events_received = 0
        self.last_result: Optional[RunResult] = None

    @property
    def state(self) -> ControllerState:
        with self._condition:
            return self._state

    @property
    def rerun_pending(self) -> bool:
        with self._condition:
            return self._rerun_pending

    def start(self) -> None:
        """Start the run worker and begin watching chain sources."""
        with self._condition:
            self._stopping = False
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._worker_loop, name="metax-cascade-runner", daemon=True
                )
                self._worker.start()
        self.watcher.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop watching and shut the worker down.

        An in-flight run is allowed to finish; a pending rerun is dropped.
        """
        self.watcher.stop(timeout)
        with self._condition:
            self._stopping = True
            if self._rerun_pending:
                logging.info("Dropping pending cascade rerun on shutdown")
            self._rerun_pending = False
            self._condition.notify_all()
            worker = self._worker
        if worker is not None:
            worker.join(timeout)
        with self._condition:
            if worker is None or not worker.is_alive():
                self._worker = None

    def notify_change(self, path: Optional[Path] = None) -> bool:
        """
        Handle a file-change notification.

        Args:
            path: Changed file (None for a manual trigger)

        Returns:
            True if a run was started, False if the change was queued behind
            (or coalesced into) an already pending rerun
        """
        start_index = self._start_index_for(path)

        with self._condition:
            self.events_received += 1
            if self._stopping:
                return False

            if self._state is ControllerState.IDLE:
                self._state = ControllerState.RUNNING
                self._run_requested = True
                self._next_trigger = path
                self._next_start = start_index
                self._condition.notify_all()
                return True

            if self._rerun_pending:
                self._pending_start = min(self._pending_start, start_index)
                logging.debug(f"Change to {path} coalesced into pending rerun")
            else:
                self._rerun_pending = True
                self._pending_start = start_index
                logging.info("Cascade run in progress, rerun queued")
            self._pending_trigger = path
            return False

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is active or requested. Returns False on timeout."""
        with self._condition:
            return self._condition.wait_for(
                lambda: self._state is ControllerState.IDLE and not self._run_requested,
                timeout,
            )

    def _start_index_for(self, path: Optional[Path]) -> int:
        if not self.resume_from_changed:
            return 1
        return self.runner.resume_index_for(path)

    def _worker_loop(self) -> None:
        while True:
            with self._condition:
                while not self._run_requested and not self._stopping:
                    self._condition.wait()
                if not self._run_requested:
                    return
                self._run_requested = False
                trigger = self._next_trigger
                start_index = self._next_start
                self.runs_started += 1

            if not self._run_once(trigger, start_index):
                return

            with self._condition:
                if self._rerun_pending and not self._stopping:
                    self._rerun_pending = False
                    self._run_requested = True
                    self._next_trigger = self._pending_trigger
                    self._next_start = self._pending_start
                    logging.info("Starting queued cascade rerun")
                else:
                    self._state = ControllerState.IDLE
                self._condition.notify_all()

    def _run_once(self, trigger: Optional[Path], start_index: int) -> bool:
        """Execute one run. Returns False when the worker must exit."""
        if trigger is not None:
            logging.info(f"Change in {trigger.name}, running cascade")

        try:
            result = self.runner.execute(
                self.chain.snapshot(), start_index=start_index, trigger=trigger
            )
        except KeyboardInterrupt as ke:
            with self._condition:
                self._stopping = True
                self._state = ControllerState.IDLE
                self._condition.notify_all()
            handle_keyboard_interrupt_properly(ke)
            return False
        except Exception as e:
            logging.error(f"Unexpected error during cascade run: {e}", exc_info=True)
            return True

        self.last_result = result
        if self.on_result is not None:
            try:
                self.on_result(result)
            except KeyboardInterrupt as ke:
                handle_keyboard_interrupt_properly(ke)
            except Exception as e:
                logging.error(f"Run result handler failed: {e}", exc_info=True)
        return True
