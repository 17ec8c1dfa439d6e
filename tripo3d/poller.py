"""
Wait for a task to reach a terminal status.

The poller is a small state machine:

    WAITING --(terminal status seen)--> TERMINAL
    WAITING --(deadline passed)-------> TIMED_OUT

Time and task fetching are injected, so the loop can be driven by a fake
clock in tests without real sleeps.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Union

from tripo3d.errors import HttpError, NetworkFailure, TaskTimeout, ValidationFailure
from tripo3d.schema import Task, TaskStatus


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_WAIT_TIMEOUT = 15 * 60.0

FetchTask = Callable[[str], Awaitable[Task]]


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class AsyncioClock:
    """Real time: time.monotonic plus asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ProgressListener(Protocol):
    def on_progress(self, task: Task) -> None: ...


ProgressSink = Union[ProgressListener, Callable[[Task], None]]


class LoggingProgressListener:
    """Report each poll through the logging module."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def on_progress(self, task: Task) -> None:
        self.log.log(
            self.level,
            "Task %s status: %s, progress: %d%%",
            task.task_id,
            task.raw_status or task.status.value,
            task.progress,
        )


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many consecutive transient errors a wait tolerates.

    Only NetworkFailure and 5xx HttpError count as transient. The default
    tolerates none, so the first error propagates.
    """
    max_retries: int = 0
    backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 30.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.backoff * self.multiplier ** (attempt - 1), self.max_backoff)

    @staticmethod
    def is_transient(exc: Exception) -> bool:
        if isinstance(exc, NetworkFailure):
            return True
        return isinstance(exc, HttpError) and exc.status >= 500


class PollState(str, Enum):
    WAITING = "waiting"
    TERMINAL = "terminal"
    TIMED_OUT = "timed_out"


# Order along queued -> running -> finished; unknown never counts as a step back
_STATUS_RANK = {TaskStatus.QUEUED: 0, TaskStatus.RUNNING: 1, TaskStatus.SUCCESS: 2, TaskStatus.FAILED: 2}


def _is_regression(before: TaskStatus, after: TaskStatus) -> bool:
    if before not in _STATUS_RANK or after not in _STATUS_RANK:
        return False
    return _STATUS_RANK[after] < _STATUS_RANK[before]


def _notify(sink: Optional[ProgressSink], task: Task) -> None:
    if sink is None:
        return
    on_progress = getattr(sink, "on_progress", None)
    if on_progress is not None:
        on_progress(task)
    else:
        sink(task)


class TaskPoller:
    """Polls one task until it finishes or the deadline passes."""

    def __init__(
        self,
        fetch: FetchTask,
        task_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: Optional[float] = DEFAULT_WAIT_TIMEOUT,
        progress: Optional[ProgressSink] = None,
        retry: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        if not task_id:
            raise ValidationFailure("task_id must not be empty")
        if poll_interval <= 0:
            raise ValidationFailure("poll_interval must be positive")
        if timeout is not None and timeout <= 0:
            raise ValidationFailure("timeout must be positive")

        self.fetch = fetch
        self.task_id = task_id
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.progress = progress
        self.retry = retry or RetryPolicy()
        self.clock = clock or AsyncioClock()

        self.state = PollState.WAITING
        self.last_task: Optional[Task] = None
        self.polls = 0
        self._started_at: Optional[float] = None

    @property
    def last_status(self) -> Optional[TaskStatus]:
        return self.last_task.status if self.last_task is not None else None

    def _remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when waiting forever."""
        if self.timeout is None or self._started_at is None:
            return None
        return self.timeout - (self.clock.monotonic() - self._started_at)

    def _deadline_passed(self) -> bool:
        remaining = self._remaining()
        return remaining is not None and remaining <= 0

    def _clip(self, delay: float) -> float:
        # Never sleep past the deadline
        remaining = self._remaining()
        if remaining is None:
            return delay
        return max(0.0, min(delay, remaining))

    async def _fetch_with_retry(self) -> Task:
        attempt = 0
        while True:
            try:
                return await self.fetch(self.task_id)
            except (NetworkFailure, HttpError) as exc:
                attempt += 1
                if not self.retry.is_transient(exc) or attempt > self.retry.max_retries:
                    raise
                if self._deadline_passed():
                    self._time_out()
                delay = self._clip(self.retry.delay(attempt))
                logger.warning(
                    "Polling task %s failed (%s), retry %d/%d in %.1fs",
                    self.task_id, exc, attempt, self.retry.max_retries, delay,
                )
                await self.clock.sleep(delay)
                if self._deadline_passed():
                    self._time_out()

    def _time_out(self) -> None:
        self.state = PollState.TIMED_OUT
        raise TaskTimeout(self.task_id, self.last_status, self.timeout)

    async def _advance(self) -> Task:
        if self.state is PollState.TIMED_OUT:
            raise TaskTimeout(self.task_id, self.last_status, self.timeout)
        if self.state is PollState.TERMINAL and self.last_task is not None:
            return self.last_task
        if self._started_at is None:
            self._started_at = self.clock.monotonic()
        elif self._deadline_passed():
            self._time_out()

        task = await self._fetch_with_retry()
        self.polls += 1

        previous = self.last_task
        if previous is not None and _is_regression(previous.status, task.status):
            logger.warning(
                "Task %s went from %s back to %s",
                self.task_id, previous.status.value, task.status.value,
            )
        if previous is None or previous.status != task.status:
            logger.debug("Task %s status: %s", self.task_id, task.status.value)
        self.last_task = task
        _notify(self.progress, task)

        # A snapshot that arrives after the deadline does not count, terminal or not
        if self._deadline_passed():
            self._time_out()
        if task.status.is_terminal:
            self.state = PollState.TERMINAL
        return task

    async def step(self) -> PollState:
        """Issue one status query and advance the state machine."""
        await self._advance()
        return self.state

    async def wait(self) -> Task:
        """
        Poll until the task is terminal.

        Returns the final snapshot, including failed tasks. Raises TaskTimeout
        if the deadline passes first; no poll is issued after the deadline.
        """
        while True:
            task = await self._advance()
            if self.state is PollState.TERMINAL:
                return task
            await self.clock.sleep(self._clip(self.poll_interval))
