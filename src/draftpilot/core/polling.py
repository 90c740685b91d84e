"""Generic status polling for long-running remote tasks.

``poll`` is the bare loop; ``PollingTaskRunner`` owns one logical stream
(compatibility scan, section analysis, ...) and guarantees that at most one
poller is live for it at any time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

CheckFn = Callable[[str], Awaitable[Any]]
OutcomeCallback = Callable[["PollOutcome"], None]


class PollOutcomeKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class PollPolicy:
    interval_ms: int
    timeout_ms: int
    is_complete: Callable[[Any], bool] = bool
    failure_of: Callable[[Any], str | None] = lambda result: None


@dataclass(slots=True)
class PollOutcome:
    kind: PollOutcomeKind
    task_id: str
    result: Any = None
    error: str | None = None
    attempts: int = 0
    elapsed_ms: int = 0

    @property
    def is_terminal_success(self) -> bool:
        return self.kind is PollOutcomeKind.COMPLETED


async def poll(task_id: str, check_fn: CheckFn, policy: PollPolicy) -> PollOutcome:
    loop = asyncio.get_running_loop()
    started = loop.time()
    attempts = 0

    while True:
        attempts += 1
        try:
            result = await check_fn(task_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Poll check failed task_id=%s attempt=%s: %s", task_id, attempts, exc)
        else:
            error = policy.failure_of(result)
            if error:
                return PollOutcome(
                    kind=PollOutcomeKind.FAILED,
                    task_id=task_id,
                    result=result,
                    error=error,
                    attempts=attempts,
                    elapsed_ms=_elapsed_ms(loop, started),
                )
            if policy.is_complete(result):
                return PollOutcome(
                    kind=PollOutcomeKind.COMPLETED,
                    task_id=task_id,
                    result=result,
                    attempts=attempts,
                    elapsed_ms=_elapsed_ms(loop, started),
                )

        elapsed_ms = _elapsed_ms(loop, started)
        if elapsed_ms >= policy.timeout_ms:
            logger.info("Poll timed out task_id=%s after %sms (%s attempts)", task_id, elapsed_ms, attempts)
            return PollOutcome(
                kind=PollOutcomeKind.TIMED_OUT,
                task_id=task_id,
                attempts=attempts,
                elapsed_ms=elapsed_ms,
            )

        await asyncio.sleep(policy.interval_ms / 1000)


def _elapsed_ms(loop: asyncio.AbstractEventLoop, started: float) -> int:
    return int((loop.time() - started) * 1000)


class PollHandle:
    def __init__(self, stream: str, task_id: str, task: asyncio.Task[PollOutcome]):
        self.stream = stream
        self.task_id = task_id
        self._task = task
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if not self._task.done():
            self._task.cancel()
        logger.debug("Poll cancelled stream=%s task_id=%s", self.stream, self.task_id)

    async def wait(self) -> PollOutcome:
        await asyncio.wait({self._task})
        return self.outcome()

    def outcome(self) -> PollOutcome:
        """Outcome of a finished poller; a crashed one counts as failed."""
        if self._cancelled or self._task.cancelled():
            return PollOutcome(kind=PollOutcomeKind.CANCELLED, task_id=self.task_id)
        exc = self._task.exception()
        if exc is not None:
            return PollOutcome(kind=PollOutcomeKind.FAILED, task_id=self.task_id, error=f"Polling failed: {exc}")
        return self._task.result()


class PollingTaskRunner:
    """Owns the single live poller of one logical task stream."""

    def __init__(self, stream: str):
        self.stream = stream
        self._current: PollHandle | None = None

    @property
    def current(self) -> PollHandle | None:
        return self._current

    @property
    def active(self) -> bool:
        return self._current is not None and not self._current.done and not self._current.cancelled

    def start(
        self,
        task_id: str,
        check_fn: CheckFn,
        policy: PollPolicy,
        *,
        on_outcome: OutcomeCallback | None = None,
    ) -> PollHandle:
        self.cancel()

        task = asyncio.get_running_loop().create_task(
            poll(task_id, check_fn, policy),
            name=f"poll:{self.stream}:{task_id}",
        )
        handle = PollHandle(self.stream, task_id, task)
        self._current = handle
        task.add_done_callback(lambda finished: self._deliver(handle, finished, on_outcome))
        logger.info(
            "Polling started stream=%s task_id=%s interval=%sms timeout=%sms",
            self.stream,
            task_id,
            policy.interval_ms,
            policy.timeout_ms,
        )
        return handle

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()
            self._current = None

    def _deliver(
        self,
        handle: PollHandle,
        finished: asyncio.Task[PollOutcome],
        on_outcome: OutcomeCallback | None,
    ) -> None:
        # A handle replaced or cancelled while its last check was in flight
        # must never reach application state.
        if handle.cancelled or finished.cancelled() or self._current is not handle:
            return
        self._current = None

        exc = finished.exception()
        if exc is not None:
            logger.error("Poller crashed stream=%s task_id=%s", self.stream, handle.task_id, exc_info=exc)
        outcome = handle.outcome()
        logger.info(
            "Polling finished stream=%s task_id=%s outcome=%s attempts=%s",
            self.stream,
            handle.task_id,
            outcome.kind.value,
            outcome.attempts,
        )
        if on_outcome is not None:
            on_outcome(outcome)
