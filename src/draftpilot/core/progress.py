from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Phase:
    name: str
    threshold: int


DEFAULT_PHASES: tuple[Phase, ...] = (
    Phase("analyzing", 0),
    Phase("matching", 20),
    Phase("tailoring", 50),
    Phase("finalizing", 80),
)

IDLE_PHASE = "idle"
COMPLETE_PHASE = "complete"


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    percent: float
    phase: str
    running: bool


ProgressListener = Callable[[ProgressSnapshot], None]


class ProgressSimulator:
    """Advisory progress estimate shown while a generation request is in flight.

    Never reports 100 on its own: only ``complete`` does, when the real
    response has arrived.
    """

    def __init__(
        self,
        *,
        tick_ms: int = 500,
        cap: float = 95,
        min_step: float = 0.5,
        rate: float = 0.08,
        phases: tuple[Phase, ...] = DEFAULT_PHASES,
        listener: ProgressListener | None = None,
    ):
        self.tick_ms = tick_ms
        self.cap = cap
        self.min_step = min_step
        self.rate = rate
        self.phases = phases
        self._listener = listener
        self._percent = 0.0
        self._phase = IDLE_PHASE
        self._task: asyncio.Task[None] | None = None

    @property
    def percent(self) -> float:
        return self._percent

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(percent=round(self._percent, 1), phase=self._phase, running=self.running)

    def start(self) -> None:
        self._stop_timer()
        self._percent = 0.0
        self._phase = self.phases[0].name
        self._task = asyncio.get_running_loop().create_task(self._run(), name="progress-simulator")
        self._notify()

    def advance(self) -> None:
        remaining = self.cap - self._percent
        if remaining <= 0:
            return
        step = max(self.min_step, remaining * self.rate)
        self._percent = min(self.cap, self._percent + step)
        self._phase = self._phase_for(self._percent)
        self._notify()

    def complete(self) -> None:
        self._stop_timer()
        self._percent = 100.0
        self._phase = COMPLETE_PHASE
        self._notify()

    def reset(self) -> None:
        self._stop_timer()
        if self._percent == 0.0 and self._phase == IDLE_PHASE:
            return
        self._percent = 0.0
        self._phase = IDLE_PHASE
        self._notify()

    def _phase_for(self, percent: float) -> str:
        name = self.phases[0].name
        for phase in self.phases:
            if percent >= phase.threshold:
                name = phase.name
        return name

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_ms / 1000)
            self.advance()

    def _stop_timer(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _notify(self) -> None:
        if self._listener is None:
            return
        try:
            self._listener(self.snapshot())
        except Exception:
            logger.exception("Progress listener failed")
