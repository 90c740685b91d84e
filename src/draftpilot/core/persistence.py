"""Debounced autosave for the two editable documents of a job session."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    cv: dict[str, Any] | None
    cover_letter: str | None

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.cv, self.cover_letter)


def fingerprint(cv: dict[str, Any] | None, cover_letter: str | None) -> str:
    return json.dumps(
        {"cv": cv, "coverLetter": cover_letter or ""},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


SaveFn = Callable[[DocumentSnapshot], Awaitable[Any]]
SavedCallback = Callable[[DocumentSnapshot, Any], None]
ErrorCallback = Callable[[DocumentSnapshot, Exception], None]


class DebouncedPersistenceManager:
    """Collapses bursts of edits into one save after a quiet period.

    Only one delay timer is ever armed. The last confirmed fingerprint is
    compared both when an edit arrives and again when the timer fires, so an
    edit that returns content to its saved form costs nothing. A failed save
    keeps the old fingerprint; the next qualifying edit (or ``flush``) retries.
    """

    def __init__(
        self,
        save_fn: SaveFn,
        *,
        delay_ms: int = 2000,
        grace_ms: int = 0,
        on_saved: SavedCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self._save_fn = save_fn
        self.delay_ms = delay_ms
        self.grace_ms = grace_ms
        self._on_saved = on_saved
        self._on_error = on_error

        self._fingerprint: str | None = None
        self._latest: DocumentSnapshot | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._grace_until = 0.0
        self._lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[bool]] = set()
        self._disposed = False

    @property
    def last_persisted_fingerprint(self) -> str | None:
        return self._fingerprint

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def saving(self) -> bool:
        return bool(self._inflight)

    @property
    def dirty(self) -> bool:
        return self._latest is not None and self._latest.fingerprint != self._fingerprint

    def prime(self, cv: dict[str, Any] | None, cover_letter: str | None) -> None:
        """Adopt freshly loaded content and open the initial-load grace window."""
        self.cancel_pending()
        snapshot = DocumentSnapshot(cv, cover_letter)
        self._fingerprint = snapshot.fingerprint
        self._latest = snapshot
        self._grace_until = asyncio.get_running_loop().time() + self.grace_ms / 1000

    def mark_saved(self, cv: dict[str, Any] | None, cover_letter: str | None) -> None:
        snapshot = DocumentSnapshot(cv, cover_letter)
        self._fingerprint = snapshot.fingerprint
        self._latest = snapshot

    def stage(self, cv: dict[str, Any] | None, cover_letter: str | None) -> None:
        """Record content for the next ``flush`` without arming the timer."""
        self._latest = DocumentSnapshot(cv, cover_letter)

    def on_change(self, cv: dict[str, Any] | None, cover_letter: str | None) -> None:
        if self._disposed:
            return

        snapshot = DocumentSnapshot(cv, cover_letter)
        self._latest = snapshot

        # The grace window only holds back the timer; flush still sees the edit.
        loop = asyncio.get_running_loop()
        if loop.time() < self._grace_until:
            logger.debug("Autosave timer not armed during initial-load grace window")
            return

        if snapshot.fingerprint == self._fingerprint:
            self.cancel_pending()
            return

        self.cancel_pending()
        self._timer = loop.call_later(self.delay_ms / 1000, self._fire)

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> bool:
        """Save the latest content now. Returns False only when the save failed."""
        self.cancel_pending()
        return await self._save_latest()

    async def drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def dispose(self) -> None:
        self._disposed = True
        self.cancel_pending()

    def _fire(self) -> None:
        self._timer = None
        if self._disposed:
            return
        task = asyncio.get_running_loop().create_task(self._save_latest(), name="autosave")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _save_latest(self) -> bool:
        async with self._lock:
            snapshot = self._latest
            if snapshot is None or snapshot.fingerprint == self._fingerprint:
                return True

            try:
                response = await self._save_fn(snapshot)
            except Exception as exc:
                logger.warning("Autosave failed; keeping previous fingerprint: %s", exc)
                if self._on_error is not None:
                    self._on_error(snapshot, exc)
                return False

            self._fingerprint = snapshot.fingerprint
            logger.debug("Autosave committed")
            if self._on_saved is not None:
                self._on_saved(snapshot, response)
            return True
