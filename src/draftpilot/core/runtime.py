from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from draftpilot.config import Settings, get_settings
from draftpilot.core.controller import DocumentSessionController
from draftpilot.core.events import EventBus, get_event_bus
from draftpilot.remote.services import RemoteServices, build_remote_services

logger = logging.getLogger(__name__)

ServicesFactory = Callable[[Settings], RemoteServices]


class SessionRegistry:
    """One live controller per job id, shared by API requests and streams."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
        services_factory: ServicesFactory = build_remote_services,
    ):
        self.settings = settings or get_settings()
        self.event_bus = event_bus or get_event_bus()
        self._services_factory = services_factory
        self._services: RemoteServices | None = None
        self._sessions: dict[str, DocumentSessionController] = {}
        self._lock = asyncio.Lock()

    @property
    def services(self) -> RemoteServices:
        if self._services is None:
            self._services = self._services_factory(self.settings)
        return self._services

    def get(self, job_id: str) -> DocumentSessionController | None:
        return self._sessions.get(job_id)

    async def open(self, job_id: str) -> DocumentSessionController:
        async with self._lock:
            existing = self._sessions.get(job_id)
            if existing is not None and not existing.closed:
                return existing

            services = self.services
            controller = DocumentSessionController(
                job_id,
                jobs=services.jobs,
                generator=services.generator,
                scans=services.scans,
                analyses=services.analyses,
                settings=self.settings,
                event_bus=self.event_bus,
            )
            await controller.load()
            self._sessions[job_id] = controller
            return controller

    async def close(self, job_id: str, *, flush: bool = True) -> bool:
        async with self._lock:
            controller = self._sessions.pop(job_id, None)
        if controller is None:
            return False
        await controller.close(flush=flush)
        return True

    async def close_all(self) -> None:
        for job_id in list(self._sessions):
            await self.close(job_id)
        logger.info("All job sessions closed")


_REGISTRY: SessionRegistry | None = None


def get_session_registry() -> SessionRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = SessionRegistry()
    return _REGISTRY
