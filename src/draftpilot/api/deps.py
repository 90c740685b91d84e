from __future__ import annotations

from fastapi import Depends, HTTPException

from draftpilot.core.controller import DocumentSessionController
from draftpilot.core.runtime import SessionRegistry, get_session_registry


def get_registry() -> SessionRegistry:
    return get_session_registry()


def get_controller(job_id: str, registry: SessionRegistry = Depends(get_registry)) -> DocumentSessionController:
    controller = registry.get(job_id)
    if controller is None or controller.closed:
        raise HTTPException(status_code=404, detail=f"No open session for job {job_id}")
    return controller
