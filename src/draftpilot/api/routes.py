from __future__ import annotations

from contextlib import aclosing

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from draftpilot.api.deps import get_controller, get_registry
from draftpilot.api.schemas import (
    ActionResponse,
    DraftEditRequest,
    GenerateRequest,
    MetadataUpdateRequest,
    SaveResponse,
    SessionResponse,
    TaskResponse,
)
from draftpilot.core.controller import DocumentSessionController
from draftpilot.core.errors import PreconditionError, RemoteServiceError
from draftpilot.core.runtime import SessionRegistry
from draftpilot.types import ActionOutcome, AnalysisTask, ScanTask

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("/{job_id}", response_model=SessionResponse)
async def open_session(job_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    try:
        controller = await registry.open(job_id)
    except RemoteServiceError as exc:
        status_code = 404 if exc.status_code == 404 else 502
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    return SessionResponse.model_validate(controller.snapshot())


@router.get("/{job_id}", response_model=SessionResponse)
async def get_session(controller: DocumentSessionController = Depends(get_controller)) -> SessionResponse:
    return SessionResponse.model_validate(controller.snapshot())


@router.delete("/{job_id}")
async def close_session(job_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    closed = await registry.close(job_id)
    if not closed:
        raise HTTPException(status_code=404, detail=f"No open session for job {job_id}")
    return {"job_id": job_id, "closed": True}


@router.put("/{job_id}/draft", response_model=SessionResponse)
async def edit_draft(
    payload: DraftEditRequest,
    controller: DocumentSessionController = Depends(get_controller),
) -> SessionResponse:
    fields = payload.model_fields_set
    if "cv" in fields:
        controller.edit_cv(payload.cv)
    if "cover_letter" in fields:
        controller.edit_cover_letter(payload.cover_letter)
    return SessionResponse.model_validate(controller.snapshot())


@router.post("/{job_id}/save", response_model=SaveResponse)
async def save_draft(controller: DocumentSessionController = Depends(get_controller)) -> SaveResponse:
    ok = await controller.save_now()
    return SaveResponse(ok=ok, last_error=None if ok else controller.last_error)


@router.patch("/{job_id}/metadata", response_model=SaveResponse)
async def update_metadata(
    payload: MetadataUpdateRequest,
    controller: DocumentSessionController = Depends(get_controller),
) -> SaveResponse:
    try:
        controller.stage_metadata(**payload.changed_fields())
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    ok = await controller.save_metadata()
    return SaveResponse(ok=ok, last_error=None if ok else controller.last_error)


@router.post("/{job_id}/generate/cv", response_model=ActionResponse)
async def generate_cv(
    payload: GenerateRequest,
    controller: DocumentSessionController = Depends(get_controller),
) -> ActionResponse:
    try:
        outcome = await controller.generate_cv(
            language=payload.language,
            theme=payload.theme,
            custom_instructions=payload.custom_instructions,
        )
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _action_response(outcome)


@router.post("/{job_id}/generate/cover-letter", response_model=ActionResponse)
async def generate_cover_letter(
    payload: GenerateRequest,
    controller: DocumentSessionController = Depends(get_controller),
) -> ActionResponse:
    try:
        outcome = await controller.generate_cover_letter(
            language=payload.language,
            custom_instructions=payload.custom_instructions,
        )
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _action_response(outcome)


@router.post("/{job_id}/finalize", response_model=ActionResponse)
async def finalize(controller: DocumentSessionController = Depends(get_controller)) -> ActionResponse:
    try:
        outcome = await controller.finalize()
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _action_response(outcome)


@router.delete("/{job_id}/documents/cv", response_model=ActionResponse)
async def delete_cv(controller: DocumentSessionController = Depends(get_controller)) -> ActionResponse:
    return _action_response(await controller.delete_cv())


@router.delete("/{job_id}/documents/cover-letter", response_model=ActionResponse)
async def delete_cover_letter(controller: DocumentSessionController = Depends(get_controller)) -> ActionResponse:
    return _action_response(await controller.delete_cover_letter())


@router.post("/{job_id}/scan", response_model=TaskResponse)
async def submit_scan(controller: DocumentSessionController = Depends(get_controller)) -> TaskResponse:
    try:
        scan = await controller.submit_scan()
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _scan_response(scan)


@router.get("/{job_id}/scan", response_model=TaskResponse)
async def get_scan(controller: DocumentSessionController = Depends(get_controller)) -> TaskResponse:
    if controller.scan is None:
        raise HTTPException(status_code=404, detail="No scan has been submitted")
    return _scan_response(controller.scan)


@router.post("/{job_id}/analysis/{section}", response_model=TaskResponse)
async def analyze_section(
    section: str,
    controller: DocumentSessionController = Depends(get_controller),
) -> TaskResponse:
    try:
        analysis = await controller.analyze_section(section)
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _analysis_response(analysis)


@router.websocket("/{job_id}/stream")
async def stream_session_events(
    websocket: WebSocket,
    job_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    await websocket.accept()
    try:
        async with aclosing(registry.event_bus.subscribe(job_id)) as events:
            async for event in events:
                await websocket.send_json(event)
    except WebSocketDisconnect:
        return


def _action_response(outcome: ActionOutcome) -> ActionResponse:
    return ActionResponse.model_validate(outcome.model_dump(mode="json"))


def _scan_response(scan: ScanTask) -> TaskResponse:
    return TaskResponse(task_id=scan.task_id, state=scan.state.value, message=scan.message, scores=scan.scores)


def _analysis_response(analysis: AnalysisTask) -> TaskResponse:
    return TaskResponse(
        task_id=analysis.task_id,
        state=analysis.state.value,
        message=analysis.message,
        section=analysis.section,
        result=analysis.result,
    )
