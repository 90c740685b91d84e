from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class DraftEditRequest(BaseModel):
    cv: dict[str, Any] | None = None
    cover_letter: str | None = None


class MetadataUpdateRequest(BaseModel):
    job_title: str | None = None
    company_name: str | None = None
    job_url: str | None = None
    job_description_text: str | None = None
    language: Literal["en", "de"] | None = None
    notes: str | None = None

    def changed_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class GenerateRequest(BaseModel):
    language: Literal["en", "de"] | None = None
    theme: str | None = None
    custom_instructions: str | None = None


class SessionResponse(BaseModel):
    job: dict[str, Any]
    last_error: str | None = None
    autosave_pending: bool = False
    scan: dict[str, Any] | None = None
    analysis: dict[str, Any] | None = None
    final_documents: dict[str, Any] | None = None
    required_inputs: list[dict[str, Any]] = Field(default_factory=list)
    progress: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ActionResponse(BaseModel):
    action: str
    ok: bool
    status: str
    message: str = ""
    timed_out: bool = False
    superseded: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)


class SaveResponse(BaseModel):
    ok: bool
    last_error: str | None = None


class TaskResponse(BaseModel):
    task_id: str
    state: str
    message: str = ""
    section: str | None = None
    scores: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
