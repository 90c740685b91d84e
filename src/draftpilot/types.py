from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Language = Literal["en", "de"]
DocumentKind = Literal["cv", "cover_letter"]


class GenerationStatus(str, Enum):
    NONE = "none"
    PENDING_INPUT = "pending_input"
    PENDING_GENERATION = "pending_generation"
    DRAFT_READY = "draft_ready"
    FINALIZED = "finalized"
    ERROR = "error"


class TaskState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


def cv_has_content(cv: dict[str, Any] | None) -> bool:
    if not cv:
        return False
    return any(bool(value) for value in cv.values())


def text_has_content(text: str | None) -> bool:
    return bool(text and text.strip())


class JobDocumentState(BaseModel):
    """Job application entity as returned by the job service.

    Field aliases follow the remote camelCase payload, so ``model_validate``
    accepts the raw response and ``wire_partial`` builds update bodies.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")
    job_title: str = Field(default="", alias="jobTitle")
    company_name: str = Field(default="", alias="companyName")
    job_url: str | None = Field(default=None, alias="jobUrl")
    job_description_text: str | None = Field(default=None, alias="jobDescriptionText")
    language: Language = "en"
    notes: str | None = None
    cv_document: dict[str, Any] | None = Field(default=None, alias="draftCvJson")
    cover_letter_text: str | None = Field(default=None, alias="draftCoverLetterText")
    generation_status: GenerationStatus = Field(default=GenerationStatus.NONE, alias="generationStatus")
    generated_cv_filename: str | None = Field(default=None, alias="generatedCvFilename")
    generated_cover_letter_filename: str | None = Field(default=None, alias="generatedCoverLetterFilename")

    @field_validator("generation_status", mode="before")
    @classmethod
    def default_status(cls, value: Any) -> Any:
        return GenerationStatus.NONE if value in (None, "") else value

    @field_validator("language", mode="before")
    @classmethod
    def default_language(cls, value: Any) -> Any:
        return "en" if not value else value

    @property
    def has_cv(self) -> bool:
        return cv_has_content(self.cv_document)

    @property
    def has_cover_letter(self) -> bool:
        return text_has_content(self.cover_letter_text)

    @property
    def has_any_document(self) -> bool:
        return self.has_cv or self.has_cover_letter

    @classmethod
    def wire_partial(cls, **fields: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name, value in fields.items():
            info = cls.model_fields.get(name)
            if info is None:
                raise ValueError(f"unknown job field '{name}'")
            if isinstance(value, Enum):
                value = value.value
            payload[info.alias or name] = value
        return payload

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class RequiredInput(BaseModel):
    name: str
    type: Literal["text", "number", "date", "textarea"] = "text"


class CvGenerationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Literal["draft_ready", "pending_input"]
    document: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("document", "draftCvJson", "tailoredCvJson"),
    )
    changes_count: int | None = Field(default=None, validation_alias=AliasChoices("changes_count", "changesCount"))
    required_inputs: list[RequiredInput] = Field(
        default_factory=list,
        validation_alias=AliasChoices("required_inputs", "requiredInputs"),
    )
    message: str = ""


class GenerationOptions(BaseModel):
    language: Language = "en"
    theme: str | None = None
    custom_instructions: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"language": self.language}
        if self.theme:
            payload["theme"] = self.theme
        if self.custom_instructions:
            payload["customInstructions"] = self.custom_instructions
        return payload


class ScanCheckResult(BaseModel):
    scores: dict[str, Any] | None = None
    error: str | None = None

    @property
    def is_running(self) -> bool:
        return self.scores is None and not self.error


class AnalysisCheckResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Literal["pending", "completed", "failed"] = "pending"
    overall_score: float | None = Field(default=None, alias="overallScore")
    category_scores: dict[str, float] = Field(default_factory=dict, alias="categoryScores")
    detailed_results: dict[str, Any] = Field(default_factory=dict, alias="detailedResults")
    error_info: str | None = Field(default=None, alias="errorInfo")


class FinalDocuments(BaseModel):
    cv_filename: str | None = None
    cover_letter_filename: str | None = None


class ScanTask(BaseModel):
    task_id: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    state: TaskState = TaskState.SUBMITTED
    scores: dict[str, Any] | None = None
    message: str = ""


class AnalysisTask(BaseModel):
    section: str
    task_id: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    state: TaskState = TaskState.SUBMITTED
    result: dict[str, Any] | None = None
    message: str = ""


class ActionOutcome(BaseModel):
    action: str
    ok: bool
    status: GenerationStatus
    message: str = ""
    timed_out: bool = False
    superseded: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)
