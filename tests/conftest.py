from __future__ import annotations

import asyncio
from typing import Any

import pytest

from draftpilot.config import Settings
from draftpilot.core.controller import DocumentSessionController
from draftpilot.core.errors import RemoteServiceError
from draftpilot.core.events import EventBus
from draftpilot.types import (
    AnalysisCheckResult,
    CvGenerationResult,
    FinalDocuments,
    GenerationOptions,
    JobDocumentState,
    ScanCheckResult,
)

SAMPLE_CV: dict[str, Any] = {
    "basics": {"name": "Ada Lovelace", "label": "Engineer"},
    "work": [{"name": "Analytical Engines", "position": "Lead"}],
    "skills": [{"name": "Python"}],
}


class FakeJobService:
    def __init__(self, **fields: Any):
        payload: dict[str, Any] = {
            "_id": "job-1",
            "jobTitle": "Backend Engineer",
            "companyName": "Acme",
            "jobDescriptionText": "Build APIs in Python.",
        }
        payload.update(fields)
        self.state = JobDocumentState.model_validate(payload)
        self.get_calls = 0
        self.update_calls: list[dict[str, Any]] = []
        self.fail_updates = False
        self.refreshed_cv: dict[str, Any] | None = None

    async def get_job(self, job_id: str) -> JobDocumentState:
        self.get_calls += 1
        if self.refreshed_cv is not None:
            self.state.cv_document = self.refreshed_cv
        return self.state.model_copy(deep=True)

    async def update_job(self, job_id: str, partial: dict[str, Any]) -> JobDocumentState:
        self.update_calls.append(dict(partial))
        if self.fail_updates:
            raise RemoteServiceError("backend unavailable", status_code=503)
        merged = self.state.model_dump(by_alias=True, mode="json")
        merged.update(partial)
        self.state = JobDocumentState.model_validate(merged)
        return self.state.model_copy(deep=True)


class FakeGenerationService:
    def __init__(self) -> None:
        self.cv_results: list[CvGenerationResult | Exception] = []
        self.cover_letters: list[str | Exception] = []
        self.delay_sec = 0.0
        self.delays: dict[str, float] = {}
        self.gate: asyncio.Event | None = None
        self.cv_calls: list[GenerationOptions] = []
        self.cover_letter_calls: list[GenerationOptions] = []
        self.render_calls = 0
        self.render_error: Exception | None = None

    async def _wait(self, kind: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        delay = self.delays.get(kind, self.delay_sec)
        if delay:
            await asyncio.sleep(delay)

    async def generate_cv(self, job_id: str, options: GenerationOptions) -> CvGenerationResult:
        self.cv_calls.append(options)
        result = self.cv_results.pop(0) if self.cv_results else CvGenerationResult(status="draft_ready", document=SAMPLE_CV)
        await self._wait("cv")
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_cover_letter(self, job_id: str, options: GenerationOptions) -> str:
        self.cover_letter_calls.append(options)
        result = self.cover_letters.pop(0) if self.cover_letters else "Dear hiring team,"
        await self._wait("cover_letter")
        if isinstance(result, Exception):
            raise result
        return result

    async def render_final_pdfs(self, job_id: str) -> FinalDocuments:
        self.render_calls += 1
        if self.render_error is not None:
            raise self.render_error
        return FinalDocuments(cv_filename=f"{job_id}-cv.pdf", cover_letter_filename=f"{job_id}-cl.pdf")


class FakeScanService:
    def __init__(self) -> None:
        self.submit_calls: list[tuple[str, str | None]] = []
        self.check_calls: list[str] = []
        self.results: dict[str, list[ScanCheckResult]] = {}
        self._counter = 0

    async def submit_scan(self, job_id: str, previous_task_id: str | None = None) -> str:
        self.submit_calls.append((job_id, previous_task_id))
        self._counter += 1
        return f"scan-{self._counter}"

    async def check_scan(self, task_id: str) -> ScanCheckResult:
        self.check_calls.append(task_id)
        queue = self.results.get(task_id)
        if queue:
            return queue.pop(0) if len(queue) > 1 else queue[0]
        return ScanCheckResult()


class FakeAnalysisService:
    def __init__(self) -> None:
        self.submitted: list[tuple[dict[str, Any], str | None]] = []
        self.results: list[AnalysisCheckResult] = []

    async def submit_analysis(self, cv: dict[str, Any], job_description: str | None = None) -> str:
        self.submitted.append((cv, job_description))
        return f"analysis-{len(self.submitted)}"

    async def check_analysis(self, task_id: str) -> AnalysisCheckResult:
        if self.results:
            return self.results.pop(0) if len(self.results) > 1 else self.results[0]
        return AnalysisCheckResult(status="pending")


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "test",
        "autosave_delay_ms": 40,
        "autosave_grace_ms": 0,
        "scan_poll_interval_ms": 5,
        "scan_poll_timeout_ms": 200,
        "analysis_poll_interval_ms": 5,
        "analysis_poll_timeout_ms": 200,
        "progress_tick_ms": 5,
        "generation_timeout_sec": 0,
    }
    values.update(overrides)
    return Settings(**values)


def make_controller(
    *,
    jobs: FakeJobService | None = None,
    generator: FakeGenerationService | None = None,
    scans: FakeScanService | None = None,
    analyses: FakeAnalysisService | None = None,
    settings: Settings | None = None,
    event_bus: EventBus | None = None,
) -> DocumentSessionController:
    return DocumentSessionController(
        "job-1",
        jobs=jobs or FakeJobService(),
        generator=generator or FakeGenerationService(),
        scans=scans or FakeScanService(),
        analyses=analyses or FakeAnalysisService(),
        settings=settings or make_settings(),
        event_bus=event_bus or EventBus(),
    )


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def jobs() -> FakeJobService:
    return FakeJobService()


@pytest.fixture
def generator() -> FakeGenerationService:
    return FakeGenerationService()


@pytest.fixture
def scans() -> FakeScanService:
    return FakeScanService()


@pytest.fixture
def analyses() -> FakeAnalysisService:
    return FakeAnalysisService()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()
