from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from draftpilot.config import Settings
from draftpilot.core.errors import RemoteServiceError
from draftpilot.remote.client import ApiClient
from draftpilot.types import (
    AnalysisCheckResult,
    CvGenerationResult,
    FinalDocuments,
    GenerationOptions,
    JobDocumentState,
    ScanCheckResult,
)

logger = logging.getLogger(__name__)


class JobService(Protocol):
    async def get_job(self, job_id: str) -> JobDocumentState: ...

    async def update_job(self, job_id: str, partial: dict[str, Any]) -> JobDocumentState: ...


class GenerationService(Protocol):
    async def generate_cv(self, job_id: str, options: GenerationOptions) -> CvGenerationResult: ...

    async def generate_cover_letter(self, job_id: str, options: GenerationOptions) -> str: ...

    async def render_final_pdfs(self, job_id: str) -> FinalDocuments: ...


class ScanService(Protocol):
    async def submit_scan(self, job_id: str, previous_task_id: str | None = None) -> str: ...

    async def check_scan(self, task_id: str) -> ScanCheckResult: ...


class AnalysisService(Protocol):
    async def submit_analysis(self, cv: dict[str, Any], job_description: str | None = None) -> str: ...

    async def check_analysis(self, task_id: str) -> AnalysisCheckResult: ...


class HttpJobService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def get_job(self, job_id: str) -> JobDocumentState:
        body = await asyncio.to_thread(self.client.get, f"/job-applications/{job_id}")
        return JobDocumentState.model_validate(body)

    async def update_job(self, job_id: str, partial: dict[str, Any]) -> JobDocumentState:
        body = await asyncio.to_thread(self.client.put, f"/job-applications/{job_id}", partial)
        return JobDocumentState.model_validate(body)


class HttpGenerationService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def generate_cv(self, job_id: str, options: GenerationOptions) -> CvGenerationResult:
        body = await asyncio.to_thread(self.client.post, f"/generator/{job_id}/generate-cv", options.to_payload())
        return CvGenerationResult.model_validate(body)

    async def generate_cover_letter(self, job_id: str, options: GenerationOptions) -> str:
        body = await asyncio.to_thread(self.client.post, f"/cover-letter/{job_id}", options.to_payload())
        if not isinstance(body, dict):
            raise RemoteServiceError("Failed to generate cover letter")
        text = body.get("coverLetterText")
        if not body.get("success", True) or not text:
            raise RemoteServiceError(body.get("message") or "Failed to generate cover letter")
        return text

    async def render_final_pdfs(self, job_id: str) -> FinalDocuments:
        body = await asyncio.to_thread(self.client.post, f"/generator/{job_id}/render-pdf", {})
        return FinalDocuments(
            cv_filename=body.get("cvFilename"),
            cover_letter_filename=body.get("coverLetterFilename"),
        )


class HttpScanService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def submit_scan(self, job_id: str, previous_task_id: str | None = None) -> str:
        payload: dict[str, Any] = {"jobApplicationId": job_id}
        if previous_task_id:
            payload["analysisId"] = previous_task_id
        body = await asyncio.to_thread(self.client.post, "/ats/scan", payload)
        task_id = body.get("analysisId")
        if not task_id:
            raise RemoteServiceError("Scan submission returned no analysis id")
        return str(task_id)

    async def check_scan(self, task_id: str) -> ScanCheckResult:
        body = await asyncio.to_thread(self.client.get, f"/ats/scores/{task_id}")
        return scan_result_from_payload(body)


class HttpAnalysisService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def submit_analysis(self, cv: dict[str, Any], job_description: str | None = None) -> str:
        payload: dict[str, Any] = {"cvJson": cv}
        if job_description:
            payload["jobContext"] = {"jobDescription": job_description}
        body = await asyncio.to_thread(self.client.post, "/analysis/analyze", payload)
        task_id = body.get("analysisId") or body.get("id")
        if not task_id:
            raise RemoteServiceError("Analysis submission returned no analysis id")
        return str(task_id)

    async def check_analysis(self, task_id: str) -> AnalysisCheckResult:
        body = await asyncio.to_thread(self.client.get, f"/analysis/{task_id}")
        return AnalysisCheckResult.model_validate(body)


def scan_result_from_payload(body: dict[str, Any]) -> ScanCheckResult:
    scores = body.get("atsScores") if isinstance(body, dict) else None
    if not isinstance(scores, dict):
        return ScanCheckResult()
    if scores.get("error"):
        return ScanCheckResult(error=str(scores["error"]))
    if scores.get("score") is not None:
        return ScanCheckResult(scores=scores)
    return ScanCheckResult()


@dataclass(slots=True)
class RemoteServices:
    jobs: JobService
    generator: GenerationService
    scans: ScanService
    analyses: AnalysisService


def build_remote_services(settings: Settings) -> RemoteServices:
    client = ApiClient(settings)
    return RemoteServices(
        jobs=HttpJobService(client),
        generator=HttpGenerationService(client),
        scans=HttpScanService(client),
        analyses=HttpAnalysisService(client),
    )
