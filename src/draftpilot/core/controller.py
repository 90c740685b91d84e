from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any

from draftpilot.config import Settings, get_settings
from draftpilot.core.errors import PreconditionError
from draftpilot.core.events import EventBus, get_event_bus
from draftpilot.core.persistence import DebouncedPersistenceManager, DocumentSnapshot
from draftpilot.core.polling import PollingTaskRunner, PollOutcome, PollOutcomeKind, PollPolicy
from draftpilot.core.progress import DEFAULT_PHASES, ProgressSimulator, ProgressSnapshot
from draftpilot.core.status_machine import GenerationEvent, events_before_generation, transition
from draftpilot.remote.services import AnalysisService, GenerationService, JobService, ScanService
from draftpilot.types import (
    ActionOutcome,
    AnalysisCheckResult,
    AnalysisTask,
    CvGenerationResult,
    DocumentKind,
    FinalDocuments,
    GenerationOptions,
    GenerationStatus,
    JobDocumentState,
    RequiredInput,
    ScanCheckResult,
    ScanTask,
    TaskState,
    cv_has_content,
    text_has_content,
)

logger = logging.getLogger(__name__)

CV_SECTIONS = ("work", "education", "skills", "projects", "languages", "certificates")
METADATA_FIELDS = {"job_title", "company_name", "job_url", "job_description_text", "language", "notes"}
DOCUMENT_LABELS: dict[str, str] = {"cv": "CV", "cover_letter": "cover letter"}


@dataclass(slots=True)
class GenerationTask:
    kind: DocumentKind
    seq: int
    prior_status: GenerationStatus
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    phase_sequence: tuple[tuple[str, int], ...] = tuple((phase.name, phase.threshold) for phase in DEFAULT_PHASES)


class DocumentSessionController:
    """Drives generation, scanning and autosave for one job application.

    Only this controller (and the autosave success path it installs) writes
    ``self.state``. Remote failures are turned into ``last_error`` plus an
    ``error`` event; local precondition failures raise ``PreconditionError``.
    """

    def __init__(
        self,
        job_id: str,
        *,
        jobs: JobService,
        generator: GenerationService,
        scans: ScanService,
        analyses: AnalysisService,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ):
        self.job_id = job_id
        self.jobs = jobs
        self.generator = generator
        self.scans = scans
        self.analyses = analyses
        self.settings = settings or get_settings()
        self.event_bus = event_bus or get_event_bus()

        self.state: JobDocumentState | None = None
        self.last_error: str | None = None
        self.scan: ScanTask | None = None
        self.analysis: AnalysisTask | None = None
        self.final_documents: FinalDocuments | None = None
        self.required_inputs: list[RequiredInput] = []

        self.persistence = DebouncedPersistenceManager(
            self._save_documents,
            delay_ms=self.settings.autosave_delay_ms,
            grace_ms=self.settings.autosave_grace_ms,
            on_saved=self._on_documents_saved,
            on_error=self._on_save_failed,
        )
        self.scan_runner = PollingTaskRunner("scan")
        self.analysis_runner = PollingTaskRunner("analysis")
        self.simulators: dict[str, ProgressSimulator] = {
            kind: ProgressSimulator(
                tick_ms=self.settings.progress_tick_ms,
                cap=self.settings.progress_cap,
                min_step=self.settings.progress_min_step,
                listener=partial(self._on_progress, kind),
            )
            for kind in ("cv", "cover_letter")
        }

        self._pending_metadata: dict[str, Any] = {}
        self._generation_seq: dict[str, int] = {"cv": 0, "cover_letter": 0}
        self._generation_tasks: dict[str, GenerationTask] = {}
        self._scan_seq = 0
        self._analysis_seq = 0
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False

    # -- session lifecycle -------------------------------------------------

    async def load(self) -> JobDocumentState:
        state = await self.jobs.get_job(self.job_id)
        self.state = state
        self.persistence.prime(state.cv_document, state.cover_letter_text)
        if state.generated_cv_filename or state.generated_cover_letter_filename:
            self.final_documents = FinalDocuments(
                cv_filename=state.generated_cv_filename,
                cover_letter_filename=state.generated_cover_letter_filename,
            )
        logger.info("Job session loaded job_id=%s status=%s", self.job_id, state.generation_status.value)
        self._emit("status", status=state.generation_status.value)
        return state

    async def close(self, *, flush: bool = False) -> None:
        if self._closed:
            return
        if flush and self.state is not None:
            await self.persistence.flush()
        self._closed = True
        self.persistence.dispose()
        self.scan_runner.cancel()
        self.analysis_runner.cancel()
        for kind, simulator in self.simulators.items():
            self._generation_seq[kind] += 1
            simulator.reset()
        self._generation_tasks.clear()
        await self.persistence.drain()
        logger.info("Job session closed job_id=%s", self.job_id)

    @property
    def closed(self) -> bool:
        return self._closed

    def require_state(self) -> JobDocumentState:
        if self.state is None:
            raise PreconditionError(f"job {self.job_id} is not loaded")
        if self._closed:
            raise PreconditionError(f"session for job {self.job_id} is closed")
        return self.state

    # -- local edits ---------------------------------------------------------

    def edit_cv(self, cv: dict[str, Any] | None) -> None:
        state = self.require_state()
        state.cv_document = cv
        self.persistence.on_change(state.cv_document, state.cover_letter_text)

    def edit_cover_letter(self, text: str | None) -> None:
        state = self.require_state()
        state.cover_letter_text = text
        self.persistence.on_change(state.cv_document, state.cover_letter_text)

    async def save_now(self) -> bool:
        self.require_state()
        return await self.persistence.flush()

    def stage_metadata(self, **fields: Any) -> None:
        state = self.require_state()
        unknown = set(fields) - METADATA_FIELDS
        if unknown:
            raise PreconditionError(f"unsupported job fields: {sorted(unknown)}")
        for name, value in fields.items():
            setattr(state, name, value)
        self._pending_metadata.update(fields)

    async def save_metadata(self) -> bool:
        self.require_state()
        if not self._pending_metadata:
            return True
        pending = dict(self._pending_metadata)
        try:
            await self.jobs.update_job(self.job_id, JobDocumentState.wire_partial(**pending))
        except Exception as exc:
            self._fail(f"Failed to save job details: {exc}")
            return False
        for name in pending:
            if self._pending_metadata.get(name) == pending[name]:
                self._pending_metadata.pop(name, None)
        return True

    async def update_notes(self, notes: str) -> bool:
        # Notes are not document content: status is never touched here.
        self.stage_metadata(notes=notes)
        return await self.save_metadata()

    # -- generation ----------------------------------------------------------

    async def generate_cv(
        self,
        *,
        language: str | None = None,
        theme: str | None = None,
        custom_instructions: str | None = None,
    ) -> ActionOutcome:
        return await self._generate("cv", self._options(language, theme, custom_instructions))

    async def generate_cover_letter(
        self,
        *,
        language: str | None = None,
        custom_instructions: str | None = None,
    ) -> ActionOutcome:
        return await self._generate("cover_letter", self._options(language, None, custom_instructions))

    def _options(self, language: str | None, theme: str | None, custom_instructions: str | None) -> GenerationOptions:
        state = self.require_state()
        return GenerationOptions(
            language=language or state.language or self.settings.default_language,
            theme=theme,
            custom_instructions=custom_instructions,
        )

    async def _generate(self, kind: DocumentKind, options: GenerationOptions) -> ActionOutcome:
        state = self.require_state()
        action = f"generate_{kind}"
        if not text_has_content(state.job_description_text):
            raise PreconditionError("A job description is required before generating documents.")

        self._generation_seq[kind] += 1
        task = GenerationTask(kind=kind, seq=self._generation_seq[kind], prior_status=state.generation_status)
        self._generation_tasks[kind] = task
        self.last_error = None
        self.required_inputs = []
        simulator = self.simulators[kind]
        label = DOCUMENT_LABELS[kind]

        try:
            if not await self.save_metadata() or not await self.persistence.flush():
                return self._outcome(action, ok=False, message=self.last_error or "Failed to save pending changes.")
            if self._superseded(task):
                return self._outcome(action, ok=False, superseded=True)

            for event in events_before_generation(state.generation_status):
                self._apply_event(event)
            simulator.start()
            logger.info("Generation submitted job_id=%s kind=%s seq=%s", self.job_id, kind, task.seq)

            try:
                result = await asyncio.wait_for(self._request_generation(kind, options), timeout=self._generation_timeout())
            except asyncio.TimeoutError:
                if self._superseded(task):
                    return self._outcome(action, ok=False, superseded=True)
                # Only undo the pending status this request set; progress made
                # by the other document stream in the meantime stays.
                still_pending = state.generation_status is GenerationStatus.PENDING_GENERATION
                if still_pending and not self._other_generation_active(kind):
                    state.generation_status = task.prior_status
                    self._emit("status", status=state.generation_status.value)
                message = f"{label.capitalize()} generation is still running on the server; check back later."
                logger.warning("Generation timed out job_id=%s kind=%s", self.job_id, kind)
                return self._outcome(action, ok=False, timed_out=True, message=message)
            except Exception as exc:
                if self._superseded(task):
                    return self._outcome(action, ok=False, superseded=True)
                self._apply_event(GenerationEvent.GENERATION_FAILED)
                self._fail(f"Failed to generate {label}: {exc}")
                return self._outcome(action, ok=False, message=self.last_error or "")

            if self._superseded(task):
                logger.info("Discarding superseded generation job_id=%s kind=%s seq=%s", self.job_id, kind, task.seq)
                return self._outcome(action, ok=False, superseded=True)

            if isinstance(result, CvGenerationResult) and result.status == "pending_input":
                simulator.complete()
                self.required_inputs = list(result.required_inputs)
                self._apply_event(GenerationEvent.INPUT_REQUIRED)
                return self._outcome(
                    action,
                    ok=True,
                    message=result.message or "Additional input is required before the draft can be generated.",
                    payload={"required_inputs": [item.model_dump() for item in result.required_inputs]},
                )

            if kind == "cv":
                state.cv_document = await self._resolve_generated_cv(result)
                if self._superseded(task):
                    return self._outcome(action, ok=False, superseded=True)
            else:
                state.cover_letter_text = result

            simulator.complete()
            self._apply_event(GenerationEvent.GENERATION_SUCCEEDED)
            self.persistence.stage(state.cv_document, state.cover_letter_text)
            saved = await self.persistence.flush()

            payload: dict[str, Any] = {}
            if isinstance(result, CvGenerationResult) and result.changes_count is not None:
                payload["changes_count"] = result.changes_count
            message = "" if saved else (self.last_error or "")
            return self._outcome(action, ok=True, message=message, payload=payload)
        finally:
            if self._generation_tasks.get(kind) is task:
                del self._generation_tasks[kind]
                simulator.reset()

    async def _request_generation(self, kind: DocumentKind, options: GenerationOptions) -> CvGenerationResult | str:
        if kind == "cv":
            return await self.generator.generate_cv(self.job_id, options)
        return await self.generator.generate_cover_letter(self.job_id, options)

    async def _resolve_generated_cv(self, result: CvGenerationResult) -> dict[str, Any] | None:
        if result.document is not None:
            return result.document
        # Some backends only store the draft; fetch it back.
        refreshed = await self.jobs.get_job(self.job_id)
        self.persistence.mark_saved(refreshed.cv_document, self.require_state().cover_letter_text)
        return refreshed.cv_document

    def _generation_timeout(self) -> float | None:
        return self.settings.generation_timeout_sec or None

    def _other_generation_active(self, kind: DocumentKind) -> bool:
        return any(other != kind for other in self._generation_tasks)

    def _superseded(self, task: GenerationTask) -> bool:
        return self._closed or self._generation_seq[task.kind] != task.seq

    @property
    def active_generations(self) -> dict[str, GenerationTask]:
        return dict(self._generation_tasks)

    # -- finalization --------------------------------------------------------

    async def finalize(self) -> ActionOutcome:
        state = self.require_state()
        if state.generation_status not in {GenerationStatus.DRAFT_READY, GenerationStatus.FINALIZED}:
            raise PreconditionError("Draft documents must be ready before they can be finalized.")

        if not await self.save_metadata() or not await self.persistence.flush():
            return self._outcome("finalize", ok=False, message="Cannot generate PDFs: failed to save changes first.")

        try:
            documents = await self.generator.render_final_pdfs(self.job_id)
        except Exception as exc:
            self._fail(f"Failed to generate final PDFs: {exc}")
            return self._outcome("finalize", ok=False, message=self.last_error or "")

        self.final_documents = documents
        state.generated_cv_filename = documents.cv_filename
        state.generated_cover_letter_filename = documents.cover_letter_filename
        self._apply_event(GenerationEvent.DOCUMENTS_FINALIZED)
        return self._outcome("finalize", ok=True, payload=documents.model_dump())

    # -- deletion ------------------------------------------------------------

    async def delete_cv(self) -> ActionOutcome:
        self.require_state()
        self._generation_seq["cv"] += 1
        self.scan_runner.cancel()
        self.scan = None
        return await self._delete_document("delete_cv", cv_document=None)

    async def delete_cover_letter(self) -> ActionOutcome:
        self.require_state()
        self._generation_seq["cover_letter"] += 1
        return await self._delete_document("delete_cover_letter", cover_letter_text=None)

    async def _delete_document(self, action: str, **cleared: Any) -> ActionOutcome:
        state = self.require_state()
        self.persistence.cancel_pending()
        await self.persistence.drain()

        cv = cleared.get("cv_document", state.cv_document)
        cover_letter = cleared.get("cover_letter_text", state.cover_letter_text)
        # Both bodies go out together so a pending edit to the kept document
        # is persisted by the same request instead of being dropped.
        fields: dict[str, Any] = {"cv_document": cv, "cover_letter_text": cover_letter or ""}
        next_status = state.generation_status
        if not (cv_has_content(cv) or text_has_content(cover_letter)):
            next_status = transition(state.generation_status, GenerationEvent.DOCUMENT_DELETED)
            fields["generation_status"] = next_status

        try:
            await self.jobs.update_job(self.job_id, JobDocumentState.wire_partial(**fields))
        except Exception as exc:
            self._fail(f"Failed to delete document: {exc}")
            return self._outcome(action, ok=False, message=self.last_error or "")

        state.cv_document = cv
        state.cover_letter_text = cover_letter
        self.persistence.mark_saved(cv, cover_letter)
        if next_status != state.generation_status:
            state.generation_status = next_status
            self._emit("status", status=next_status.value)
        return self._outcome(action, ok=True)

    # -- compatibility scan --------------------------------------------------

    async def submit_scan(self) -> ScanTask:
        state = self.require_state()
        if not state.has_cv:
            raise PreconditionError("Generate a tailored CV before running a compatibility scan.")

        self.scan_runner.cancel()
        self._scan_seq += 1
        seq = self._scan_seq
        previous_task_id = self.scan.task_id if self.scan else None
        self.last_error = None

        try:
            task_id = await self.scans.submit_scan(self.job_id, previous_task_id)
        except Exception as exc:
            if seq != self._scan_seq or self._closed:
                return ScanTask(task_id="", state=TaskState.CANCELLED)
            self._fail(f"Failed to start compatibility scan: {exc}")
            self.scan = ScanTask(task_id=previous_task_id or "", state=TaskState.FAILED, message=self.last_error or "")
            self._emit_scan()
            return self.scan

        if seq != self._scan_seq or self._closed:
            return ScanTask(task_id=task_id, state=TaskState.CANCELLED)

        scan = ScanTask(task_id=task_id)
        self.scan = scan
        policy = PollPolicy(
            interval_ms=self.settings.scan_poll_interval_ms,
            timeout_ms=self.settings.scan_poll_timeout_ms,
            is_complete=_scan_complete,
            failure_of=_scan_failure,
        )
        self.scan_runner.start(task_id, self.scans.check_scan, policy, on_outcome=partial(self._apply_scan_outcome, scan))
        scan.state = TaskState.POLLING
        self._emit_scan()
        return scan

    async def wait_for_scan(self) -> ScanTask | None:
        handle = self.scan_runner.current
        if handle is not None:
            await handle.wait()
        return self.scan

    def _apply_scan_outcome(self, scan: ScanTask, outcome: PollOutcome) -> None:
        if self.scan is not scan or self._closed:
            return
        if outcome.kind is PollOutcomeKind.COMPLETED:
            scan.state = TaskState.COMPLETED
            scan.scores = outcome.result.scores
            scan.message = ""
        elif outcome.kind is PollOutcomeKind.FAILED:
            scan.state = TaskState.FAILED
            scan.message = outcome.error or "Compatibility scan failed"
            # Scan failures never touch generation_status.
            self._fail(f"Compatibility scan failed: {scan.message}")
        elif outcome.kind is PollOutcomeKind.TIMED_OUT:
            scan.state = TaskState.TIMED_OUT
            scan.message = "The scan is still running; check back later."
        self._emit_scan()

    def _emit_scan(self) -> None:
        if self.scan is not None:
            self._emit("scan", scan=self.scan.model_dump(mode="json"))

    # -- section analysis ----------------------------------------------------

    async def analyze_section(self, section: str) -> AnalysisTask:
        state = self.require_state()
        if section not in CV_SECTIONS:
            raise PreconditionError(f"Unknown CV section '{section}'.")
        if not state.has_cv:
            raise PreconditionError("There is no CV to analyze.")

        self.analysis_runner.cancel()
        self._analysis_seq += 1
        seq = self._analysis_seq
        section_cv = section_only_cv(state.cv_document or {}, section)

        try:
            task_id = await self.analyses.submit_analysis(section_cv, state.job_description_text)
        except Exception as exc:
            if seq != self._analysis_seq or self._closed:
                return AnalysisTask(section=section, task_id="", state=TaskState.CANCELLED)
            self._fail(f"Failed to analyze {section}: {exc}")
            self.analysis = AnalysisTask(section=section, task_id="", state=TaskState.FAILED, message=self.last_error or "")
            self._emit_analysis()
            return self.analysis

        if seq != self._analysis_seq or self._closed:
            return AnalysisTask(section=section, task_id=task_id, state=TaskState.CANCELLED)

        analysis = AnalysisTask(section=section, task_id=task_id)
        self.analysis = analysis
        policy = PollPolicy(
            interval_ms=self.settings.analysis_poll_interval_ms,
            timeout_ms=self.settings.analysis_poll_timeout_ms,
            is_complete=_analysis_complete,
            failure_of=_analysis_failure,
        )
        self.analysis_runner.start(
            task_id,
            self.analyses.check_analysis,
            policy,
            on_outcome=partial(self._apply_analysis_outcome, analysis),
        )
        analysis.state = TaskState.POLLING
        self._emit_analysis()
        return analysis

    async def wait_for_analysis(self) -> AnalysisTask | None:
        handle = self.analysis_runner.current
        if handle is not None:
            await handle.wait()
        return self.analysis

    def _apply_analysis_outcome(self, analysis: AnalysisTask, outcome: PollOutcome) -> None:
        if self.analysis is not analysis or self._closed:
            return
        if outcome.kind is PollOutcomeKind.COMPLETED:
            analysis.state = TaskState.COMPLETED
            analysis.result = outcome.result.model_dump(mode="json", by_alias=True)
        elif outcome.kind is PollOutcomeKind.FAILED:
            analysis.state = TaskState.FAILED
            analysis.message = outcome.error or "Analysis failed"
            self._fail(f"Analysis of {analysis.section} failed: {analysis.message}")
        elif outcome.kind is PollOutcomeKind.TIMED_OUT:
            analysis.state = TaskState.TIMED_OUT
            analysis.message = "The analysis is still running; check back later."
        self._emit_analysis()

    def _emit_analysis(self) -> None:
        if self.analysis is not None:
            self._emit("analysis", analysis=self.analysis.model_dump(mode="json"))

    # -- autosave callbacks --------------------------------------------------

    async def _save_documents(self, snapshot: DocumentSnapshot) -> GenerationStatus:
        state = self.state
        if state is None:
            raise PreconditionError(f"job {self.job_id} is not loaded")
        promoted = transition(
            state.generation_status,
            GenerationEvent.CONTENT_SAVED,
            has_cv=cv_has_content(snapshot.cv),
            has_cover_letter=text_has_content(snapshot.cover_letter),
        )
        fields: dict[str, Any] = {
            "cv_document": snapshot.cv,
            "cover_letter_text": snapshot.cover_letter or "",
        }
        if promoted != state.generation_status:
            fields["generation_status"] = promoted
        await self.jobs.update_job(self.job_id, JobDocumentState.wire_partial(**fields))
        return promoted

    def _on_documents_saved(self, snapshot: DocumentSnapshot, promoted: GenerationStatus) -> None:
        state = self.state
        if state is None:
            return
        if promoted != state.generation_status:
            self._apply_event(
                GenerationEvent.CONTENT_SAVED,
                has_cv=cv_has_content(snapshot.cv),
                has_cover_letter=text_has_content(snapshot.cover_letter),
            )
        self._emit("save", ok=True)

    def _on_save_failed(self, snapshot: DocumentSnapshot, exc: Exception) -> None:
        self._fail(f"Failed to save changes: {exc}")
        self._emit("save", ok=False)

    # -- helpers -------------------------------------------------------------

    def _apply_event(self, event: GenerationEvent, **guards: bool) -> GenerationStatus:
        state = self.state
        if state is None:
            return GenerationStatus.NONE
        guards.setdefault("has_cv", state.has_cv)
        guards.setdefault("has_cover_letter", state.has_cover_letter)
        next_status = transition(state.generation_status, event, **guards)
        if next_status != state.generation_status:
            logger.info(
                "Status transition job_id=%s %s --%s--> %s",
                self.job_id,
                state.generation_status.value,
                event.value,
                next_status.value,
            )
            state.generation_status = next_status
            self._emit("status", status=next_status.value)
        return next_status

    def _on_progress(self, kind: str, snapshot: ProgressSnapshot) -> None:
        self._emit("progress", document=kind, percent=snapshot.percent, phase=snapshot.phase, running=snapshot.running)

    def _fail(self, message: str) -> None:
        self.last_error = message
        logger.warning("job_id=%s %s", self.job_id, message)
        self._emit("error", message=message)

    def _outcome(self, action: str, *, ok: bool, **fields: Any) -> ActionOutcome:
        state = self.state
        status = state.generation_status if state is not None else GenerationStatus.NONE
        return ActionOutcome(action=action, ok=ok, status=status, **fields)

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._closed:
            return
        event = {"type": event_type, "job_id": self.job_id, **payload}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.event_bus.publish(self.job_id, event))
        else:
            task = loop.create_task(self.event_bus.publish(self.job_id, event))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    def snapshot(self) -> dict[str, Any]:
        state = self.require_state()
        return {
            "job": state.snapshot(),
            "last_error": self.last_error,
            "autosave_pending": self.persistence.pending,
            "scan": self.scan.model_dump(mode="json") if self.scan else None,
            "analysis": self.analysis.model_dump(mode="json") if self.analysis else None,
            "final_documents": self.final_documents.model_dump() if self.final_documents else None,
            "required_inputs": [item.model_dump() for item in self.required_inputs],
            "progress": {
                kind: {"percent": sim.snapshot().percent, "phase": sim.phase, "running": sim.running}
                for kind, sim in self.simulators.items()
            },
        }


def section_only_cv(cv: dict[str, Any], section: str) -> dict[str, Any]:
    """Keep ``basics`` and everything non-sectional, drop the other sections."""
    return {key: value for key, value in cv.items() if key not in CV_SECTIONS or key == section}


def _scan_complete(result: ScanCheckResult) -> bool:
    return result.scores is not None


def _scan_failure(result: ScanCheckResult) -> str | None:
    return result.error or None


def _analysis_complete(result: AnalysisCheckResult) -> bool:
    return result.status == "completed"


def _analysis_failure(result: AnalysisCheckResult) -> str | None:
    if result.status == "failed":
        return result.error_info or "Analysis failed"
    return None
