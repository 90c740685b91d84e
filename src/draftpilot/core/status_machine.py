from __future__ import annotations

from enum import Enum

from draftpilot.core.errors import InvalidTransitionError
from draftpilot.types import GenerationStatus

NONE = GenerationStatus.NONE
PENDING_INPUT = GenerationStatus.PENDING_INPUT
PENDING_GENERATION = GenerationStatus.PENDING_GENERATION
DRAFT_READY = GenerationStatus.DRAFT_READY
FINALIZED = GenerationStatus.FINALIZED
ERROR = GenerationStatus.ERROR


class GenerationEvent(str, Enum):
    DOCUMENTS_SUBMITTED_FOR_INPUT = "documents_submitted_for_input"
    GENERATION_STARTED = "generation_started"
    GENERATION_SUCCEEDED = "generation_succeeded"
    INPUT_REQUIRED = "input_required"
    DOCUMENTS_FINALIZED = "documents_finalized"
    DOCUMENT_DELETED = "document_deleted"
    GENERATION_FAILED = "generation_failed"
    CONTENT_SAVED = "content_saved"


E = GenerationEvent

TRANSITIONS: dict[tuple[GenerationStatus, GenerationEvent], GenerationStatus] = {
    (NONE, E.DOCUMENTS_SUBMITTED_FOR_INPUT): PENDING_INPUT,
    (PENDING_INPUT, E.DOCUMENTS_SUBMITTED_FOR_INPUT): PENDING_INPUT,
    (PENDING_INPUT, E.GENERATION_STARTED): PENDING_GENERATION,
    (PENDING_GENERATION, E.GENERATION_STARTED): PENDING_GENERATION,
    (ERROR, E.GENERATION_STARTED): PENDING_GENERATION,
    (DRAFT_READY, E.GENERATION_STARTED): DRAFT_READY,
    (FINALIZED, E.GENERATION_STARTED): FINALIZED,
    (PENDING_GENERATION, E.GENERATION_SUCCEEDED): DRAFT_READY,
    (DRAFT_READY, E.GENERATION_SUCCEEDED): DRAFT_READY,
    (FINALIZED, E.GENERATION_SUCCEEDED): FINALIZED,
    # CV and cover letter streams share one status, so either stream can
    # finish after the other has moved it elsewhere.
    (NONE, E.GENERATION_SUCCEEDED): DRAFT_READY,
    (PENDING_INPUT, E.GENERATION_SUCCEEDED): DRAFT_READY,
    (ERROR, E.GENERATION_SUCCEEDED): DRAFT_READY,
    (PENDING_GENERATION, E.INPUT_REQUIRED): PENDING_INPUT,
    (PENDING_INPUT, E.INPUT_REQUIRED): PENDING_INPUT,
    (NONE, E.INPUT_REQUIRED): PENDING_INPUT,
    (ERROR, E.INPUT_REQUIRED): PENDING_INPUT,
    (DRAFT_READY, E.INPUT_REQUIRED): DRAFT_READY,
    (FINALIZED, E.INPUT_REQUIRED): FINALIZED,
    (DRAFT_READY, E.DOCUMENTS_FINALIZED): FINALIZED,
    (FINALIZED, E.DOCUMENTS_FINALIZED): FINALIZED,
    (NONE, E.CONTENT_SAVED): DRAFT_READY,
    (PENDING_GENERATION, E.CONTENT_SAVED): DRAFT_READY,
}

for _status in GenerationStatus:
    TRANSITIONS[(_status, E.GENERATION_FAILED)] = ERROR
    TRANSITIONS[(_status, E.DOCUMENT_DELETED)] = NONE


def transition(
    current: GenerationStatus | str,
    event: GenerationEvent | str,
    *,
    has_cv: bool = False,
    has_cover_letter: bool = False,
) -> GenerationStatus:
    """Return the status that follows ``current`` when ``event`` happens.

    Guards depend on which documents exist:

    - ``generation_succeeded`` only reaches ``draft_ready`` when at least one
      document exists; otherwise the status stays where it is.
    - ``content_saved`` only promotes when both documents exist, and is a
      no-op for every status it has no entry for (``finalized`` included).
    """
    current = GenerationStatus(current)
    event = GenerationEvent(event)

    if event is E.CONTENT_SAVED:
        target = TRANSITIONS.get((current, event))
        if target is None or not (has_cv and has_cover_letter):
            return current
        return target

    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(current.value, event.value)

    if event is E.GENERATION_SUCCEEDED and not (has_cv or has_cover_letter):
        return current
    return target


def can_transition(current: GenerationStatus | str, event: GenerationEvent | str) -> bool:
    event = GenerationEvent(event)
    if event is E.CONTENT_SAVED:
        return True
    return (GenerationStatus(current), event) in TRANSITIONS


def events_before_generation(current: GenerationStatus | str) -> list[GenerationEvent]:
    """Events the controller fires, in order, before submitting a generation."""
    current = GenerationStatus(current)
    if current is NONE:
        return [E.DOCUMENTS_SUBMITTED_FOR_INPUT, E.GENERATION_STARTED]
    return [E.GENERATION_STARTED]
