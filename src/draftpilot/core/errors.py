from __future__ import annotations


class DraftpilotError(Exception):
    """Base class for errors raised by the orchestration layer."""


class PreconditionError(DraftpilotError, ValueError):
    """An action was rejected locally before any remote call was made."""


class InvalidTransitionError(DraftpilotError, ValueError):
    def __init__(self, current: str, event: str):
        super().__init__(f"event '{event}' is not allowed from status '{current}'")
        self.current = current
        self.event = event


class RemoteServiceError(DraftpilotError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
