from __future__ import annotations

import logging
from typing import Any

import requests

from draftpilot.config import Settings
from draftpilot.core.errors import RemoteServiceError

logger = logging.getLogger(__name__)


class ApiClient:
    """Thin JSON client over the job-application backend."""

    def __init__(self, settings: Settings, *, session: requests.Session | None = None):
        self.base_url = settings.api_base_url.rstrip("/")
        self.timeout_sec = settings.http_timeout_sec
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if settings.api_token:
            self.session.headers["Authorization"] = f"Bearer {settings.api_token}"

    def get(self, path: str) -> Any:
        return self.request("GET", path)

    def post(self, path: str, payload: dict[str, Any] | None = None) -> Any:
        return self.request("POST", path, payload=payload or {})

    def put(self, path: str, payload: dict[str, Any]) -> Any:
        return self.request("PUT", path, payload=payload)

    def request(self, method: str, path: str, *, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout_sec)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise RemoteServiceError(f"Request to {path} failed: {exc}") from exc

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning("%s %s -> %s: %s", method, url, response.status_code, message)
            raise RemoteServiceError(message, status_code=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteServiceError(f"Invalid JSON from {path}", status_code=response.status_code) from exc

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("message", "error"):
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value
        return f"HTTP error! status: {response.status_code}"
