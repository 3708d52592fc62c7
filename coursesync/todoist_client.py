from __future__ import annotations

import logging
from typing import Any

import requests

from coursesync.errors import RemoteApiError, RemoteNotFound
from coursesync.models import TodoistConfig

logger = logging.getLogger(__name__)


class TodoistClient:
    def __init__(self, config: TodoistConfig) -> None:
        self.config = config

    def _endpoint(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
        }
        headers.update(extra or {})
        return headers

    def _request(self, method: str, path: str, *, headers: dict[str, str] | None = None, **kwargs: Any) -> requests.Response:
        url = self._endpoint(path)
        try:
            response = requests.request(
                method,
                url,
                headers=self._headers(headers),
                timeout=self.config.timeout_seconds,
                **kwargs,
            )
        except requests.Timeout as exc:
            raise RemoteApiError(f"{method} {path} timed out", timeout=True) from exc
        except requests.RequestException as exc:
            raise RemoteApiError(f"{method} {path} failed: {type(exc).__name__}: {exc}") from exc
        if response.status_code == 404:
            raise RemoteNotFound(f"{method} {path} returned 404", status=404)
        if not response.ok:
            raise RemoteApiError(
                f"HTTP {response.status_code}: {response.text[:300]}",
                status=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: requests.Response, label: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteApiError(
                f"{label} response is not JSON: {response.text[:100]!r}",
                status=response.status_code,
            ) from exc

    def list_active_tasks(self, filter_tag: str) -> list[dict[str, Any]]:
        response = self._request("GET", "tasks", params={"filter": f"@{filter_tag}"})
        payload = self._json(response, "GET tasks")
        if isinstance(payload, dict):
            # Paginated API versions wrap tasks in "results".
            payload = payload.get("results", [])
        if not isinstance(payload, list):
            raise RemoteApiError("Task list response is not a list.")
        return [item for item in payload if isinstance(item, dict)]

    def create_task(self, payload: dict[str, Any], idempotency_key: str) -> dict[str, Any]:
        response = self._request(
            "POST",
            "tasks",
            json=payload,
            headers={"X-Request-Id": idempotency_key},
        )
        created = self._json(response, "POST tasks")
        if not isinstance(created, dict) or not created.get("id"):
            raise RemoteApiError("Create response carries no task id.")
        return created

    def update_task(self, task_id: str, payload: dict[str, Any]) -> None:
        self._request("POST", f"tasks/{task_id}", json=payload)
