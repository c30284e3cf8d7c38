from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import requests

from lara.core.errors import PersistenceError


class PersistenceService(Protocol):
    def create_task(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...
    def create_reminder(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...


class RestPersistenceService:
    """
    Task/reminder writes against the application's REST API (POST {base}/tasks, POST {base}/reminders).
    Failures raise PersistenceError; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = float(timeout_seconds)
        self._http = session or requests.Session()

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            r = self._http.post(url, json=body, headers=headers, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise PersistenceError(error=str(e), path=path) from e
        if not (200 <= r.status_code < 300):
            raise PersistenceError(status_code=r.status_code, path=path)
        try:
            data = r.json()
        except ValueError:
            data = {}
        return data if isinstance(data, dict) else {"data": data}

    def create_task(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("tasks", {"user_id": user_id, **fields})

    def create_reminder(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("reminders", {"user_id": user_id, **fields})
