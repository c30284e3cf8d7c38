from __future__ import annotations

from typing import List, Optional, Protocol

import requests
from pydantic import BaseModel, ConfigDict, Field

from lara.core.errors import MediaServiceError


class Track(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    name: str
    artists: List[str] = Field(default_factory=list)
    album: str = ""
    uri: Optional[str] = None


class MediaService(Protocol):
    def search(self, query: str) -> List[Track]: ...
    def play(self, track_id: str) -> bool: ...


class SpotifyMediaService:
    """
    Spotify Web API: track search plus playback on the user's active device.
    Device selection and account linking stay outside this client.
    """

    def __init__(
        self,
        token: Optional[str],
        *,
        base_url: str = "https://api.spotify.com/v1",
        timeout_seconds: float = 5.0,
        search_limit: int = 5,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.search_limit = max(1, min(int(search_limit), 50))
        self._http = session or requests.Session()

    def _headers(self) -> dict:
        if not self.token:
            raise MediaServiceError("Music playback is not linked.", reason="no token")
        return {"Authorization": f"Bearer {self.token}"}

    def search(self, query: str) -> List[Track]:
        query = (query or "").strip()
        if not query:
            return []
        try:
            r = self._http.get(
                f"{self.base_url}/search",
                params={"q": query, "type": "track", "limit": self.search_limit},
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise MediaServiceError("Failed to search music.", error=str(e)) from e
        if not (200 <= r.status_code < 300):
            raise MediaServiceError("Failed to search music.", status_code=r.status_code)
        items = ((r.json() or {}).get("tracks") or {}).get("items") or []
        out: List[Track] = []
        for it in items:
            try:
                out.append(
                    Track(
                        id=str(it["id"]),
                        name=str(it.get("name") or ""),
                        artists=[str(a.get("name") or "") for a in it.get("artists") or []],
                        album=str((it.get("album") or {}).get("name") or ""),
                        uri=it.get("uri"),
                    )
                )
            except (KeyError, TypeError):
                continue
        return out

    def play(self, track_id: str) -> bool:
        try:
            r = self._http.put(
                f"{self.base_url}/me/player/play",
                json={"uris": [f"spotify:track:{track_id}"]},
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise MediaServiceError(error=str(e)) from e
        # 204 No Content on success; 404 means no active device.
        if r.status_code == 404:
            raise MediaServiceError("No active music device found.", status_code=404)
        return 200 <= r.status_code < 300
