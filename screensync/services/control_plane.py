import logging
import threading
import time
from typing import Any, Callable

import requests

from screensync import config

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


class ControlPlaneError(Exception):
    def __init__(self, message: str, status: int | None = None, path: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.path = path

    @property
    def not_found(self) -> bool:
        return self.status == 404


class ControlPlaneClientError(ControlPlaneError):
    """4xx answer. The request itself is wrong, so it is never retried."""


class ControlPlaneTransientError(ControlPlaneError):
    """5xx, timeout or connection failure that outlived the retry budget."""


class ControlPlaneNotConfigured(ControlPlaneError):
    pass


class ControlPlaneClient:
    """
    Thin HTTP client for the signage control-plane API.

    All calls share one bounded permit pool so background sweeps and
    foreground publishes together never exceed `max_concurrent` requests
    in flight. Callers past the pool block until a permit frees.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        max_concurrent: int = 5,
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff: float = 1.0,
        page_size: int = 100,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.token = token.strip()
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff = backoff
        self.page_size = page_size
        self._permits = threading.BoundedSemaphore(max(1, max_concurrent))
        self._sleep = sleep
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Token {self.token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        return session

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        if not self.token:
            raise ControlPlaneNotConfigured("control-plane token is not configured", path=path)

        attempts = self.max_retries + 1
        last_error = "unknown error"
        last_status: int | None = None
        for attempt in range(attempts):
            if attempt:
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "control plane %s %s retry %s/%s in %.1fs (%s)",
                    method,
                    path,
                    attempt,
                    self.max_retries,
                    delay,
                    last_error,
                )
                self._sleep(delay)

            logger.debug("control plane %s %s", method, path)
            with self._permits:
                try:
                    response = self.session.request(
                        method,
                        self._url(path),
                        params=params,
                        json=body,
                        timeout=self.timeout,
                    )
                except requests.Timeout:
                    last_error, last_status = "timeout", None
                    continue
                except requests.ConnectionError as exc:
                    last_error, last_status = f"connection error: {exc}", None
                    continue

            status = response.status_code
            if status in TRANSIENT_STATUSES or status >= 500:
                last_error, last_status = f"HTTP {status}", status
                continue
            if status >= 400:
                raise ControlPlaneClientError(
                    f"HTTP {status}: {_error_text(response)}", status=status, path=path
                )
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return None

        raise ControlPlaneTransientError(
            f"{method} {path} failed after {attempts} attempts: {last_error}",
            status=last_status,
            path=path,
        )

    def _list_all(self, path: str, params: dict[str, Any] | None = None) -> list[dict]:
        results: list[dict] = []
        offset = 0
        while True:
            page = self._request(
                "GET", path, params={**(params or {}), "limit": self.page_size, "offset": offset}
            )
            if isinstance(page, list):
                results.extend(page)
                break
            if not isinstance(page, dict):
                break
            results.extend(page.get("results") or [])
            if not page.get("next"):
                break
            offset += self.page_size
        return results

    # Screens

    def list_screens(self, workspace_id: int | None = None) -> list[dict]:
        params = {"workspace": workspace_id} if workspace_id else None
        return self._list_all("/screens/", params)

    def get_screen(self, screen_id: int) -> dict:
        return self._request("GET", f"/screens/{screen_id}/") or {}

    def set_screen_source(self, screen_id: int, source_type: str, source_id: int) -> dict:
        body = {"screen_content": {"source_type": source_type, "source_id": source_id}}
        return self._request("PATCH", f"/screens/{screen_id}/", body=body) or {}

    def push_screen(self, screen_id: int) -> dict:
        return self._request("POST", f"/screens/{screen_id}/push/") or {}

    # Content nodes

    def get_playlist(self, playlist_id: int) -> dict:
        return self._request("GET", f"/playlists/{playlist_id}/") or {}

    def search_playlists(self, name: str) -> list[dict]:
        return self._list_all("/playlists/", {"search": name})

    def create_playlist(self, name: str, workspace_id: int | None = None) -> dict:
        body: dict[str, Any] = {"name": name, "items": []}
        if workspace_id:
            body["workspace"] = workspace_id
        return self._request("POST", "/playlists/", body=body) or {}

    def replace_playlist_items(self, playlist_id: int, items: list[dict]) -> dict:
        return self._request("PATCH", f"/playlists/{playlist_id}/", body={"items": items}) or {}

    def get_layout(self, layout_id: int) -> dict:
        return self._request("GET", f"/layouts/{layout_id}/") or {}

    def get_schedule(self, schedule_id: int) -> dict:
        return self._request("GET", f"/schedules/{schedule_id}/") or {}

    def get_tagbased_playlist(self, playlist_id: int) -> dict:
        return self._request("GET", f"/tagbased-playlists/{playlist_id}/") or {}

    # Media

    def get_media(self, media_id: int) -> dict:
        return self._request("GET", f"/media/{media_id}/") or {}

    def list_media(self, workspace_id: int | None = None, tags: list[str] | None = None) -> list[dict]:
        params: dict[str, Any] = {}
        if workspace_id:
            params["workspace"] = workspace_id
        if tags:
            params["tags"] = ",".join(tags)
        return self._list_all("/media/", params)


def _error_text(response: requests.Response) -> str:
    text = (response.text or "").strip()
    return text[:300] if text else response.reason or "request rejected"


_client: ControlPlaneClient | None = None
_client_lock = threading.Lock()


def get_control_plane() -> ControlPlaneClient:
    global _client
    with _client_lock:
        if _client is None:
            _client = ControlPlaneClient(
                config.CONTROL_PLANE_URL,
                config.CONTROL_PLANE_TOKEN,
                max_concurrent=config.MAX_CONCURRENT_REQUESTS,
                timeout=config.REQUEST_TIMEOUT_SEC,
                max_retries=config.MAX_RETRIES,
                backoff=config.RETRY_BACKOFF_SEC,
                page_size=config.PAGE_SIZE,
            )
        return _client
