"""
HTTP client for the notes/identity server.

RemoteStore wraps a requests.Session. Every request carries the current
identity headers from IdentityContext, and every response is fed back
through IdentityContext.adopt() so identity changes made by the server
are picked up immediately.

Status mapping:
    401/403             -> AuthError
    404                 -> NotFoundError
    429                 -> RateLimited
    5xx, network errors -> TransientError
    other 4xx           -> PermanentClientError

delete_note() is the exception: it returns the HTTP status and leaves
classification to the deletion queue.
"""

from typing import Any, Iterable

import requests

from playlist_notes.core.exceptions import (
    AuthError,
    NotFoundError,
    PermanentClientError,
    RateLimited,
    RemoteError,
    TransientError,
)
from playlist_notes.core.logger import get_logger
from playlist_notes.identity.device import IdentityContext
from playlist_notes.state.models import Note


logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"

BOOTSTRAP_PATH = "/api/anon/bootstrap"
RESTORE_PATH = "/api/anon/restore"
CSRF_PATH = "/api/anon/csrf"
ROTATE_PATH = "/api/anon/recovery/rotate"
NOTES_PATH = "/api/db/notes"
TAGS_PATH = "/api/db/tags"


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def error_for_status(status_code: int, message: str, details: dict | None = None) -> RemoteError:
    """Map an HTTP error status to the matching RemoteError subclass."""
    details = dict(details or {})
    details.setdefault("status_code", status_code)
    
    if status_code in (401, 403):
        return AuthError(message, details, status_code=status_code)
    if status_code == 404:
        return NotFoundError(message, details, status_code=status_code)
    if status_code == 429:
        return RateLimited(message, details, status_code=status_code)
    if status_code >= 500:
        return TransientError(message, details, status_code=status_code)
    return PermanentClientError(message, details, status_code=status_code)


class RemoteStore:
    """
    Client for the anon identity and notes/tags endpoints.
    
    Example:
        >>> remote = RemoteStore("https://notes.example.com", context)
        >>> rows = remote.fetch_notes("37i9dQZF1DXcBWIGoYBM5M")
        >>> remote.upsert_tags("t1", ["jazz"], "37i9dQZF1DXcBWIGoYBM5M")
    """
    
    def __init__(
        self,
        base_url: str,
        context: IdentityContext,
        timeout: float = 15.0,
        session: requests.Session | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.context = context
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": "playlist-notes",
        })
    
    def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None
    ) -> tuple[requests.Response, Any]:
        request_headers = self.context.headers()
        if headers:
            request_headers.update(headers)
        
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientError(
                f"{method} {path} failed: {e}",
                details={"path": path, "original_error": str(e)}
            ) from e
        
        body = self._decode(response)
        self.context.adopt(response.headers, body)
        return response, body
    
    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None
    
    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None
    ) -> Any:
        """Send a request and return the decoded body, raising on error status."""
        response, body = self._send(method, path, params=params, json=json, headers=headers)
        
        if response.status_code >= 400:
            message = f"{method} {path} returned {response.status_code}"
            if isinstance(body, dict) and isinstance(body.get("error"), str):
                message = f"{message}: {body['error']}"
            error = error_for_status(response.status_code, message, {"path": path})
            if isinstance(error, RateLimited):
                error.retry_after = _retry_after(response)
            raise error
        
        return body
    
    # Identity endpoints
    
    def bootstrap(self) -> dict[str, Any]:
        return self._request("POST", BOOTSTRAP_PATH, json={}) or {}
    
    def restore(self, recovery_code: str) -> dict[str, Any]:
        return self._request("POST", RESTORE_PATH, json={"recoveryCode": recovery_code}) or {}
    
    def fetch_csrf_token(self) -> str:
        body = self._request("GET", CSRF_PATH)
        token = body.get("csrfToken") if isinstance(body, dict) else None
        return token if isinstance(token, str) else ""
    
    def rotate_recovery_code(self, csrf_token: str) -> dict[str, Any]:
        return self._request(
            "POST", ROTATE_PATH, json={}, headers={CSRF_HEADER: csrf_token}
        ) or {}
    
    # Notes and tags
    
    def fetch_notes(self, playlist_id: str) -> list[Any]:
        """
        Fetch every note row of a playlist for the current identity.
        
        Accepts both {"notes": [...]} and a bare list. Rows are returned
        undecoded; the merge skips malformed ones.
        """
        body = self._request("GET", NOTES_PATH, params={"playlistId": playlist_id})
        if isinstance(body, dict):
            body = body.get("notes")
        if not isinstance(body, list):
            raise PermanentClientError(
                "Notes response is not a list",
                details={"playlist_id": playlist_id}
            )
        return body
    
    def create_note(self, note: Note, playlist_id: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": note.id,
            "trackId": note.track_id,
            "body": note.body,
            "tags": list(note.tags),
            "playlistId": playlist_id,
        }
        if note.timestamp_ms is not None:
            payload["timestampMs"] = note.timestamp_ms
        if note.timestamp_end_ms is not None:
            payload["timestampEndMs"] = note.timestamp_end_ms
        
        body = self._request("POST", NOTES_PATH, json=payload)
        return body if isinstance(body, dict) else {}
    
    def delete_note(self, note_id: str) -> int:
        """
        Delete a note row. Returns the HTTP status code.
        
        Raises:
            TransientError: Only for network-level failures.
        """
        response, _ = self._send("DELETE", NOTES_PATH, params={"id": note_id})
        return response.status_code
    
    def upsert_tags(self, track_id: str, tags: Iterable[str], playlist_id: str | None) -> dict[str, Any]:
        """Replace this device's tag row for a track with the full tag set."""
        body = self._request(
            "POST",
            TAGS_PATH,
            json={"trackId": track_id, "tags": list(tags), "playlistId": playlist_id},
        )
        return body if isinstance(body, dict) else {}
    
    def close(self) -> None:
        self.session.close()
