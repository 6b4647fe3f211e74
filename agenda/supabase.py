"""
HTTP client for the hosted backend (Supabase).

Two APIs are consumed:
  /auth/v1  - GoTrue: sign-up, password sign-in, token refresh, sign-out,
              recovery, user
  /rest/v1  - PostgREST: table-level select/insert/update/delete/upsert

Every non-2xx answer raises BackendError. Nothing is swallowed here;
callers decide whether a failure is fatal.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the hosted backend rejects or fails a request."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


@dataclass
class Session:
    """An authenticated session as returned by the token endpoint."""
    access_token: str
    refresh_token: str = ""
    expires_in: int = 3600
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        return self.user.get("id", "")

    @property
    def email(self) -> str:
        return self.user.get("email", "") or ""

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", "") or "",
            expires_in=int(data.get("expires_in") or 3600),
            user=data.get("user") or {},
        )


def _error_from_response(r: requests.Response) -> BackendError:
    """Build a BackendError from a GoTrue or PostgREST error body."""
    message = r.reason or f"HTTP {r.status_code}"
    code = None
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = (
            body.get("error_description")
            or body.get("msg")
            or body.get("message")
            or body.get("error")
            or message
        )
        code = body.get("code") or body.get("error_code")
        if code is not None:
            code = str(code)
    return BackendError(str(message), status=r.status_code, code=code)


def _filter_value(value: Any) -> str:
    """Render an equality filter in PostgREST syntax."""
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseClient:
    """Thin requests-based client for the Supabase auth and REST APIs."""

    def __init__(self, url: str, anon_key: str, timeout: float = 10.0):
        self.base_url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.session: Optional[Session] = None
        self.http = requests.Session()
        self._listeners: List[Callable[[str, Optional[Session]], None]] = []

    # ── Plumbing ──────────────────────────────────────────────────────────────

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        token = self.session.access_token if self.session else self.anon_key
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, path: str, params, json,
              headers: Optional[Dict[str, str]]) -> requests.Response:
        try:
            return self.http.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=self._headers(headers),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"Backend unreachable: {e}") from e

    def _request(self, method: str, path: str, *, params=None, json=None,
                 headers: Optional[Dict[str, str]] = None, refresh: bool = True) -> Any:
        r = self._send(method, path, params, json, headers)

        # Expired access token: refresh once and replay with the new one
        if (r.status_code == 401 and refresh
                and self.session is not None and self.session.refresh_token):
            logger.info(f"{method} {path} rejected with 401, refreshing session")
            self.refresh_session()
            r = self._send(method, path, params, json, headers)

        if not r.ok:
            err = _error_from_response(r)
            logger.debug(f"{method} {path} failed: {err.status} {err.message}")
            raise err
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            return None

    def _emit(self, event: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, self.session)
            except Exception as e:
                logger.error(f"Error in auth listener for {event}: {e}")

    # ── Auth ──────────────────────────────────────────────────────────────────

    def on_auth_state_change(self, callback: Callable[[str, Optional[Session]], None]) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def get_session(self) -> Optional[Session]:
        return self.session

    def set_session(self, session: Optional[Session]) -> None:
        """Install (or clear) a session obtained elsewhere."""
        self.session = session
        self._emit("SIGNED_IN" if session else "SIGNED_OUT")

    def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        """Create an account. Returns the user; signs in when the backend auto-confirms."""
        data = self._request("POST", "/auth/v1/signup", json={"email": email, "password": password}) or {}
        if data.get("access_token"):
            self.session = Session.from_response(data)
            self._emit("SIGNED_IN")
            return self.session.user
        return data.get("user") or data

    def sign_in_with_password(self, email: str, password: str) -> Session:
        data = self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            refresh=False,
        ) or {}
        self.session = Session.from_response(data)
        self._emit("SIGNED_IN")
        return self.session

    def refresh_session(self) -> Session:
        if not self.session or not self.session.refresh_token:
            raise BackendError("No session to refresh", status=401)
        data = self._request(
            "POST", "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self.session.refresh_token},
            refresh=False,
        ) or {}
        refreshed = Session.from_response(data)
        if not refreshed.user:
            refreshed.user = self.session.user
        self.session = refreshed
        self._emit("TOKEN_REFRESHED")
        return self.session

    def sign_out(self) -> None:
        """Revoke the session remotely (best effort) and always drop it locally."""
        if self.session:
            try:
                self._request("POST", "/auth/v1/logout")
            except BackendError as e:
                logger.warning(f"Remote sign-out failed: {e.message}")
        self.session = None
        self._emit("SIGNED_OUT")

    def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        self._request("POST", "/auth/v1/recover", params=params, json={"email": email})

    def get_user(self) -> Dict[str, Any]:
        """Current user as seen by the backend. Raises when not authenticated."""
        if not self.session:
            raise BackendError("Usuário não autenticado", status=401)
        return self._request("GET", "/auth/v1/user") or {}

    # ── Tables ────────────────────────────────────────────────────────────────

    def select(self, table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None,
               order: Optional[str] = None, ascending: bool = True,
               limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"select": columns}
        for col, value in (filters or {}).items():
            params[col] = _filter_value(value)
        if order:
            params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return self._request("GET", f"/rest/v1/{table}", params=params) or []

    def insert(self, table: str, rows: Any, returning: bool = True) -> List[Dict[str, Any]]:
        prefer = "return=representation" if returning else "return=minimal"
        return self._request(
            "POST", f"/rest/v1/{table}", json=rows, headers={"Prefer": prefer}
        ) or []

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        params = {col: _filter_value(v) for col, v in filters.items()}
        return self._request(
            "PATCH", f"/rest/v1/{table}", params=params, json=values,
            headers={"Prefer": "return=representation"},
        ) or []

    def delete(self, table: str, filters: Dict[str, Any]) -> None:
        params = {col: _filter_value(v) for col, v in filters.items()}
        self._request("DELETE", f"/rest/v1/{table}", params=params)

    def upsert(self, table: str, rows: Any, on_conflict: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"on_conflict": on_conflict} if on_conflict else None
        return self._request(
            "POST", f"/rest/v1/{table}", params=params, json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        ) or []
