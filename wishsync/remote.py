# wishsync/remote.py
import os
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .errors import AuthError, NetworkError, RemoteError, RemoteWriteError
from .logger import get_logger

logger = get_logger(__name__)

BACKEND_URL = os.getenv("BACKEND_URL", "").strip().rstrip("/")
BACKEND_ANON_KEY = os.getenv("BACKEND_ANON_KEY", "").strip()
BACKEND_TIMEOUT = int(os.getenv("BACKEND_TIMEOUT", "30"))
BACKEND_RETRIES = int(os.getenv("BACKEND_RETRIES", "3"))

# Local storage key holding the serialized auth session
AUTH_STORAGE_KEY = "backend-auth"

AuthListener = Callable[[str, Optional[Dict[str, Any]]], None]


def _error_message(resp) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip() or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        for key in ("msg", "message", "error_description", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {resp.status_code}"


def _json_or(resp, default):
    try:
        data = resp.json()
    except ValueError:
        return default
    return default if data is None else data


def _filter_value(value: Any) -> str:
    # NULL and booleans need the "is" operator; eq.None would match the text "None"
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"is.{str(value).lower()}"
    return f"eq.{value}"


def _eq_filters(filters: Dict[str, Any]) -> Dict[str, str]:
    return {col: _filter_value(value) for col, value in filters.items()}


class BackendClient:
    """
    Thin HTTP client for a backend-as-a-service exposing GoTrue-style auth
    endpoints under /auth/v1 and PostgREST-style tables under /rest/v1.

    Reads are retried on transport failures; writes are sent once.
    """

    def __init__(
        self,
        url: str = BACKEND_URL,
        anon_key: str = BACKEND_ANON_KEY,
        storage=None,
        http: requests.Session | None = None,
        timeout: int = BACKEND_TIMEOUT,
        retries: int = BACKEND_RETRIES,
        retry_wait: float = 1.0,
    ):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.storage = storage
        self.timeout = timeout
        self.http = http or requests.Session()
        self._listeners: List[AuthListener] = []
        self._session: Optional[Dict[str, Any]] = (
            storage.get_item(AUTH_STORAGE_KEY) if storage is not None else None
        )
        self._retrying = Retrying(
            retry=retry_if_exception_type(NetworkError),
            wait=wait_exponential_jitter(initial=retry_wait, max=30, jitter=retry_wait),
            stop=stop_after_attempt(max(1, retries)),
            reraise=True,
        )

    # -- plumbing ---------------------------------------------------------

    @property
    def session(self) -> Optional[Dict[str, Any]]:
        return self._session

    @property
    def access_token(self) -> Optional[str]:
        if not self._session:
            return None
        return self._session.get("access_token")

    def _headers(self, extra: Dict[str, str] | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.url}{path}"
        headers = self._headers(kwargs.pop("headers", None))
        logger.debug("%s %s params=%s", method, url, kwargs.get("params"))
        try:
            return self.http.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    def _read(self, path: str, params: Dict[str, Any] | None = None):
        return self._retrying(self._request, "GET", path, params=params)

    def _set_session(self, session: Optional[Dict[str, Any]]) -> None:
        self._session = session
        if self.storage is None:
            return
        if session:
            self.storage.set_item(AUTH_STORAGE_KEY, session)
        else:
            self.storage.remove_item(AUTH_STORAGE_KEY)

    # -- auth state notifications ------------------------------------------

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str) -> None:
        logger.debug("Auth state change: %s", event)
        for listener in list(self._listeners):
            try:
                listener(event, self._session)
            except Exception as e:
                logger.exception("Auth listener failed on %s: %s", event, e)

    def initialize(self) -> None:
        """Announce the restored session (if any) to listeners."""
        self._emit("INITIAL_SESSION")

    # -- auth ------------------------------------------------------------

    def sign_up(
        self,
        email: str,
        password: str,
        name: str | None = None,
        redirect_to: str | None = None,
    ) -> Optional[Dict[str, Any]]:
        params = {"redirect_to": redirect_to} if redirect_to else None
        resp = self._request(
            "POST",
            "/auth/v1/signup",
            params=params,
            json={"email": email, "password": password, "data": {"name": name}},
        )
        if not resp.ok:
            raise AuthError(_error_message(resp))
        data = _json_or(resp, {})
        user = data.get("user") if "user" in data else data
        if not user or not user.get("id"):
            return None
        return user

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        resp = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if not resp.ok:
            raise AuthError(_error_message(resp))
        session = resp.json()
        if not session or not session.get("user"):
            raise AuthError("Sign-in returned no user")
        self._set_session(session)
        self._emit("SIGNED_IN")
        return session

    def refresh_session(self) -> Dict[str, Any]:
        if not self._session or not self._session.get("refresh_token"):
            raise AuthError("Auth session missing")
        resp = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session["refresh_token"]},
        )
        if not resp.ok:
            raise AuthError(_error_message(resp))
        self._set_session(resp.json())
        self._emit("TOKEN_REFRESHED")
        return self._session

    def get_user(self) -> Optional[Dict[str, Any]]:
        """Return the user behind the current session, or None without one."""
        if not self.access_token:
            return None
        resp = self._read("/auth/v1/user")
        if resp.status_code in (401, 403):
            logger.debug("Auth session missing or expired.")
            return None
        if not resp.ok:
            raise RemoteError(_error_message(resp), resp.status_code)
        return resp.json()

    def update_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request("PUT", "/auth/v1/user", json={"data": data})
        if not resp.ok:
            raise AuthError(_error_message(resp))
        user = resp.json()
        if self._session is not None:
            self._set_session({**self._session, "user": user})
        self._emit("USER_UPDATED")
        return user

    def sign_out(self) -> None:
        if self.access_token:
            try:
                resp = self._request("POST", "/auth/v1/logout")
                if not resp.ok:
                    logger.warning("Remote sign-out failed: %s", _error_message(resp))
            except NetworkError as e:
                logger.warning("Remote sign-out failed: %s", e)
        self._set_session(None)
        self._emit("SIGNED_OUT")

    # -- rows ------------------------------------------------------------

    def select(self, table: str, columns: str = "*", **filters) -> List[Dict[str, Any]]:
        params = {"select": columns, **_eq_filters(filters)}
        resp = self._read(f"/rest/v1/{table}", params=params)
        if not resp.ok:
            raise RemoteError(_error_message(resp), resp.status_code)
        return _json_or(resp, [])

    def select_single(self, table: str, **filters) -> Optional[Dict[str, Any]]:
        rows = self.select(table, **filters)
        return rows[0] if rows else None

    def insert(self, table: str, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        resp = self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        if not resp.ok:
            raise RemoteWriteError(_error_message(resp), resp.status_code)
        data = _json_or(resp, None)
        if isinstance(data, list):
            return data[0] if data else None
        return data

    def update(self, table: str, values: Dict[str, Any], **filters) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update() needs at least one filter")
        resp = self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=_eq_filters(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        if not resp.ok:
            raise RemoteWriteError(_error_message(resp), resp.status_code)
        return _json_or(resp, [])

    def delete(self, table: str, **filters) -> None:
        if not filters:
            raise ValueError("delete() needs at least one filter")
        resp = self._request("DELETE", f"/rest/v1/{table}", params=_eq_filters(filters))
        if not resp.ok:
            raise RemoteWriteError(_error_message(resp), resp.status_code)
