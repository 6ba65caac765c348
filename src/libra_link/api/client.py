"""Async client for the libra-link REST API."""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Optional

import httpx

from libra_link.errors import APIError, MissingTokenError, TransportError, ValidationError
from libra_link.library.database import format_ts

from .types import (
    CreateEbookInput,
    Ebook,
    GoogleDevicePoll,
    GoogleDeviceStart,
    Preferences,
    ReaderState,
    Share,
    SyncEvent,
    User,
)

log = logging.getLogger(__name__)

DEFAULT_ACCESS_COOKIE = "access_token"
DEFAULT_REFRESH_COOKIE = "refresh_token"
DEFAULT_LIST_LIMIT = 20


class ApiClient:
    """Typed wrapper over ``httpx.AsyncClient``.

    Token fields are guarded by a lock that is never held across a request.
    Authenticated calls send a bearer header; refresh and logout carry the
    refresh token as a cookie under the name the server last used.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._host = httpx.URL(self._base_url).host
        self._client = httpx.AsyncClient(
            base_url=self._base_url, timeout=timeout, transport=transport
        )
        self._lock = threading.Lock()
        self._access = ""
        self._refresh = ""
        self._user_id = ""
        self._access_cookie = DEFAULT_ACCESS_COOKIE
        self._refresh_cookie = DEFAULT_REFRESH_COOKIE

    # ── Session ────────────────────────────────────────────

    def set_session(self, access_token: str, refresh_token: str, user_id: str) -> None:
        with self._lock:
            self._access = access_token
            self._refresh = refresh_token
            self._user_id = user_id
            self._write_cookie(self._access_cookie, access_token)
            self._write_cookie(self._refresh_cookie, refresh_token)

    def session(self) -> tuple[str, str, str]:
        with self._lock:
            return self._access, self._refresh, self._user_id

    def clear_session(self) -> None:
        with self._lock:
            self._access = ""
            self._refresh = ""
            self._user_id = ""
            self._write_cookie(self._access_cookie, "")
            self._write_cookie(self._refresh_cookie, "")

    def _set_user_id(self, user_id: str) -> None:
        with self._lock:
            self._user_id = user_id

    def _write_cookie(self, name: str, value: str) -> None:
        # Caller holds the lock.
        if not name:
            return
        self._client.cookies.delete(name)
        if value:
            self._client.cookies.set(name, value, domain=self._host, path="/")

    def _capture_tokens(self, response: httpx.Response) -> None:
        with self._lock:
            for cookie in response.cookies.jar:
                lower = cookie.name.lower()
                if "access" in lower:
                    self._access_cookie = cookie.name
                    self._access = cookie.value or ""
                elif "refresh" in lower:
                    self._refresh_cookie = cookie.name
                    self._refresh = cookie.value or ""
            if self._access:
                self._write_cookie(self._access_cookie, self._access)
            if self._refresh:
                self._write_cookie(self._refresh_cookie, self._refresh)

    def _bearer(self) -> dict[str, str]:
        with self._lock:
            token = self._access
        if not token:
            raise MissingTokenError("missing access token")
        return {"Authorization": f"Bearer {token}"}

    def _refresh_header(self) -> dict[str, str]:
        with self._lock:
            name = self._refresh_cookie or DEFAULT_REFRESH_COOKIE
            token = self._refresh
        if not token:
            raise MissingTokenError("missing refresh token")
        return {"Cookie": f"{name}={token}"}

    # ── Transport ──────────────────────────────────────────

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        expected: int,
        headers: Optional[dict[str, str]] = None,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            log.error("%s timed out: %s", operation, e)
            raise TransportError(operation, f"timeout ({type(e).__name__})") from e
        except httpx.RequestError as e:
            log.error("%s request error: %s %s", operation, type(e).__name__, e)
            raise TransportError(operation, f"{type(e).__name__}: {e}") from e

        if resp.status_code != expected:
            log.error(
                "%s failed: HTTP %s %s", operation, resp.status_code, resp.text[:200]
            )
            raise APIError.from_response(
                operation, resp.status_code, resp.text, resp.reason_phrase
            )
        return resp

    @staticmethod
    def _payload(operation: str, resp: httpx.Response) -> Any:
        """Decoded JSON body with a ``{"data": ...}`` envelope removed."""
        try:
            body = resp.json()
        except ValueError as e:
            log.error("%s returned a non-JSON body", operation)
            raise APIError.from_response(
                operation, resp.status_code, resp.text, resp.reason_phrase
            ) from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    def _user(self, operation: str, resp: httpx.Response) -> User:
        data = self._payload(operation, resp)
        if not isinstance(data, dict) or not data.get("id"):
            raise APIError.from_response(
                operation, resp.status_code, resp.text, resp.reason_phrase
            )
        user = User.from_json(data)
        self._set_user_id(user.id)
        return user

    # ── Auth ───────────────────────────────────────────────

    async def register(self, email: str, username: str, password: str) -> User:
        resp = await self._request(
            "register",
            "POST",
            "/api/v1/auth/register",
            expected=201,
            json={"email": email, "username": username, "password": password},
        )
        self._capture_tokens(resp)
        return self._user("register", resp)

    async def login(self, identifier: str, password: str) -> User:
        resp = await self._request(
            "login",
            "POST",
            "/api/v1/auth/login",
            expected=200,
            json={"identifier": identifier, "password": password},
        )
        self._capture_tokens(resp)
        return self._user("login", resp)

    async def refresh(self) -> User:
        resp = await self._request(
            "refresh",
            "POST",
            "/api/v1/auth/refresh",
            expected=200,
            headers=self._refresh_header(),
            json={},
        )
        self._capture_tokens(resp)
        return self._user("refresh", resp)

    async def logout(self) -> None:
        headers = {**self._bearer(), **self._refresh_header()}
        await self._request(
            "logout", "POST", "/api/v1/auth/logout", expected=200, headers=headers, json={}
        )
        self.clear_session()

    async def me(self) -> User:
        resp = await self._request(
            "me", "GET", "/api/v1/auth/me", expected=200, headers=self._bearer()
        )
        return self._user("me", resp)

    def google_auth_url(self) -> str:
        return f"{self._base_url}/api/v1/auth/google"

    async def start_google_device_auth(self) -> GoogleDeviceStart:
        op = "google device start"
        resp = await self._request(
            op, "POST", "/api/v1/auth/google/device/start", expected=200, json={}
        )
        return GoogleDeviceStart.from_json(self._payload(op, resp) or {})

    async def poll_google_device_auth(self, device_code: str) -> GoogleDevicePoll:
        op = "google device poll"
        resp = await self._request(
            op,
            "POST",
            "/api/v1/auth/google/device/poll",
            expected=200,
            json={"deviceCode": device_code},
        )
        data = self._payload(op, resp) or {}
        poll = GoogleDevicePoll(status=data.get("status") or "")
        result = data.get("result")
        if result:
            poll.user = User.from_json(result.get("user") or {})
            poll.access_token = (result.get("token") or {}).get("token") or ""
            poll.refresh_token = (result.get("refreshToken") or {}).get("token") or ""
            self.set_session(poll.access_token, poll.refresh_token, poll.user.id)
        return poll

    # ── Library ────────────────────────────────────────────

    async def list_ebooks(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Ebook]:
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        resp = await self._request(
            "list ebooks",
            "GET",
            "/api/v1/ebooks",
            expected=200,
            headers=self._bearer(),
            params={"limit": limit},
        )
        rows = self._payload("list ebooks", resp) or []
        return [Ebook.from_json(row) for row in rows]

    async def create_ebook(self, data: CreateEbookInput) -> Ebook:
        resp = await self._request(
            "create ebook",
            "POST",
            "/api/v1/ebooks",
            expected=201,
            headers=self._bearer(),
            json=data.to_json(),
        )
        return Ebook.from_json(self._payload("create ebook", resp) or {})

    # ── Community ──────────────────────────────────────────

    async def list_shares(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Share]:
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        resp = await self._request(
            "list shares",
            "GET",
            "/api/v1/shares",
            expected=200,
            headers=self._bearer(),
            params={"limit": limit},
        )
        rows = self._payload("list shares", resp) or []
        return [Share.from_json(row) for row in rows]

    async def borrow_share(self, share_id: str) -> None:
        share_uuid = parse_uuid(share_id)
        await self._request(
            "borrow share",
            "POST",
            f"/api/v1/shares/{share_uuid}/borrow",
            expected=201,
            headers=self._bearer(),
            json={"legalAcknowledged": True},
        )

    async def upsert_review(self, share_id: str, rating: int, review: str = "") -> None:
        share_uuid = parse_uuid(share_id)
        body: dict[str, Any] = {"rating": rating}
        if review.strip():
            body["reviewText"] = review
        await self._request(
            "upsert review",
            "POST",
            f"/api/v1/shares/{share_uuid}/review",
            expected=200,
            headers=self._bearer(),
            json=body,
        )

    async def report_share(self, share_id: str, reason: str, details: str = "") -> None:
        share_uuid = parse_uuid(share_id)
        body: dict[str, Any] = {"reason": reason}
        if details.strip():
            body["details"] = details
        await self._request(
            "report share",
            "POST",
            f"/api/v1/shares/{share_uuid}/report",
            expected=201,
            headers=self._bearer(),
            json=body,
        )

    # ── Reader ─────────────────────────────────────────────

    async def get_preferences(self) -> Preferences:
        resp = await self._request(
            "get preferences",
            "GET",
            "/api/v1/reader/preferences",
            expected=200,
            headers=self._bearer(),
        )
        return Preferences.from_json(self._payload("get preferences", resp) or {})

    async def patch_preferences(self, prefs: Preferences) -> Preferences:
        resp = await self._request(
            "patch preferences",
            "PATCH",
            "/api/v1/reader/preferences",
            expected=200,
            headers=self._bearer(),
            json=prefs.to_json(),
        )
        return Preferences.from_json(self._payload("patch preferences", resp) or {})

    async def get_reader_state(self) -> ReaderState:
        resp = await self._request(
            "get reader state",
            "GET",
            "/api/v1/reader/state",
            expected=200,
            headers=self._bearer(),
        )
        return ReaderState.from_json(self._payload("get reader state", resp) or {})

    async def patch_reader_state(self, state: ReaderState) -> ReaderState:
        body: dict[str, Any] = {"readingMode": state.reading_mode}
        if state.current_location.strip():
            body["currentLocation"] = state.current_location
        if state.current_ebook_id.strip():
            body["currentEbookId"] = str(parse_uuid(state.current_ebook_id))
        if state.last_opened_at is not None:
            body["lastOpenedAt"] = format_ts(state.last_opened_at)
        resp = await self._request(
            "patch reader state",
            "PATCH",
            "/api/v1/reader/state",
            expected=200,
            headers=self._bearer(),
            json=body,
        )
        return ReaderState.from_json(self._payload("patch reader state", resp) or {})

    # ── Sync ───────────────────────────────────────────────

    async def store_sync_event(self, event: SyncEvent) -> None:
        entity_uuid = parse_uuid(event.entity_id)
        body: dict[str, Any] = {
            "entityType": event.entity_type,
            "entityId": str(entity_uuid),
            "operation": event.operation,
            "idempotencyKey": event.idempotency_key,
            "clientTimestamp": format_ts(event.client_ts),
        }
        if event.base_version is not None:
            body["baseVersion"] = event.base_version
        if event.payload is not None:
            body["payload"] = event.payload
        await self._request(
            "store sync event",
            "POST",
            "/api/v1/sync/events",
            expected=201,
            headers=self._bearer(),
            json=body,
        )

    async def close(self) -> None:
        await self._client.aclose()


def parse_uuid(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except (ValueError, AttributeError, TypeError) as e:
        raise ValidationError(f'invalid uuid "{raw}"') from e
