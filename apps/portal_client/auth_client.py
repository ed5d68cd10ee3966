from __future__ import annotations

import logging

import requests

from apps.portal_client.session_holder import AuthSession, SessionEvent, SessionHolder

logger = logging.getLogger("quicktax.client")

DEFAULT_TIMEOUT = 15.0


class PortalAuthError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, retry_after: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class PortalAuthClient:
    """Sign-in calls of the customer portal; the resulting session lands in `holder`."""

    def __init__(
        self,
        *,
        base_url: str,
        holder: SessionHolder,
        functions_path: str = "/functions/v1",
        api_path: str = "/api",
        timeout: float = DEFAULT_TIMEOUT,
        http: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._functions_path = "/" + functions_path.strip("/")
        self._api_path = "/" + api_path.strip("/")
        self._timeout = timeout
        self._http = http or requests.Session()
        self.holder = holder

    def _post(self, url: str, payload: dict, *, fallback: str) -> dict:
        try:
            resp = self._http.post(url, json=payload, timeout=self._timeout)
        except requests.RequestException as exc:
            raise PortalAuthError(str(exc) or "Network error") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not resp.ok:
            message = data.get("error") or data.get("detail") or fallback
            raise PortalAuthError(
                str(message),
                status_code=resp.status_code,
                retry_after=data.get("retry_after"),
            )
        return data

    def send_otp(self, phone: str) -> None:
        self._post(f"{self._base_url}{self._functions_path}/send-otp", {"phone": phone}, fallback="Failed to send OTP")

    def verify_otp(self, phone: str, code: str) -> AuthSession:
        data = self._post(
            f"{self._base_url}{self._functions_path}/verify-otp",
            {"phone": phone, "code": code},
            fallback="Failed to verify OTP",
        )
        payload = data.get("session")
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise PortalAuthError("Server did not return a session")
        session = AuthSession.from_payload(payload)
        self.holder.set_session(session, event=SessionEvent.SIGNED_IN)
        return session

    def sign_in_with_password(self, username: str, password: str) -> AuthSession:
        data = self._post(
            f"{self._base_url}{self._api_path}/auth/token/",
            {"username": username, "password": password},
            fallback="Invalid credentials",
        )
        session = AuthSession.from_payload(data)
        self.holder.set_session(session, event=SessionEvent.SIGNED_IN)
        return session

    def sign_up(self, email: str, password: str) -> AuthSession:
        data = self._post(
            f"{self._base_url}{self._api_path}/auth/register/",
            {"email": email, "password": password},
            fallback="Failed to create account",
        )
        session = AuthSession.from_payload(data)
        if not session.access_token:
            raise PortalAuthError("Server did not return a session")
        self.holder.set_session(session, event=SessionEvent.SIGNED_IN)
        return session

    def refresh(self) -> AuthSession:
        current = self.holder.current
        if current is None:
            raise PortalAuthError("Not signed in")
        data = self._post(
            f"{self._base_url}{self._api_path}/auth/token/refresh/",
            {"refresh": current.refresh_token},
            fallback="Session expired",
        )
        session = AuthSession(
            access_token=str(data.get("access") or ""),
            refresh_token=str(data.get("refresh") or current.refresh_token),
        )
        self.holder.set_session(session, event=SessionEvent.TOKEN_REFRESHED)
        return session

    def sign_out(self) -> None:
        self.holder.clear()
        logger.info("signed_out")
