from __future__ import annotations

import logging

import requests
from django.conf import settings

from apps.otp_auth.domain.errors import OtpConfigError, OtpDeliveryError
from apps.otp_auth.domain.ports import SmsSendResult

logger = logging.getLogger("quicktax.sms")

DEFAULT_API_URL = "https://capi.inforu.co.il/api/v2/SMS/SendSms"
STATUS_OK = 1


class InforuSmsGateway:
    """InforUMobile SendSms REST API."""

    name = "inforu"

    def __init__(
        self,
        *,
        api_token: str | None = None,
        api_url: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._api_token = api_token if api_token is not None else getattr(settings, "INFORU_API_TOKEN", "")
        self._api_url = api_url or getattr(settings, "INFORU_API_URL", "") or DEFAULT_API_URL
        self._sender = sender or getattr(settings, "INFORU_SENDER", "") or "MyBrand"
        self._timeout = float(timeout or getattr(settings, "OTP_SMS_TIMEOUT_SECONDS", 10) or 10)
        if not (self._api_token or "").strip():
            raise OtpConfigError()

    def _auth_header(self) -> str:
        token = self._api_token.strip()
        # tokens are issued both with and without the scheme prefix
        return token if token.startswith("Basic ") else f"Basic {token}"

    def send_sms(self, *, phone: str, message: str) -> SmsSendResult:
        payload = {
            "Data": {
                "Message": message,
                "Recipients": [{"Phone": phone}],
                "Settings": {"Sender": self._sender},
            }
        }
        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "Authorization": self._auth_header(),
        }
        try:
            resp = requests.post(self._api_url, json=payload, headers=headers, timeout=self._timeout)
        except requests.Timeout as exc:
            raise OtpDeliveryError("SMS provider timed out", details=str(exc)) from exc
        except requests.RequestException as exc:
            raise OtpDeliveryError(details=str(exc)) from exc

        try:
            result = resp.json()
        except ValueError as exc:
            raise OtpDeliveryError(details=f"HTTP {resp.status_code}: {resp.text[:200]}") from exc
        if not isinstance(result, dict):
            raise OtpDeliveryError(details=f"HTTP {resp.status_code}: unexpected response {resp.text[:200]}")

        logger.info(
            "inforu_response",
            extra={"status_id": result.get("StatusId"), "http_status": resp.status_code},
        )
        if result.get("StatusId") != STATUS_OK:
            raise OtpDeliveryError(details=result.get("StatusDescription"))

        data = result.get("Data")
        reference = data.get("RequestId") if isinstance(data, dict) else ""
        return SmsSendResult(delivered=True, provider_reference=str(reference or ""))
