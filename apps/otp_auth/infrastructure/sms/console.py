from __future__ import annotations

import logging

from apps.otp_auth.domain.ports import SmsSendResult

logger = logging.getLogger("quicktax.sms")


class ConsoleSmsGateway:
    """Development gateway: writes the message to the log instead of sending it."""

    name = "console"

    def send_sms(self, *, phone: str, message: str) -> SmsSendResult:
        logger.warning("console_sms to=%s message=%s", phone, message)
        return SmsSendResult(delivered=True, provider_reference="console")
