from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta

from django.conf import settings
from django.utils import timezone

OTP_TTL = timedelta(minutes=5)
OTP_MAX_ATTEMPTS = 3
OTP_DIGITS = 6

_CODE_FLOOR = 10 ** (OTP_DIGITS - 1)


def generate_otp_code() -> str:
    # 100000-999999 inclusive, never a leading zero
    return str(_CODE_FLOOR + secrets.randbelow(10**OTP_DIGITS - _CODE_FLOOR))


def otp_expires_at(now: datetime | None = None) -> datetime:
    return (now or timezone.now()) + OTP_TTL


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    return (now or timezone.now()) >= expires_at


def attempts_exhausted(attempts: int) -> bool:
    return attempts >= OTP_MAX_ATTEMPTS


def codes_match(supplied: str, expected: str) -> bool:
    return hmac.compare_digest((supplied or "").strip().encode("utf-8"), (expected or "").encode("utf-8"))


def resend_cooldown() -> timedelta:
    seconds = int(getattr(settings, "OTP_RESEND_COOLDOWN_SECONDS", 0) or 0)
    return timedelta(seconds=max(seconds, 0))


def cooldown_remaining(created_at: datetime, now: datetime | None = None) -> int:
    """Seconds left before another code may be issued; 0 when resending is allowed."""
    window = resend_cooldown()
    if not window:
        return 0
    remaining = created_at + window - (now or timezone.now())
    return max(int(remaining.total_seconds() + 0.999), 0)


def sms_message(code: str) -> str:
    template = getattr(settings, "OTP_SMS_TEMPLATE", "") or "קוד האימות שלך ל-QuickTax: {code}"
    return template.format(code=code)
