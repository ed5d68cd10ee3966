from __future__ import annotations

import re

from django.conf import settings

from .errors import OtpValidationError

_PHONE_RE = re.compile(r"^\+[0-9]{8,15}$")
_STRIP_RE = re.compile(r"[\s\-().]+")
_DEFAULT_COUNTRY_CODE = "972"


def country_code() -> str:
    value = str(getattr(settings, "OTP_DEFAULT_COUNTRY_CODE", _DEFAULT_COUNTRY_CODE) or _DEFAULT_COUNTRY_CODE)
    return value.lstrip("+")


def normalize_phone(raw: str) -> str:
    phone = _STRIP_RE.sub("", (raw or "").strip())
    if not phone:
        return ""
    if phone.startswith("00"):
        phone = f"+{phone[2:]}"
    if phone.startswith("+"):
        return phone
    if phone.startswith("0"):
        return f"+{country_code()}{phone[1:]}"
    return f"+{country_code()}{phone}"


def validate_phone(raw: str) -> str:
    phone = normalize_phone(raw)
    if not phone:
        raise OtpValidationError("Phone number is required", field="phone")
    if not _PHONE_RE.match(phone):
        raise OtpValidationError("Phone must contain 8 to 15 digits.", field="phone")
    return phone


def local_phone(phone: str) -> str:
    """National format expected by the SMS provider, e.g. +972525351135 -> 0525351135."""
    value = _STRIP_RE.sub("", (phone or "").strip())
    prefix = country_code()
    if value.startswith(f"+{prefix}"):
        return f"0{value[len(prefix) + 1:]}"
    if value.startswith(prefix):
        return f"0{value[len(prefix):]}"
    return value


def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "*" * len(phone)
    return f"{'*' * (len(phone) - 4)}{phone[-4:]}"


def identity_email(phone: str) -> str:
    domain = getattr(settings, "OTP_IDENTITY_EMAIL_DOMAIN", "") or "phone.quicktax.co.il"
    return f"{phone.lstrip('+')}@{domain}"
