from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class OtpRecord:
    phone: str
    code: str
    expires_at: datetime
    attempts: int = 0
    verified: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class SmsSendResult:
    delivered: bool
    provider_reference: str = ""


@dataclass(frozen=True)
class IssuedSession:
    access_token: str
    refresh_token: str
    expires_at: datetime
    expires_in: int
    user_id: int
    created: bool
    token_type: str = "bearer"


class OtpStorePort(Protocol):
    def invalidate(self, phone: str) -> None:
        ...

    def insert(self, record: OtpRecord) -> OtpRecord:
        ...

    def find_active(self, phone: str) -> OtpRecord | None:
        ...

    def get(self, record: OtpRecord) -> OtpRecord | None:
        ...

    def increment_attempts(self, record: OtpRecord) -> None:
        ...

    def mark_verified(self, record: OtpRecord) -> bool:
        ...

    def delete(self, record: OtpRecord) -> None:
        ...


class SmsGatewayPort(Protocol):
    name: str

    def send_sms(self, *, phone: str, message: str) -> SmsSendResult:
        ...


class SessionIssuerPort(Protocol):
    def resolve_or_create(self, phone: str) -> IssuedSession:
        ...
