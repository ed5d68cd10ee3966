from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from django.db import DatabaseError, transaction
from django.utils import timezone

from apps.otp_auth.application.services.sms_gateway_resolver import SmsGatewayResolver
from apps.otp_auth.domain.errors import OtpConflictError, OtpCooldownError, OtpPersistenceError
from apps.otp_auth.domain.otp_policies import cooldown_remaining, generate_otp_code, otp_expires_at, sms_message
from apps.otp_auth.domain.policies import local_phone, mask_phone, validate_phone
from apps.otp_auth.domain.ports import OtpRecord, OtpStorePort, SmsGatewayPort
from apps.otp_auth.infrastructure.stores.django_store import DjangoOtpStore

logger = logging.getLogger("quicktax.otp")


@dataclass(frozen=True)
class SendOtpCommand:
    phone: str


@dataclass(frozen=True)
class SendOtpResult:
    phone: str
    expires_at: datetime
    provider: str


class SendOtpUseCase:
    @staticmethod
    def _replace_record(store: OtpStorePort, record: OtpRecord) -> OtpRecord:
        # a racing issuer may insert between our delete and insert; the latest call wins
        for attempt in range(2):
            try:
                with transaction.atomic():
                    store.invalidate(record.phone)
                    return store.insert(record)
            except OtpConflictError:
                if attempt:
                    raise
            except DatabaseError as exc:
                raise OtpPersistenceError() from exc
        raise OtpConflictError()

    @staticmethod
    def execute(
        cmd: SendOtpCommand,
        *,
        store: OtpStorePort | None = None,
        gateway: SmsGatewayPort | None = None,
    ) -> SendOtpResult:
        phone = validate_phone(cmd.phone)
        store = store or DjangoOtpStore()
        gateway = gateway or SmsGatewayResolver.resolve()
        now = timezone.now()

        existing = store.find_active(phone)
        if existing and existing.created_at:
            retry_after = cooldown_remaining(existing.created_at, now)
            if retry_after:
                logger.info("otp_cooldown", extra={"phone": mask_phone(phone), "retry_after": retry_after})
                raise OtpCooldownError(retry_after=retry_after)

        code = generate_otp_code()
        record = SendOtpUseCase._replace_record(
            store,
            OtpRecord(phone=phone, code=code, expires_at=otp_expires_at(now)),
        )

        gateway.send_sms(phone=local_phone(phone), message=sms_message(code))
        logger.info("otp_sent", extra={"phone": mask_phone(phone), "provider": gateway.name})
        return SendOtpResult(phone=phone, expires_at=record.expires_at, provider=gateway.name)
