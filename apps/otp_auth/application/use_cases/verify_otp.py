from __future__ import annotations

import logging
from dataclasses import dataclass

from django.utils import timezone

from apps.otp_auth.application.services.session_service import PhoneSessionService
from apps.otp_auth.domain.errors import (
    OtpAttemptsExceededError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
    OtpPersistenceError,
    OtpValidationError,
)
from apps.otp_auth.domain.otp_policies import attempts_exhausted, codes_match, is_expired
from apps.otp_auth.domain.policies import mask_phone, validate_phone
from apps.otp_auth.domain.ports import IssuedSession, OtpRecord, OtpStorePort, SessionIssuerPort
from apps.otp_auth.infrastructure.stores.django_store import DjangoOtpStore
from apps.otp_auth.models import OtpVerificationLog

logger = logging.getLogger("quicktax.otp")


@dataclass(frozen=True)
class VerifyOtpCommand:
    phone: str
    code: str
    ip_address: str | None = None
    user_agent: str = ""


@dataclass(frozen=True)
class VerifyOtpResult:
    phone: str
    session: IssuedSession


class VerifyOtpUseCase:
    @staticmethod
    def _cleanup(store: OtpStorePort, record: OtpRecord) -> None:
        # the record is already claimed (verified), so a failed delete cannot be replayed
        try:
            store.delete(record)
        except OtpPersistenceError:
            logger.exception("otp_cleanup_failed", extra={"phone": mask_phone(record.phone)})

    @staticmethod
    def execute(
        cmd: VerifyOtpCommand,
        *,
        store: OtpStorePort | None = None,
        session_issuer: SessionIssuerPort | None = None,
    ) -> VerifyOtpResult:
        phone = validate_phone(cmd.phone)
        code = (cmd.code or "").strip()
        if not code:
            raise OtpValidationError("Phone number and code are required", field="code")

        store = store or DjangoOtpStore()
        session_issuer = session_issuer or PhoneSessionService
        masked = mask_phone(phone)

        record = store.find_active(phone)
        if record is None:
            logger.info("otp_not_found", extra={"phone": masked})
            raise OtpNotFoundError()

        if is_expired(record.expires_at, timezone.now()):
            store.delete(record)
            logger.info("otp_expired", extra={"phone": masked})
            raise OtpExpiredError()

        if attempts_exhausted(record.attempts):
            store.delete(record)
            logger.info("otp_attempts_exceeded", extra={"phone": masked, "attempts": record.attempts})
            raise OtpAttemptsExceededError()

        if not codes_match(code, record.code):
            store.increment_attempts(record)
            logger.info("otp_mismatch", extra={"phone": masked, "attempts": record.attempts + 1})
            raise OtpMismatchError()

        if not store.mark_verified(record):
            # the snapshot is stale: either a concurrent request consumed the code
            # or parallel wrong guesses used up the attempts
            current = store.get(record)
            if current is not None and not current.verified and attempts_exhausted(current.attempts):
                store.delete(current)
                logger.info("otp_attempts_exceeded", extra={"phone": masked, "attempts": current.attempts})
                raise OtpAttemptsExceededError()
            raise OtpNotFoundError()

        try:
            session = session_issuer.resolve_or_create(phone)
        finally:
            VerifyOtpUseCase._cleanup(store, record)

        OtpVerificationLog.objects.create(
            phone=phone,
            user_id=session.user_id,
            created=session.created,
            ip_address=cmd.ip_address,
            user_agent=cmd.user_agent or "",
        )
        logger.info("otp_verified", extra={"phone": masked, "user_id": session.user_id, "new_account": session.created})
        return VerifyOtpResult(phone=phone, session=session)
