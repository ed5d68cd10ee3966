from __future__ import annotations

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F

from apps.otp_auth.domain.errors import OtpConflictError, OtpPersistenceError
from apps.otp_auth.domain.otp_policies import OTP_MAX_ATTEMPTS
from apps.otp_auth.domain.ports import OtpRecord
from apps.otp_auth.models import OtpCode


def _to_record(row: OtpCode) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        phone=row.phone,
        code=row.code,
        expires_at=row.expires_at,
        attempts=row.attempts,
        verified=row.verified,
        created_at=row.created_at,
    )


class DjangoOtpStore:
    """OTP records in the `otp_codes` table.

    Every mutation is a single conditional UPDATE/DELETE keyed by the row id, so
    concurrent requests never lose an increment and a late writer cannot bring a
    consumed record back.
    """

    def invalidate(self, phone: str) -> None:
        try:
            OtpCode.objects.filter(phone=phone).delete()
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc

    def insert(self, record: OtpRecord) -> OtpRecord:
        try:
            with transaction.atomic():
                row = OtpCode.objects.create(
                    phone=record.phone,
                    code=record.code,
                    expires_at=record.expires_at,
                    attempts=record.attempts,
                    verified=record.verified,
                )
        except IntegrityError as exc:
            raise OtpConflictError() from exc
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc
        return _to_record(row)

    def find_active(self, phone: str) -> OtpRecord | None:
        try:
            row = OtpCode.objects.filter(phone=phone, verified=False).order_by("-id").first()
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc
        return _to_record(row) if row else None

    def get(self, record: OtpRecord) -> OtpRecord | None:
        try:
            row = OtpCode.objects.filter(id=record.id).first()
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc
        return _to_record(row) if row else None

    def increment_attempts(self, record: OtpRecord) -> None:
        # no-op when the row is gone or already at the limit
        try:
            OtpCode.objects.filter(id=record.id, attempts__lt=OTP_MAX_ATTEMPTS).update(
                attempts=F("attempts") + 1
            )
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc

    def mark_verified(self, record: OtpRecord) -> bool:
        """Claim the record; only an unverified row still under the attempt limit can be claimed."""
        try:
            updated = OtpCode.objects.filter(
                id=record.id, verified=False, attempts__lt=OTP_MAX_ATTEMPTS
            ).update(verified=True)
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc
        return updated == 1

    def delete(self, record: OtpRecord) -> None:
        try:
            OtpCode.objects.filter(id=record.id).delete()
        except DatabaseError as exc:
            raise OtpPersistenceError() from exc
