from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone

from django.contrib.auth import get_user_model
from django.db import DatabaseError, IntegrityError, transaction
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken

from apps.otp_auth.domain.errors import IdentityError
from apps.otp_auth.domain.policies import identity_email
from apps.otp_auth.domain.ports import IssuedSession

logger = logging.getLogger("quicktax.otp")


class PhoneSessionService:
    """Maps a verified phone to an account and mints its token pair."""

    @staticmethod
    def _find_user(phone: str):
        UserModel = get_user_model()
        return UserModel.objects.filter(username=phone).first()

    @staticmethod
    def _resolve_user(phone: str) -> tuple[object, bool]:
        user = PhoneSessionService._find_user(phone)
        if user:
            return user, False

        UserModel = get_user_model()
        try:
            with transaction.atomic():
                user = UserModel.objects.create_user(username=phone, email=identity_email(phone), password=None)
            return user, True
        except IntegrityError:
            # another request created the account between lookup and insert
            user = PhoneSessionService._find_user(phone)
            if not user:
                raise
            return user, False

    @staticmethod
    def resolve_or_create(phone: str) -> IssuedSession:
        try:
            user, created = PhoneSessionService._resolve_user(phone)
        except DatabaseError as exc:
            raise IdentityError("Failed to create user") from exc

        if not user.is_active:
            raise IdentityError("Account is disabled")

        try:
            refresh = RefreshToken.for_user(user)
            access = refresh.access_token
        except TokenError as exc:
            raise IdentityError("Failed to create session") from exc

        expires_at = datetime.fromtimestamp(int(access["exp"]), tz=dt_timezone.utc)
        expires_in = int(access.lifetime.total_seconds())
        if created:
            logger.info("identity_created", extra={"user_id": user.id})
        return IssuedSession(
            access_token=str(access),
            refresh_token=str(refresh),
            expires_at=expires_at,
            expires_in=expires_in,
            user_id=user.id,
            created=created,
        )
