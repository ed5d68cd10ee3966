from __future__ import annotations

import logging
from dataclasses import dataclass

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction

from apps.otp_auth.domain.errors import AccountExistsError, OtpValidationError

logger = logging.getLogger("quicktax.auth")


@dataclass(frozen=True)
class RegisterAccountCommand:
    email: str
    password: str


@dataclass(frozen=True)
class RegisterAccountResult:
    user: object


class RegisterAccountUseCase:
    """E-mail and password sign-up; the e-mail doubles as the username."""

    @staticmethod
    def execute(cmd: RegisterAccountCommand) -> RegisterAccountResult:
        email = (cmd.email or "").strip().lower()
        try:
            validate_email(email)
        except ValidationError as exc:
            raise OtpValidationError("Enter a valid email address.", field="email") from exc

        UserModel = get_user_model()
        if UserModel.objects.filter(username__iexact=email).exists() or UserModel.objects.filter(
            email__iexact=email
        ).exists():
            raise AccountExistsError(field="email")

        try:
            validate_password(cmd.password)
        except ValidationError as exc:
            raise OtpValidationError("; ".join(exc.messages), field="password") from exc

        try:
            with transaction.atomic():
                user = UserModel.objects.create_user(username=email, email=email, password=cmd.password)
        except IntegrityError as exc:
            raise AccountExistsError(field="email") from exc

        logger.info("account_registered", extra={"user_id": user.id})
        return RegisterAccountResult(user=user)
