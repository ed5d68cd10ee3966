from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from apps.otp_auth.application.use_cases.register_account import RegisterAccountCommand, RegisterAccountUseCase
from apps.otp_auth.application.use_cases.send_otp import SendOtpCommand, SendOtpUseCase
from apps.otp_auth.application.use_cases.verify_otp import VerifyOtpCommand, VerifyOtpUseCase
from apps.otp_auth.domain.errors import (
    AccountExistsError,
    OtpConfigError,
    OtpCooldownError,
    OtpDeliveryError,
    OtpFlowError,
    OtpServiceError,
    OtpValidationError,
)
from apps.otp_auth.interfaces.api.serializers import (
    RegisterAccountSerializer,
    SendOtpSerializer,
    VerifyOtpSerializer,
    session_payload,
)

logger = logging.getLogger("quicktax.otp")


def _client_ip(request) -> str | None:
    value = request.META.get("HTTP_X_FORWARDED_FOR") or request.META.get("REMOTE_ADDR")
    if not value:
        return None
    return value.split(",")[0].strip() or None


_MISSING_CODES = {"required", "blank", "null"}


def _invalid_input(serializer, *, required_message: str) -> Response:
    errors = [error for field_errors in serializer.errors.values() for error in field_errors]
    if not errors or any(getattr(error, "code", None) in _MISSING_CODES for error in errors):
        return _error(message=required_message)
    return _error(message=str(errors[0]))


def _error(*, message: str, http_status: int = status.HTTP_400_BAD_REQUEST, **extra) -> Response:
    payload: dict = {"error": message}
    payload.update({key: value for key, value in extra.items() if value is not None})
    return Response(payload, status=http_status)


class SendOtpAPI(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "otp"

    def post(self, request):
        serializer = SendOtpSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid_input(serializer, required_message="Phone number is required")

        try:
            SendOtpUseCase.execute(SendOtpCommand(phone=serializer.validated_data["phone"]))
        except OtpValidationError as exc:
            return _error(message=str(exc))
        except OtpCooldownError as exc:
            return _error(message=str(exc), retry_after=exc.retry_after, http_status=status.HTTP_429_TOO_MANY_REQUESTS)
        except OtpConfigError as exc:
            logger.error("otp_send_config_error", extra={"error": str(exc)})
            return _error(message=str(exc), http_status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except OtpDeliveryError as exc:
            logger.error("otp_send_delivery_error", extra={"details": exc.details})
            return _error(message=str(exc), details=exc.details, http_status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except OtpServiceError as exc:
            logger.error("otp_send_failed", extra={"error": str(exc)})
            return _error(message=str(exc), http_status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"success": True, "message": "OTP sent successfully"}, status=status.HTTP_200_OK)


class VerifyOtpAPI(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "otp"

    def post(self, request):
        serializer = VerifyOtpSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid_input(serializer, required_message="Phone number and code are required")

        try:
            result = VerifyOtpUseCase.execute(
                VerifyOtpCommand(
                    phone=serializer.validated_data["phone"],
                    code=serializer.validated_data["code"],
                    ip_address=_client_ip(request),
                    user_agent=request.META.get("HTTP_USER_AGENT", ""),
                )
            )
        except (OtpValidationError, OtpFlowError) as exc:
            return _error(message=str(exc))
        except OtpServiceError as exc:
            logger.error("otp_verify_failed", extra={"error": str(exc)})
            return _error(message=str(exc), http_status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response(
            {
                "success": True,
                "session": session_payload(result.session),
                "message": "Authentication successful",
            },
            status=status.HTTP_200_OK,
        )


class RegisterAccountAPI(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def post(self, request):
        serializer = RegisterAccountSerializer(data=request.data)
        if not serializer.is_valid():
            return _invalid_input(serializer, required_message="Email and password are required")

        try:
            result = RegisterAccountUseCase.execute(
                RegisterAccountCommand(
                    email=serializer.validated_data["email"],
                    password=serializer.validated_data["password"],
                )
            )
        except AccountExistsError as exc:
            return _error(message=str(exc), field=exc.field, http_status=status.HTTP_409_CONFLICT)
        except OtpValidationError as exc:
            return _error(message=str(exc), field=exc.field)

        refresh = RefreshToken.for_user(result.user)
        return Response(
            {
                "success": True,
                "access": str(refresh.access_token),
                "refresh": str(refresh),
                "user": {"id": result.user.id},
            },
            status=status.HTTP_201_CREATED,
        )
