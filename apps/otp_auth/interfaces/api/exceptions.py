from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.exceptions import APIException, Throttled
from rest_framework.response import Response
from rest_framework.views import exception_handler, set_rollback

logger = logging.getLogger("quicktax.request")


def _message(detail) -> str:
    if isinstance(detail, dict):
        for value in detail.values():
            return _message(value)
        return ""
    if isinstance(detail, (list, tuple)):
        return _message(detail[0]) if detail else ""
    return str(detail)


def json_exception_handler(exc, context):
    """Render every failure as the `{"error": ...}` envelope used by the OTP endpoints."""
    response = exception_handler(exc, context)

    if response is None:
        view = context.get("view")
        logger.exception(
            "unhandled_api_error",
            exc_info=exc,
            extra={"view": type(view).__name__ if view else "", "status_code": 500},
        )
        set_rollback()
        return Response({"error": "Internal server error"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    payload = {"error": _message(response.data) if isinstance(exc, APIException) else str(exc)}
    if isinstance(exc, Throttled) and exc.wait is not None:
        payload["retry_after"] = int(exc.wait)
    response.data = payload
    return response
