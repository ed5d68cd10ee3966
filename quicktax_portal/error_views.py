from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse

logger = logging.getLogger("quicktax.request")


def handle_404(request: HttpRequest, exception=None) -> JsonResponse:
    return JsonResponse({"error": "Not found"}, status=404)


def handle_500(request: HttpRequest) -> JsonResponse:
    logger.error(
        "server_error",
        extra={"status_code": 500, "path": request.path},
    )
    return JsonResponse({"error": "Internal server error"}, status=500)


def healthz(request: HttpRequest) -> JsonResponse:
    return JsonResponse({"status": "ok"})
