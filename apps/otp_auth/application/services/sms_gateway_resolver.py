from __future__ import annotations

import importlib

from django.conf import settings

from apps.otp_auth.domain.errors import OtpConfigError
from apps.otp_auth.domain.ports import SmsGatewayPort

DEFAULT_REGISTRY = {
    "inforu": "apps.otp_auth.infrastructure.sms.inforu.InforuSmsGateway",
    "console": "apps.otp_auth.infrastructure.sms.console.ConsoleSmsGateway",
}


class SmsGatewayResolver:
    @staticmethod
    def resolve(provider: str | None = None) -> SmsGatewayPort:
        name = (provider or getattr(settings, "OTP_SMS_PROVIDER", "") or "inforu").strip().lower()
        registry = {**DEFAULT_REGISTRY, **getattr(settings, "OTP_SMS_PROVIDER_REGISTRY", {})}
        dotted = registry.get(name)
        if not dotted:
            raise OtpConfigError(f"No SMS provider configured for '{name}'.")
        module_path, class_name = dotted.rsplit(".", 1)
        module = importlib.import_module(module_path)
        gateway_cls = getattr(module, class_name)
        return gateway_cls()
