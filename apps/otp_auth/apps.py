from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


class OtpAuthConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.otp_auth"
    verbose_name = "Phone OTP authentication"

    def ready(self) -> None:
        env = (getattr(settings, "ENVIRONMENT", "") or "").strip().lower()
        if env in {"prod", "production"}:
            if getattr(settings, "DEBUG", False):
                raise ImproperlyConfigured("DEBUG must be False in production.")
            provider = (getattr(settings, "OTP_SMS_PROVIDER", "") or "").strip().lower()
            if provider == "console":
                raise ImproperlyConfigured("The console SMS provider cannot be used in production.")
