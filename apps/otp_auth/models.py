from django.conf import settings
from django.db import models


class OtpCode(models.Model):
    phone = models.CharField(max_length=32, unique=True)
    code = models.CharField(max_length=12)
    expires_at = models.DateTimeField()
    attempts = models.PositiveIntegerField(default=0)
    verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "otp_codes"
        indexes = [
            models.Index(fields=["expires_at"], name="otp_codes_expires_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.phone} ({'verified' if self.verified else 'pending'})"


class OtpVerificationLog(models.Model):
    phone = models.CharField(max_length=32, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="otp_verifications",
    )
    created = models.BooleanField(default=False)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default="")
    verified_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["phone", "verified_at"], name="otp_log_phone_time_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.phone} @ {self.verified_at}"
