from django.contrib import admin

from .models import OtpCode, OtpVerificationLog


@admin.register(OtpCode)
class OtpCodeAdmin(admin.ModelAdmin):
    list_display = ("id", "phone", "attempts", "verified", "expires_at", "created_at")
    search_fields = ("phone",)
    list_filter = ("verified",)
    exclude = ("code",)


@admin.register(OtpVerificationLog)
class OtpVerificationLogAdmin(admin.ModelAdmin):
    list_display = ("id", "phone", "user", "created", "ip_address", "verified_at")
    search_fields = ("phone", "user__username")
    list_filter = ("created",)
    list_select_related = ("user",)
