from __future__ import annotations

from rest_framework import serializers


class SendOtpSerializer(serializers.Serializer):
    phone = serializers.CharField(max_length=32, trim_whitespace=True)


class VerifyOtpSerializer(serializers.Serializer):
    phone = serializers.CharField(max_length=32, trim_whitespace=True)
    code = serializers.CharField(max_length=12, trim_whitespace=True)


def session_payload(session) -> dict:
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "token_type": session.token_type,
        "expires_in": session.expires_in,
        "expires_at": int(session.expires_at.timestamp()),
        "user": {"id": session.user_id},
    }


class RegisterAccountSerializer(serializers.Serializer):
    email = serializers.EmailField(max_length=254)
    password = serializers.CharField(max_length=128, write_only=True, trim_whitespace=False)
