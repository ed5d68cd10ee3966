from __future__ import annotations

import logging
from datetime import timedelta
from unittest.mock import MagicMock, patch

import requests
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db import IntegrityError
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from apps.otp_auth.application.services.session_service import PhoneSessionService
from apps.otp_auth.application.services.sms_gateway_resolver import SmsGatewayResolver
from apps.otp_auth.application.use_cases.register_account import RegisterAccountCommand, RegisterAccountUseCase
from apps.otp_auth.application.use_cases.send_otp import SendOtpCommand, SendOtpUseCase
from apps.otp_auth.application.use_cases.verify_otp import VerifyOtpCommand, VerifyOtpUseCase
from apps.otp_auth.domain.errors import (
    AccountExistsError,
    IdentityError,
    OtpAttemptsExceededError,
    OtpConfigError,
    OtpConflictError,
    OtpCooldownError,
    OtpDeliveryError,
    OtpExpiredError,
    OtpMismatchError,
    OtpNotFoundError,
    OtpValidationError,
)
from apps.otp_auth.domain.otp_policies import OTP_MAX_ATTEMPTS, generate_otp_code
from apps.otp_auth.domain.policies import identity_email, local_phone, mask_phone, normalize_phone, validate_phone
from apps.otp_auth.domain.ports import OtpRecord, SmsSendResult
from apps.otp_auth.infrastructure.sms.console import ConsoleSmsGateway
from apps.otp_auth.infrastructure.sms.inforu import InforuSmsGateway
from apps.otp_auth.infrastructure.stores.django_store import DjangoOtpStore
from apps.otp_auth.models import OtpCode, OtpVerificationLog
from quicktax_portal.log_format import KeyValueFormatter

PHONE = "+972501234567"
LOCAL = "0501234567"


class RecordingSmsGateway:
    name = "recording"

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = fail

    def send_sms(self, *, phone: str, message: str) -> SmsSendResult:
        if self.fail:
            raise OtpDeliveryError(details="Invalid recipient")
        self.sent.append((phone, message))
        return SmsSendResult(delivered=True)


def _issue(gateway=None, code: str = "123456", phone: str = LOCAL):
    with patch("apps.otp_auth.application.use_cases.send_otp.generate_otp_code", return_value=code):
        return SendOtpUseCase.execute(SendOtpCommand(phone=phone), gateway=gateway or RecordingSmsGateway())


def _verify(code: str, phone: str = LOCAL, **kwargs):
    return VerifyOtpUseCase.execute(VerifyOtpCommand(phone=phone, code=code), **kwargs)


class PhonePolicyTests(TestCase):
    def test_local_mobile_numbers_normalize_to_international(self):
        for raw in ("0501234567", "050-123-4567", " 050 123 4567 ", "(050) 1234567", "00972501234567"):
            self.assertEqual(normalize_phone(raw), PHONE, raw)

    def test_normalization_is_idempotent(self):
        for suffix in ("0000000", "1234567", "9999999", "5351135"):
            for prefix in ("050", "052", "053", "054", "058"):
                once = normalize_phone(prefix + suffix)
                self.assertTrue(once.startswith("+9725"))
                self.assertEqual(normalize_phone(once), once)

    def test_international_numbers_pass_through(self):
        self.assertEqual(normalize_phone("+14155550100"), "+14155550100")

    def test_number_without_prefix_gets_country_code(self):
        self.assertEqual(normalize_phone("501234567"), PHONE)

    @override_settings(OTP_DEFAULT_COUNTRY_CODE="+44")
    def test_country_code_is_configurable(self):
        self.assertEqual(normalize_phone("07700900123"), "+447700900123")

    def test_validate_phone_rejects_empty_and_garbage(self):
        with self.assertRaises(OtpValidationError):
            validate_phone("   ")
        with self.assertRaises(OtpValidationError):
            validate_phone("05-abc")

    def test_local_phone_for_sms_provider(self):
        self.assertEqual(local_phone(PHONE), LOCAL)
        self.assertEqual(local_phone("972501234567"), LOCAL)
        self.assertEqual(local_phone(LOCAL), LOCAL)

    def test_mask_and_identity_email(self):
        self.assertEqual(mask_phone(PHONE), "*********4567")
        self.assertEqual(identity_email(PHONE), "972501234567@phone.quicktax.co.il")

    def test_generated_codes_are_six_digits_without_leading_zero(self):
        for _ in range(500):
            code = generate_otp_code()
            self.assertEqual(len(code), 6)
            self.assertTrue(code.isdigit())
            self.assertGreaterEqual(int(code), 100000)
            self.assertLessEqual(int(code), 999999)


class DjangoOtpStoreTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = DjangoOtpStore()

    def _record(self, **overrides) -> OtpRecord:
        values = {"phone": PHONE, "code": "123456", "expires_at": timezone.now() + timedelta(minutes=5)}
        values.update(overrides)
        return self.store.insert(OtpRecord(**values))

    def test_insert_conflicts_with_existing_record(self):
        self._record()
        with self.assertRaises(OtpConflictError):
            self._record(code="654321")

    def test_invalidate_is_idempotent(self):
        self._record()
        self.store.invalidate(PHONE)
        self.store.invalidate(PHONE)
        self.assertIsNone(self.store.find_active(PHONE))

    def test_increment_from_stale_snapshots_does_not_lose_updates(self):
        record = self._record()
        self.store.increment_attempts(record)
        self.store.increment_attempts(record)
        self.assertEqual(OtpCode.objects.get(id=record.id).attempts, 2)

    def test_increment_after_delete_is_noop(self):
        record = self._record()
        self.store.delete(record)
        self.store.increment_attempts(record)
        self.store.delete(record)
        self.assertFalse(OtpCode.objects.exists())

    def test_mark_verified_is_won_once(self):
        record = self._record()
        self.assertTrue(self.store.mark_verified(record))
        self.assertFalse(self.store.mark_verified(record))
        self.assertIsNone(self.store.find_active(PHONE))

    def test_attempts_stop_at_limit_and_block_claim(self):
        record = self._record()
        for _ in range(OTP_MAX_ATTEMPTS + 2):
            self.store.increment_attempts(record)
        self.assertEqual(self.store.get(record).attempts, OTP_MAX_ATTEMPTS)
        self.assertFalse(self.store.mark_verified(record))
        self.assertFalse(self.store.get(record).verified)


class SendOtpUseCaseTests(TestCase):
    def test_issue_persists_record_and_dispatches_local_phone(self):
        gateway = RecordingSmsGateway()
        before = timezone.now()
        result = _issue(gateway=gateway)

        row = OtpCode.objects.get(phone=PHONE)
        self.assertEqual(result.phone, PHONE)
        self.assertEqual(row.code, "123456")
        self.assertEqual(row.attempts, 0)
        self.assertFalse(row.verified)
        self.assertGreaterEqual(row.expires_at, before + timedelta(minutes=5))
        self.assertLessEqual(row.expires_at, timezone.now() + timedelta(minutes=5))

        self.assertEqual(len(gateway.sent), 1)
        sent_phone, message = gateway.sent[0]
        self.assertEqual(sent_phone, LOCAL)
        self.assertIn("123456", message)
        self.assertIn("QuickTax", message)

    def test_second_issue_replaces_first_code(self):
        _issue(code="111111")
        _issue(code="222222")
        self.assertEqual(OtpCode.objects.filter(phone=PHONE).count(), 1)
        with self.assertRaises((OtpMismatchError, OtpNotFoundError)):
            _verify("111111")

    def test_delivery_failure_still_invalidates_previous_code(self):
        _issue(code="111111")
        with self.assertRaises(OtpDeliveryError):
            _issue(gateway=RecordingSmsGateway(fail=True), code="222222")
        with self.assertRaises(OtpMismatchError):
            _verify("111111")

    @override_settings(OTP_SMS_PROVIDER="inforu", INFORU_API_TOKEN="")
    def test_missing_provider_credentials_fail_before_persisting(self):
        with self.assertRaises(OtpConfigError):
            SendOtpUseCase.execute(SendOtpCommand(phone=LOCAL))
        self.assertFalse(OtpCode.objects.exists())

    @override_settings(OTP_RESEND_COOLDOWN_SECONDS=60)
    def test_resend_within_cooldown_is_rejected(self):
        _issue(code="111111")
        with self.assertRaises(OtpCooldownError) as ctx:
            _issue(code="222222")
        self.assertGreater(ctx.exception.retry_after, 0)
        self.assertLessEqual(ctx.exception.retry_after, 60)
        self.assertEqual(OtpCode.objects.get(phone=PHONE).code, "111111")

    @override_settings(OTP_RESEND_COOLDOWN_SECONDS=60)
    def test_resend_allowed_after_cooldown(self):
        _issue(code="111111")
        OtpCode.objects.filter(phone=PHONE).update(created_at=timezone.now() - timedelta(seconds=61))
        _issue(code="222222")
        self.assertEqual(OtpCode.objects.get(phone=PHONE).code, "222222")

    def test_invalid_phone_is_rejected(self):
        with self.assertRaises(OtpValidationError):
            SendOtpUseCase.execute(SendOtpCommand(phone=""), gateway=RecordingSmsGateway())


class VerifyOtpUseCaseTests(TestCase):
    def test_reference_scenario(self):
        _issue(code="123456")

        with self.assertRaises(OtpMismatchError):
            _verify("111111")
        self.assertEqual(OtpCode.objects.get(phone=PHONE).attempts, 1)

        result = _verify("123456")
        self.assertEqual(result.phone, PHONE)
        self.assertTrue(result.session.access_token)
        self.assertTrue(result.session.refresh_token)
        self.assertTrue(result.session.created)
        self.assertFalse(OtpCode.objects.filter(phone=PHONE).exists())

        with self.assertRaises(OtpNotFoundError):
            _verify("123456")

    def test_expired_code_is_deleted(self):
        _issue(code="123456")
        OtpCode.objects.filter(phone=PHONE).update(expires_at=timezone.now() - timedelta(seconds=1))

        with self.assertRaises(OtpExpiredError):
            _verify("123456")
        self.assertFalse(OtpCode.objects.exists())
        with self.assertRaises(OtpNotFoundError):
            _verify("123456")

    def test_expiry_reported_before_attempts(self):
        _issue(code="123456")
        OtpCode.objects.filter(phone=PHONE).update(
            expires_at=timezone.now() - timedelta(seconds=1), attempts=OTP_MAX_ATTEMPTS
        )
        with self.assertRaises(OtpExpiredError):
            _verify("123456")

    def test_attempt_limit(self):
        _issue(code="123456")
        for _ in range(OTP_MAX_ATTEMPTS):
            with self.assertRaises(OtpMismatchError):
                _verify("000000")
        with self.assertRaises(OtpAttemptsExceededError):
            _verify("123456")
        self.assertFalse(OtpCode.objects.exists())
        with self.assertRaises(OtpNotFoundError):
            _verify("123456")

    def test_missing_code_is_validation_error(self):
        with self.assertRaises(OtpValidationError):
            _verify("  ")

    def test_existing_account_gets_new_session(self):
        _issue(code="123456")
        first = _verify("123456")
        _issue(code="654321")
        second = _verify("654321")

        self.assertEqual(first.session.user_id, second.session.user_id)
        self.assertFalse(second.session.created)
        self.assertEqual(get_user_model().objects.filter(username=PHONE).count(), 1)
        self.assertEqual(OtpVerificationLog.objects.filter(phone=PHONE).count(), 2)

    def test_concurrent_correct_codes_succeed_once(self):
        _issue(code="123456")
        store = DjangoOtpStore()
        snapshot = store.find_active(PHONE)

        # the second request read the record before the first one consumed it
        stale_store = MagicMock(wraps=store)
        stale_store.find_active.return_value = snapshot

        _verify("123456")
        with self.assertRaises(OtpNotFoundError):
            _verify("123456", store=stale_store)
        self.assertEqual(get_user_model().objects.filter(username=PHONE).count(), 1)
        self.assertEqual(OtpVerificationLog.objects.count(), 1)

    def test_parallel_wrong_guesses_cannot_exceed_attempt_limit(self):
        _issue(code="123456")
        store = DjangoOtpStore()
        snapshot = store.find_active(PHONE)

        # every request read the record while it still had zero attempts
        stale_store = MagicMock(wraps=store)
        stale_store.find_active.return_value = snapshot

        for _ in range(OTP_MAX_ATTEMPTS + 2):
            with self.assertRaises(OtpMismatchError):
                _verify("000000", store=stale_store)
        self.assertEqual(OtpCode.objects.get(phone=PHONE).attempts, OTP_MAX_ATTEMPTS)

        with self.assertRaises(OtpAttemptsExceededError):
            _verify("123456", store=stale_store)
        self.assertFalse(OtpCode.objects.exists())
        self.assertFalse(get_user_model().objects.filter(username=PHONE).exists())
        self.assertFalse(OtpVerificationLog.objects.exists())

    def test_late_mismatch_cannot_revive_consumed_record(self):
        _issue(code="123456")
        store = DjangoOtpStore()
        snapshot = store.find_active(PHONE)
        stale_store = MagicMock(wraps=store)
        stale_store.find_active.return_value = snapshot

        _verify("123456")
        with self.assertRaises(OtpMismatchError):
            _verify("999999", store=stale_store)
        self.assertFalse(OtpCode.objects.exists())

    def test_record_is_cleaned_up_when_session_issuance_fails(self):
        _issue(code="123456")
        issuer = MagicMock()
        issuer.resolve_or_create.side_effect = IdentityError("Failed to create user")

        with self.assertRaises(IdentityError):
            _verify("123456", session_issuer=issuer)
        self.assertFalse(OtpCode.objects.exists())
        with self.assertRaises(OtpNotFoundError):
            _verify("123456")


class PhoneSessionServiceTests(TestCase):
    def test_creates_account_with_synthetic_email(self):
        session = PhoneSessionService.resolve_or_create(PHONE)
        user = get_user_model().objects.get(id=session.user_id)
        self.assertEqual(user.username, PHONE)
        self.assertEqual(user.email, "972501234567@phone.quicktax.co.il")
        self.assertFalse(user.has_usable_password())
        self.assertTrue(session.created)
        self.assertGreater(session.expires_in, 0)
        self.assertGreater(session.expires_at, timezone.now())

    def test_concurrent_creation_re_resolves(self):
        existing = get_user_model().objects.create_user(username=PHONE, password=None)
        with patch.object(PhoneSessionService, "_find_user", side_effect=[None, existing]):
            session = PhoneSessionService.resolve_or_create(PHONE)
        self.assertEqual(session.user_id, existing.id)
        self.assertFalse(session.created)
        self.assertEqual(get_user_model().objects.filter(username=PHONE).count(), 1)

    def test_disabled_account_is_refused(self):
        get_user_model().objects.create_user(username=PHONE, password=None, is_active=False)
        with self.assertRaises(IdentityError):
            PhoneSessionService.resolve_or_create(PHONE)


class SmsGatewayTests(TestCase):
    def _response(self, payload, status_code=200):
        resp = MagicMock()
        resp.status_code = status_code
        resp.json.return_value = payload
        resp.text = str(payload)
        return resp

    def test_inforu_request_shape(self):
        gateway = InforuSmsGateway(api_token="abc123", sender="QuickTax", timeout=3)
        with patch("apps.otp_auth.infrastructure.sms.inforu.requests.post") as post:
            post.return_value = self._response({"StatusId": 1, "StatusDescription": "Success"})
            result = gateway.send_sms(phone=LOCAL, message="hello")

        self.assertTrue(result.delivered)
        _, kwargs = post.call_args
        self.assertEqual(kwargs["headers"]["Authorization"], "Basic abc123")
        self.assertEqual(kwargs["timeout"], 3.0)
        self.assertEqual(kwargs["json"]["Data"]["Recipients"], [{"Phone": LOCAL}])
        self.assertEqual(kwargs["json"]["Data"]["Settings"], {"Sender": "QuickTax"})
        self.assertEqual(kwargs["json"]["Data"]["Message"], "hello")

    def test_inforu_keeps_existing_basic_prefix(self):
        gateway = InforuSmsGateway(api_token="Basic abc123")
        with patch("apps.otp_auth.infrastructure.sms.inforu.requests.post") as post:
            post.return_value = self._response({"StatusId": 1})
            gateway.send_sms(phone=LOCAL, message="hello")
        self.assertEqual(post.call_args.kwargs["headers"]["Authorization"], "Basic abc123")

    def test_inforu_non_success_status(self):
        gateway = InforuSmsGateway(api_token="abc123")
        with patch("apps.otp_auth.infrastructure.sms.inforu.requests.post") as post:
            post.return_value = self._response({"StatusId": -2, "StatusDescription": "Invalid recipient"})
            with self.assertRaises(OtpDeliveryError) as ctx:
                gateway.send_sms(phone=LOCAL, message="hello")
        self.assertEqual(ctx.exception.details, "Invalid recipient")

    def test_inforu_non_object_json_is_delivery_error(self):
        gateway = InforuSmsGateway(api_token="abc123")
        with patch("apps.otp_auth.infrastructure.sms.inforu.requests.post") as post:
            post.return_value = self._response(["unexpected"])
            with self.assertRaises(OtpDeliveryError) as ctx:
                gateway.send_sms(phone=LOCAL, message="hello")
        self.assertIn("unexpected response", ctx.exception.details)

    def test_inforu_timeout_is_delivery_error(self):
        gateway = InforuSmsGateway(api_token="abc123")
        with patch("apps.otp_auth.infrastructure.sms.inforu.requests.post", side_effect=requests.Timeout("slow")):
            with self.assertRaises(OtpDeliveryError):
                gateway.send_sms(phone=LOCAL, message="hello")

    @override_settings(INFORU_API_TOKEN="")
    def test_inforu_without_token_is_config_error(self):
        with self.assertRaises(OtpConfigError):
            InforuSmsGateway()

    @override_settings(OTP_SMS_PROVIDER="console")
    def test_resolver_returns_configured_provider(self):
        self.assertIsInstance(SmsGatewayResolver.resolve(), ConsoleSmsGateway)

    def test_resolver_unknown_provider(self):
        with self.assertRaises(OtpConfigError):
            SmsGatewayResolver.resolve("carrier-pigeon")


@override_settings(OTP_SMS_PROVIDER="console")
class OtpApiTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        cache.clear()
        self.client = APIClient()

    def _send(self, phone=LOCAL, code="123456", path="/functions/v1/send-otp"):
        with patch("apps.otp_auth.application.use_cases.send_otp.generate_otp_code", return_value=code):
            return self.client.post(path, data={"phone": phone}, format="json")

    def test_send_otp_success(self):
        response = self._send()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/json")
        self.assertEqual(response.json(), {"success": True, "message": "OTP sent successfully"})
        self.assertTrue(OtpCode.objects.filter(phone=PHONE).exists())

    def test_send_otp_requires_phone(self):
        response = self.client.post("/functions/v1/send-otp", data={}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Phone number is required"})

    def test_send_otp_overlong_phone_reports_length_error(self):
        response = self.client.post("/functions/v1/send-otp", data={"phone": "0" * 40}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertNotEqual(response.json()["error"], "Phone number is required")
        self.assertIn("32", response.json()["error"])
        self.assertFalse(OtpCode.objects.exists())

    def test_verify_overlong_code_reports_length_error(self):
        response = self.client.post(
            "/functions/v1/verify-otp", data={"phone": LOCAL, "code": "1" * 20}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertNotEqual(response.json()["error"], "Phone number and code are required")
        self.assertIn("12", response.json()["error"])

    @override_settings(OTP_SMS_PROVIDER="inforu", INFORU_API_TOKEN="")
    def test_send_otp_without_provider_config(self):
        response = self._send()
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "SMS service not configured")

    @override_settings(OTP_SMS_PROVIDER="inforu", INFORU_API_TOKEN="abc123")
    def test_send_otp_delivery_failure_reports_details(self):
        resp = MagicMock(status_code=200)
        resp.json.return_value = {"StatusId": 0, "StatusDescription": "No credit"}
        with patch("apps.otp_auth.infrastructure.sms.inforu.requests.post", return_value=resp):
            response = self._send()
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to send SMS", "details": "No credit"})

    @override_settings(OTP_RESEND_COOLDOWN_SECONDS=60)
    def test_send_otp_cooldown(self):
        self.assertEqual(self._send().status_code, 200)
        response = self._send()
        self.assertEqual(response.status_code, 429)
        self.assertIn("retry_after", response.json())

    def test_verify_flow(self):
        self._send()

        wrong = self.client.post("/functions/v1/verify-otp", data={"phone": LOCAL, "code": "111111"}, format="json")
        self.assertEqual(wrong.status_code, 400)
        self.assertEqual(wrong.json(), {"error": "קוד שגוי. נסה שוב."})

        ok = self.client.post("/functions/v1/verify-otp", data={"phone": LOCAL, "code": "123456"}, format="json")
        self.assertEqual(ok.status_code, 200)
        payload = ok.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["message"], "Authentication successful")
        for key in ("access_token", "refresh_token", "expires_in", "expires_at"):
            self.assertIn(key, payload["session"])

        again = self.client.post("/functions/v1/verify-otp", data={"phone": LOCAL, "code": "123456"}, format="json")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json(), {"error": "קוד לא נמצא. אנא בקש קוד חדש."})

    def test_verify_requires_phone_and_code(self):
        response = self.client.post("/functions/v1/verify-otp", data={"phone": LOCAL}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Phone number and code are required"})

    def test_verify_identity_failure_is_500(self):
        self._send()
        with patch.object(PhoneSessionService, "_resolve_user", side_effect=IntegrityError("boom")):
            response = self.client.post("/api/otp/verify/", data={"phone": LOCAL, "code": "123456"}, format="json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Failed to create user"})
        self.assertFalse(OtpCode.objects.exists())

    def test_api_paths_and_token_refresh(self):
        self._send(path="/api/otp/send/")
        ok = self.client.post("/api/otp/verify/", data={"phone": LOCAL, "code": "123456"}, format="json")
        self.assertEqual(ok.status_code, 200)

        refresh = self.client.post(
            "/api/auth/token/refresh/",
            data={"refresh": ok.json()["session"]["refresh_token"]},
            format="json",
        )
        self.assertEqual(refresh.status_code, 200)
        self.assertIn("access", refresh.json())

    def test_invalid_refresh_token_uses_error_envelope(self):
        response = self.client.post("/api/auth/token/refresh/", data={"refresh": "nope"}, format="json")
        self.assertEqual(response.status_code, 401)
        self.assertIn("error", response.json())

    def test_malformed_json_body(self):
        response = self.client.post("/functions/v1/send-otp", data="{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_cors_preflight(self):
        response = self.client.options(
            "/functions/v1/send-otp",
            HTTP_ORIGIN="https://portal.example.com",
            HTTP_ACCESS_CONTROL_REQUEST_METHOD="POST",
            HTTP_ACCESS_CONTROL_REQUEST_HEADERS="content-type, x-client-info, apikey",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Access-Control-Allow-Origin"], "*")
        self.assertIn("x-client-info", response["Access-Control-Allow-Headers"])

    def test_healthz(self):
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_register_returns_usable_session(self):
        response = self.client.post(
            "/api/auth/register/",
            data={"email": "Dana@Example.com", "password": "Tax-Season-2025"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        user = get_user_model().objects.get(id=body["user"]["id"])
        self.assertEqual(user.username, "dana@example.com")
        self.assertTrue(user.check_password("Tax-Season-2025"))

        verify = self.client.post("/api/auth/token/verify/", data={"token": body["access"]}, format="json")
        self.assertEqual(verify.status_code, 200)

    def test_register_duplicate_email_conflicts(self):
        get_user_model().objects.create_user(username="dana@example.com", email="dana@example.com", password=None)
        response = self.client.post(
            "/api/auth/register/",
            data={"email": "dana@example.com", "password": "Tax-Season-2025"},
            format="json",
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["field"], "email")

    def test_register_weak_password_is_rejected(self):
        response = self.client.post(
            "/api/auth/register/", data={"email": "dana@example.com", "password": "password"}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["field"], "password")
        self.assertFalse(get_user_model().objects.exists())

    def test_register_requires_email_and_password(self):
        response = self.client.post("/api/auth/register/", data={"email": "dana@example.com"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Email and password are required"})


class RegisterAccountUseCaseTests(TestCase):
    def test_invalid_email(self):
        with self.assertRaises(OtpValidationError) as ctx:
            RegisterAccountUseCase.execute(RegisterAccountCommand(email="not-an-email", password="Tax-Season-2025"))
        self.assertEqual(ctx.exception.field, "email")

    def test_race_on_create_is_conflict(self):
        with patch.object(get_user_model().objects, "create_user", side_effect=IntegrityError("dup")):
            with self.assertRaises(AccountExistsError):
                RegisterAccountUseCase.execute(
                    RegisterAccountCommand(email="dana@example.com", password="Tax-Season-2025")
                )


class KeyValueFormatterTests(SimpleTestCase):
    def test_extra_fields_are_rendered(self):
        formatter = KeyValueFormatter(fmt="%(levelname)s %(message)s")
        record = logging.makeLogRecord(
            {"levelname": "INFO", "msg": "otp_mismatch", "phone": mask_phone(PHONE), "attempts": 2}
        )
        self.assertEqual(formatter.format(record), f"INFO otp_mismatch attempts=2 phone={mask_phone(PHONE)}")

    def test_plain_record_is_unchanged(self):
        formatter = KeyValueFormatter(fmt="%(message)s")
        self.assertEqual(formatter.format(logging.makeLogRecord({"msg": "signed_out"})), "signed_out")
