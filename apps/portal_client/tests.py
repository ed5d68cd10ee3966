from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import requests
from django.test import SimpleTestCase

from apps.portal_client import session_holder
from apps.portal_client.auth_client import PortalAuthClient, PortalAuthError
from apps.portal_client.session_holder import (
    AuthSession,
    SessionEvent,
    SessionHolder,
    SessionHolderClosed,
)

SESSION = AuthSession(access_token="a1", refresh_token="r1")


def _response(payload, status_code: int = 200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.json.return_value = payload
    return resp


class SessionHolderTests(SimpleTestCase):
    def test_module_is_documented(self):
        self.assertIn("SessionHolder", session_holder.__doc__)

    def test_requires_start(self):
        holder = SessionHolder()
        with self.assertRaises(RuntimeError):
            holder.set_session(SESSION)

    def test_subscribers_see_changes_until_unsubscribed(self):
        seen = []
        with SessionHolder() as holder:
            sub = holder.subscribe(seen.append)
            holder.set_session(SESSION)
            sub.unsubscribe()
            holder.clear()

        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].event, SessionEvent.SIGNED_IN)
        self.assertIs(seen[0].session, SESSION)

    def test_clear_without_session_is_silent(self):
        seen = []
        with SessionHolder() as holder:
            holder.subscribe(seen.append)
            holder.clear()
        self.assertEqual(seen, [])

    def test_listen_yields_events_and_releases_subscription(self):
        holder = SessionHolder().start()
        with holder.listen() as events:
            holder.set_session(SESSION)
            holder.set_session(SESSION, event=SessionEvent.TOKEN_REFRESHED)
            holder.clear()
            received = [next(events).event for _ in range(3)]
            self.assertIsNone(events.next(timeout=0.01))

        self.assertEqual(
            received,
            [SessionEvent.SIGNED_IN, SessionEvent.TOKEN_REFRESHED, SessionEvent.SIGNED_OUT],
        )
        self.assertEqual(holder._subscriptions, [])

    def test_close_drops_session_and_rejects_use(self):
        holder = SessionHolder().start(initial=SESSION)
        self.assertEqual(holder.access_token, "a1")
        holder.close()
        self.assertIsNone(holder.current)
        self.assertFalse(holder.started)
        with self.assertRaises(SessionHolderClosed):
            holder.subscribe(lambda change: None)
        with self.assertRaises(SessionHolderClosed):
            holder.start()

    def test_session_from_payload(self):
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        session = AuthSession.from_payload(
            {"access_token": "a", "refresh_token": "r", "expires_at": int(expires.timestamp())}
        )
        self.assertEqual(session.access_token, "a")
        self.assertFalse(session.is_expired())
        self.assertTrue(session.is_expired(now=expires + timedelta(seconds=1)))


class PortalAuthClientTests(SimpleTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.http = MagicMock()
        self.holder = SessionHolder().start()
        self.client = PortalAuthClient(base_url="https://portal.example.com/", holder=self.holder, http=self.http)

    def tearDown(self) -> None:
        self.holder.close()
        super().tearDown()

    def test_send_otp_posts_phone(self):
        self.http.post.return_value = _response({"success": True, "message": "OTP sent successfully"})
        self.client.send_otp("0501234567")
        args, kwargs = self.http.post.call_args
        self.assertEqual(args[0], "https://portal.example.com/functions/v1/send-otp")
        self.assertEqual(kwargs["json"], {"phone": "0501234567"})
        self.assertIn("timeout", kwargs)

    def test_verify_otp_adopts_session(self):
        seen = []
        self.holder.subscribe(seen.append)
        self.http.post.return_value = _response(
            {"success": True, "session": {"access_token": "a2", "refresh_token": "r2", "expires_at": 2000000000}}
        )

        session = self.client.verify_otp("0501234567", "123456")

        self.assertEqual(self.holder.current, session)
        self.assertEqual(session.refresh_token, "r2")
        self.assertEqual([c.event for c in seen], [SessionEvent.SIGNED_IN])

    def test_server_error_message_is_surfaced(self):
        self.http.post.return_value = _response({"error": "קוד שגוי. נסה שוב."}, status_code=400)
        with self.assertRaises(PortalAuthError) as ctx:
            self.client.verify_otp("0501234567", "000000")
        self.assertEqual(str(ctx.exception), "קוד שגוי. נסה שוב.")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIsNone(self.holder.current)

    def test_cooldown_retry_after(self):
        self.http.post.return_value = _response({"error": "wait", "retry_after": 42}, status_code=429)
        with self.assertRaises(PortalAuthError) as ctx:
            self.client.send_otp("0501234567")
        self.assertEqual(ctx.exception.retry_after, 42)

    def test_network_error(self):
        self.http.post.side_effect = requests.ConnectionError("down")
        with self.assertRaises(PortalAuthError):
            self.client.send_otp("0501234567")

    def test_refresh_and_sign_out(self):
        self.holder.set_session(SESSION)
        self.http.post.return_value = _response({"access": "a3"})

        session = self.client.refresh()
        self.assertEqual(session.access_token, "a3")
        self.assertEqual(session.refresh_token, "r1")
        self.assertEqual(self.http.post.call_args.kwargs["json"], {"refresh": "r1"})

        self.client.sign_out()
        self.assertIsNone(self.holder.current)

    def test_refresh_requires_session(self):
        with self.assertRaises(PortalAuthError):
            self.client.refresh()

    def test_password_sign_in(self):
        self.http.post.return_value = _response({"access": "a4", "refresh": "r4"})
        session = self.client.sign_in_with_password("staff", "secret")
        self.assertEqual(session.access_token, "a4")
        self.assertEqual(self.http.post.call_args.args[0], "https://portal.example.com/api/auth/token/")

    def test_sign_up_adopts_session(self):
        self.http.post.return_value = _response({"success": True, "access": "a5", "refresh": "r5", "user": {"id": 7}}, 201)
        session = self.client.sign_up("dana@example.com", "Tax-Season-2025")
        self.assertEqual(self.holder.current, session)
        self.assertEqual(session.refresh_token, "r5")
        self.assertEqual(self.http.post.call_args.args[0], "https://portal.example.com/api/auth/register/")
        self.assertEqual(
            self.http.post.call_args.kwargs["json"], {"email": "dana@example.com", "password": "Tax-Season-2025"}
        )

    def test_sign_up_conflict(self):
        self.http.post.return_value = _response(
            {"error": "An account with this email already exists.", "field": "email"}, status_code=409
        )
        with self.assertRaises(PortalAuthError) as ctx:
            self.client.sign_up("dana@example.com", "Tax-Season-2025")
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertIsNone(self.holder.current)

    def test_non_object_json_error_uses_fallback(self):
        self.http.post.return_value = _response(["boom"], status_code=502)
        with self.assertRaises(PortalAuthError) as ctx:
            self.client.send_otp("0501234567")
        self.assertEqual(str(ctx.exception), "Failed to send OTP")
        self.assertEqual(ctx.exception.status_code, 502)

    def test_non_object_session_is_rejected(self):
        self.http.post.return_value = _response({"success": True, "session": "a2"})
        with self.assertRaises(PortalAuthError):
            self.client.verify_otp("0501234567", "123456")
        self.assertIsNone(self.holder.current)
