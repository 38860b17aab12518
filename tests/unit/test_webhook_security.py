"""
Tests for webhook signature verification.
"""

import base64
import hashlib
import hmac
from datetime import datetime

from discubot.utils.webhook_security import (
    parse_event_time,
    parse_timestamp,
    safe_compare,
    validate_notion_timestamp,
    validate_timestamp,
    verify_mailgun_signature,
    verify_notion_signature,
    verify_slack_signature,
    verify_svix_signature,
)

NOW = 1_700_000_000.0


def slack_headers(body: bytes, secret: str, timestamp: int) -> dict:
    base = f"v0:{timestamp}:".encode() + body
    signature = "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()
    return {"x-slack-request-timestamp": str(timestamp), "x-slack-signature": signature}


class TestSafeCompare:
    """Tests for constant-time comparison."""

    def test_equal_values(self):
        assert safe_compare("abc", b"abc")

    def test_different_lengths(self):
        assert not safe_compare("abc", "abcd")


class TestTimestamps:
    """Tests for timestamp parsing and the replay window."""

    def test_seconds_and_milliseconds(self):
        assert parse_timestamp("1700000000") == NOW
        assert parse_timestamp(1_700_000_000_000) == NOW

    def test_iso_string(self):
        assert parse_timestamp("2023-11-14T22:13:20Z") == NOW

    def test_unparseable(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None

    def test_event_time(self):
        assert parse_event_time("2023-11-14T22:13:20Z") == datetime(2023, 11, 14, 22, 13, 20)
        assert parse_event_time(1_700_000_000_000) == datetime(2023, 11, 14, 22, 13, 20)
        assert parse_event_time(1e300).year >= 2024
        assert parse_event_time("yesterday").year >= 2024

    def test_tolerance_window(self):
        assert validate_timestamp(NOW - 299, now=NOW)
        assert not validate_timestamp(NOW - 301, now=NOW)
        assert not validate_timestamp(NOW + 301, now=NOW)

    def test_notion_missing_timestamp_is_allowed(self):
        assert validate_notion_timestamp(None)
        assert validate_notion_timestamp("")

    def test_notion_stale_timestamp_is_rejected(self):
        assert not validate_notion_timestamp("2020-01-01T00:00:00Z", now=NOW)


class TestSlackSignature:
    """Tests for Slack request signing."""

    def test_valid_signature(self):
        body = b'{"type":"event_callback"}'
        headers = slack_headers(body, "slack-secret", int(NOW))
        assert verify_slack_signature(body, headers, "slack-secret", now=NOW)

    def test_tampered_body(self):
        headers = slack_headers(b'{"a":1}', "slack-secret", int(NOW))
        assert not verify_slack_signature(b'{"a":2}', headers, "slack-secret", now=NOW)

    def test_stale_timestamp(self):
        body = b"{}"
        headers = slack_headers(body, "slack-secret", int(NOW) - 600)
        assert not verify_slack_signature(body, headers, "slack-secret", now=NOW)

    def test_missing_headers(self):
        assert not verify_slack_signature(b"{}", {}, "slack-secret", now=NOW)


class TestMailgunSignature:
    """Tests for Mailgun HMAC verification."""

    def _sign(self, timestamp: str, token: str, key: str) -> str:
        return hmac.new(key.encode(), f"{timestamp}{token}".encode(), hashlib.sha256).hexdigest()

    def test_valid_signature(self):
        ts = str(int(NOW))
        signature = self._sign(ts, "tok-123", "mg-key")
        assert verify_mailgun_signature(ts, "tok-123", signature, "mg-key", now=NOW)

    def test_wrong_key(self):
        ts = str(int(NOW))
        signature = self._sign(ts, "tok-123", "other-key")
        assert not verify_mailgun_signature(ts, "tok-123", signature, "mg-key", now=NOW)

    def test_replayed_request(self):
        ts = str(int(NOW) - 3600)
        signature = self._sign(ts, "tok-123", "mg-key")
        assert not verify_mailgun_signature(ts, "tok-123", signature, "mg-key", now=NOW)

    def test_tolerance_can_be_disabled(self):
        ts = str(int(NOW) - 3600)
        signature = self._sign(ts, "tok-123", "mg-key")
        assert verify_mailgun_signature(ts, "tok-123", signature, "mg-key", tolerance_seconds=None, now=NOW)


class TestNotionSignature:
    """Tests for Notion raw-body signatures."""

    def test_prefixed_and_bare_signatures(self):
        body = b'{"type":"comment.created"}'
        digest = hmac.new(b"notion-secret", body, hashlib.sha256).hexdigest()
        assert verify_notion_signature(body, f"v1={digest}", "notion-secret")
        assert verify_notion_signature(body, digest, "notion-secret")

    def test_reserialized_body_fails(self):
        body = b'{"type": "comment.created"}'
        digest = hmac.new(b"notion-secret", b'{"type":"comment.created"}', hashlib.sha256).hexdigest()
        assert not verify_notion_signature(body, f"v1={digest}", "notion-secret")

    def test_missing_signature(self):
        assert not verify_notion_signature(b"{}", None, "notion-secret")


class TestSvixSignature:
    """Tests for Resend (Svix) signatures."""

    SECRET_BYTES = b"resend-signing-secret-bytes"
    SECRET = "whsec_" + base64.b64encode(SECRET_BYTES).decode()

    def _sign(self, svix_id: str, ts: str, body: bytes) -> str:
        content = f"{svix_id}.{ts}.".encode() + body
        return base64.b64encode(hmac.new(self.SECRET_BYTES, content, hashlib.sha256).digest()).decode()

    def test_valid_signature(self):
        body = b'{"type":"email.received"}'
        signature = self._sign("msg_1", "1700000000", body)
        assert verify_svix_signature(body, "msg_1", "1700000000", f"v1,{signature}", self.SECRET)

    def test_any_listed_signature_matches(self):
        body = b'{"type":"email.received"}'
        signature = self._sign("msg_1", "1700000000", body)
        header = f"v1,c29tZXRoaW5nLWVsc2U= v1,{signature}"
        assert verify_svix_signature(body, "msg_1", "1700000000", header, self.SECRET)

    def test_wrong_id(self):
        body = b"{}"
        signature = self._sign("msg_1", "1700000000", body)
        assert not verify_svix_signature(body, "msg_2", "1700000000", f"v1,{signature}", self.SECRET)

    def test_missing_headers(self):
        assert not verify_svix_signature(b"{}", None, "1700000000", "v1,abc", self.SECRET)

    def test_undecodable_secret(self):
        assert not verify_svix_signature(b"{}", "msg_1", "1700000000", "v1,abc", "whsec_!!!not-base64!!!")
