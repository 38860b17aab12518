"""
Webhook signature verification for every inbound source.

All verifiers return False instead of raising on missing headers,
malformed signatures or undecodable secrets. Callers decide whether an
absent secret means "skip with warning" or "reject".
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import Mapping, Optional, Union

from ..models.base import utc_now

logger = logging.getLogger(__name__)

TIMESTAMP_TOLERANCE_SECONDS = 5 * 60

BytesLike = Union[bytes, str]


def _to_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def safe_compare(a: BytesLike, b: BytesLike) -> bool:
    """Constant-time comparison with an explicit length check first."""
    a_bytes, b_bytes = _to_bytes(a), _to_bytes(b)
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def _hmac_hex(key: BytesLike, message: BytesLike) -> str:
    return hmac.new(_to_bytes(key), _to_bytes(message), hashlib.sha256).hexdigest()


def parse_timestamp(value: Union[str, int, float, None]) -> Optional[float]:
    """Parse a webhook timestamp into epoch seconds.

    Accepts ISO-8601 strings and numeric epochs; numbers below 1e10 are
    seconds, anything larger is milliseconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        try:
            number = float(text)
        except ValueError:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.timestamp()
    return number if number < 1e10 else number / 1000.0


def parse_event_time(value: Union[str, int, float, None]) -> datetime:
    """Event time as naive UTC. Values that cannot be parsed fall back to now."""
    seconds = parse_timestamp(value)
    if seconds is None:
        return utc_now()
    try:
        return datetime.fromtimestamp(seconds, timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return utc_now()


def validate_timestamp(
    timestamp: Union[str, int, float, None],
    tolerance_seconds: float = TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """True when ``timestamp`` is within ``tolerance_seconds`` of now."""
    ts = parse_timestamp(timestamp)
    if ts is None:
        return False
    current = time.time() if now is None else now
    return abs(current - ts) <= tolerance_seconds


def verify_mailgun_signature(
    timestamp: Union[str, int],
    token: str,
    signature: str,
    signing_key: str,
    tolerance_seconds: Optional[float] = TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Mailgun: ``hex(HMAC-SHA256(key, timestamp + token))``."""
    if not (timestamp and token and signature and signing_key):
        logger.warning("Mailgun signature verification missing timestamp, token or signature")
        return False

    if tolerance_seconds is not None and not validate_timestamp(timestamp, tolerance_seconds, now):
        logger.warning("Mailgun request timestamp outside tolerance window")
        return False

    expected = _hmac_hex(signing_key, f"{timestamp}{token}")
    return safe_compare(str(signature), expected)


def verify_notion_signature(raw_body: bytes, signature: Optional[str], signing_secret: str) -> bool:
    """Notion: ``hex(HMAC-SHA256(secret, raw_body))`` with an optional ``v1=`` prefix.

    ``raw_body`` must be the exact bytes received; re-serialized JSON
    produces a different digest.
    """
    if not signature or not signing_secret:
        logger.warning("Notion signature verification missing signature or secret")
        return False

    received = signature[3:] if signature.startswith("v1=") else signature
    expected = _hmac_hex(signing_secret, raw_body)
    if len(received) != len(expected):
        logger.warning("Notion signature length mismatch")
        return False
    return safe_compare(received, expected)


def validate_notion_timestamp(
    timestamp: Optional[str],
    tolerance_seconds: float = TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Replay check for Notion events.

    Events without a timestamp are allowed; some Notion event types omit it.
    """
    if not timestamp:
        return True
    if parse_timestamp(timestamp) is None:
        logger.warning(f"Failed to parse Notion webhook timestamp: {timestamp}")
        return True
    if not validate_timestamp(timestamp, tolerance_seconds, now):
        logger.warning("Notion request timestamp outside tolerance window")
        return False
    return True


def _svix_secret_bytes(secret: str) -> Optional[bytes]:
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_"):], validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Svix signing secret is not valid base64")
            return None
    return secret.encode("utf-8")


def verify_svix_signature(
    raw_body: bytes,
    svix_id: Optional[str],
    svix_timestamp: Optional[str],
    svix_signature: Optional[str],
    signing_secret: str,
) -> bool:
    """Svix (Resend): ``base64(HMAC-SHA256(secret, "{id}.{ts}.{body}"))``.

    The header holds space-separated ``version,signature`` pairs; a match
    against any of them is accepted so rotated secrets keep working.
    """
    if not (svix_id and svix_timestamp and svix_signature):
        logger.warning("Missing Svix signature headers")
        return False
    if not signing_secret:
        return False

    secret = _svix_secret_bytes(signing_secret)
    if secret is None:
        return False

    signed_content = f"{svix_id}.{svix_timestamp}.".encode("utf-8") + _to_bytes(raw_body)
    expected = base64.b64encode(hmac.new(secret, signed_content, hashlib.sha256).digest()).decode("ascii")

    matched = False
    for entry in svix_signature.split(" "):
        _, _, candidate = entry.partition(",")
        # Compare every entry so timing does not reveal the matching position.
        if candidate and safe_compare(candidate, expected):
            matched = True
    return matched


def verify_slack_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    signing_secret: str,
    tolerance_seconds: float = TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """Slack: ``v0=hex(HMAC-SHA256(secret, "v0:{ts}:{body}"))`` plus a replay window."""
    timestamp = headers.get("x-slack-request-timestamp")
    signature = headers.get("x-slack-signature")
    if not timestamp or not signature or not signing_secret:
        logger.warning("Missing Slack signature headers")
        return False

    if not validate_timestamp(timestamp, tolerance_seconds, now):
        logger.warning("Slack request timestamp outside tolerance window")
        return False

    base_string = f"v0:{timestamp}:".encode("utf-8") + _to_bytes(raw_body)
    expected = "v0=" + _hmac_hex(signing_secret, base_string)
    return safe_compare(signature, expected)
