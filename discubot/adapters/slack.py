"""
Slack adapter: Events API app mentions in, Web API calls out.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .base import SourceAdapter, ValidationResult
from ..config.constants import SLACK_API_BASE
from ..models.base import utc_now
from ..models.discussion import DiscussionStatus, DiscussionThread, ParsedDiscussion, ThreadMessage
from ..models.flow import FlowInput, SourceType

logger = logging.getLogger(__name__)

STATUS_REACTIONS = {
    DiscussionStatus.PENDING: "eyes",
    DiscussionStatus.PROCESSING: "hourglass_flowing_sand",
    DiscussionStatus.ANALYZED: "robot_face",
    DiscussionStatus.COMPLETED: "white_check_mark",
    DiscussionStatus.FAILED: "x",
    DiscussionStatus.RETRYING: "arrows_counterclockwise",
}

TITLE_MAX_LENGTH = 50
_USER_MENTION = re.compile(r"<@([A-Z0-9]+)(?:\|[^>]*)?>")


def extract_title(text: str) -> str:
    """First line of the message, truncated with an ellipsis."""
    first_line = (text or "").split("\n")[0].strip()
    if len(first_line) > TITLE_MAX_LENGTH:
        return first_line[:TITLE_MAX_LENGTH - 3] + "..."
    return first_line or "Slack Message"


def detect_mentions(text: str) -> List[str]:
    """User ids mentioned as ``<@U123>`` or ``<@U123|name>``, first occurrence order."""
    seen: List[str] = []
    for user_id in _USER_MENTION.findall(text or ""):
        if user_id not in seen:
            seen.append(user_id)
    return seen


def _ts_to_datetime(ts: Optional[str]) -> datetime:
    try:
        return datetime.utcfromtimestamp(float(ts))
    except (TypeError, ValueError):
        return utc_now()


def _split_thread_id(thread_id: str):
    channel_id, _, thread_ts = thread_id.partition(":")
    return channel_id, thread_ts


class SlackAdapter(SourceAdapter):
    source_type = SourceType.SLACK

    def __init__(self, http_client: httpx.AsyncClient, api_base: str = SLACK_API_BASE):
        super().__init__(http_client)
        self.api_base = api_base.rstrip("/")

    def _headers(self, flow_input: FlowInput) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {flow_input.api_token or ''}",
            "Content-Type": "application/json; charset=utf-8",
        }

    async def parse_incoming(self, payload: Dict[str, Any], flow_input: Optional[FlowInput] = None) -> ParsedDiscussion:
        if payload.get("type") == "url_verification":
            raise self._error("URL verification challenge received - handle separately")

        event = payload.get("event")
        if not event:
            raise self._error("No event found in Slack payload")
        if event.get("type") != "app_mention":
            raise self._error(f'Unsupported event type: {event.get("type")} (only "app_mention" is supported)')

        text = event.get("text") or ""
        if not text.strip():
            raise self._error("No message text found in event")
        if not event.get("channel"):
            raise self._error("No channel ID found in event")
        if not event.get("user"):
            raise self._error("No user ID found in event")

        slack_team_id = payload.get("team_id") or "default"
        channel = event["channel"]
        ts = event.get("ts") or ""
        thread_ts = event.get("thread_ts")

        return ParsedDiscussion(
            source_type=self.source_type,
            source_thread_id=f"{channel}:{thread_ts or ts}",
            source_url=f"https://slack.com/app_redirect?team={slack_team_id}&channel={channel}&message_ts={ts}",
            team_id=slack_team_id,
            author_handle=event["user"],
            title=extract_title(text),
            content=text,
            participants=[event["user"]],
            timestamp=_ts_to_datetime(ts),
            metadata={
                "slackTeamId": slack_team_id,
                "channelId": channel,
                "messageTs": ts,
                "threadTs": thread_ts,
                "channelType": event.get("channel_type"),
            },
        )

    async def fetch_thread(self, thread_id: str, flow_input: FlowInput) -> DiscussionThread:
        channel_id, thread_ts = _split_thread_id(thread_id)
        if not channel_id or not thread_ts:
            raise self._error('Invalid thread ID format, expected "channel:thread_ts"', thread_id=thread_id)

        try:
            response = await self.http_client.get(
                f"{self.api_base}/conversations.replies",
                headers=self._headers(flow_input),
                params={"channel": channel_id, "ts": thread_ts, "limit": "100"},
            )
        except httpx.HTTPError as e:
            raise self._error(f"Failed to fetch Slack thread: {e}", thread_id=thread_id, retryable=True, cause=e) from e

        if response.status_code >= 400:
            raise self._status_error(response, "Slack", thread_id)

        data = response.json()
        if not data.get("ok"):
            error = data.get("error") or "Unknown error"
            raise self._error(f"Slack API error: {error}", thread_id=thread_id, retryable=error == "rate_limited")

        messages = data.get("messages") or []
        if not messages:
            raise self._error("No messages found in thread", thread_id=thread_id, status_code=404)

        root, replies = messages[0], messages[1:]
        participants: List[str] = []
        for message in messages:
            user = message.get("user")
            if user and user not in participants:
                participants.append(user)

        return DiscussionThread(
            id=thread_ts,
            root_message=self._to_message(root),
            replies=[self._to_message(m) for m in replies],
            participants=participants,
            metadata={
                "channelId": channel_id,
                "threadTs": thread_ts,
                "messageCount": len(messages),
                "hasMore": data.get("has_more", False),
            },
        )

    async def _call(self, method: str, body: Dict[str, Any], flow_input: FlowInput) -> Dict[str, Any]:
        """POST a Web API method and return the decoded body (``ok`` may be False)."""
        response = await self.http_client.post(
            f"{self.api_base}/{method}", headers=self._headers(flow_input), json=body
        )
        if response.status_code >= 400:
            return {"ok": False, "error": f"http_{response.status_code}"}
        return response.json()

    async def post_reply(self, thread_id: str, message: str, flow_input: FlowInput) -> bool:
        channel_id, thread_ts = _split_thread_id(thread_id)
        if not channel_id or not thread_ts:
            logger.warning("Invalid Slack thread ID format, cannot post reply")
            return False
        try:
            data = await self._call(
                "chat.postMessage", {"channel": channel_id, "text": message, "thread_ts": thread_ts}, flow_input
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to post Slack reply: {e}")
            return False
        if not data.get("ok"):
            logger.error(f"Failed to post Slack reply: {data.get('error') or 'Unknown error'}")
            return False
        return True

    async def update_status(self, thread_id: str, status: DiscussionStatus, flow_input: FlowInput) -> bool:
        channel_id, thread_ts = _split_thread_id(thread_id)
        if not channel_id or not thread_ts:
            logger.warning("Invalid Slack thread ID format, cannot update status")
            return False
        try:
            data = await self._call(
                "reactions.add",
                {"channel": channel_id, "timestamp": thread_ts, "name": STATUS_REACTIONS[DiscussionStatus(status)]},
                flow_input,
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to update Slack status: {e}")
            return False
        if not data.get("ok"):
            if data.get("error") == "already_reacted":
                return True
            logger.error(f"Failed to update Slack status: {data.get('error') or 'Unknown error'}")
            return False
        return True

    async def remove_reaction(self, thread_id: str, emoji: str, flow_input: FlowInput) -> bool:
        """Remove a reaction; ``no_reaction`` counts as removed."""
        channel_id, thread_ts = _split_thread_id(thread_id)
        if not channel_id or not thread_ts:
            return False
        try:
            data = await self._call(
                "reactions.remove", {"channel": channel_id, "timestamp": thread_ts, "name": emoji}, flow_input
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to remove Slack reaction: {e}")
            return False
        return bool(data.get("ok")) or data.get("error") == "no_reaction"

    async def fetch_user_info(self, user_id: str, flow_input: FlowInput) -> Optional[Dict[str, Any]]:
        """Look up a user's name and email via ``users.info``; None when unavailable."""
        try:
            response = await self.http_client.get(
                f"{self.api_base}/users.info", headers=self._headers(flow_input), params={"user": user_id}
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch Slack user info: {e}")
            return None
        if response.status_code >= 400:
            return None
        data = response.json()
        user = data.get("user")
        if not data.get("ok") or not user:
            logger.warning(f"Failed to fetch Slack user info for {user_id}: {data.get('error')}")
            return None
        profile = user.get("profile") or {}
        return {
            "id": user.get("id"),
            "name": user.get("name"),
            "email": profile.get("email"),
            "real_name": profile.get("real_name") or user.get("real_name"),
            "display_name": profile.get("display_name"),
        }

    async def validate_config(self, flow_input: FlowInput) -> ValidationResult:
        errors, warnings = [], []
        token = (flow_input.api_token or "").strip()
        if not token:
            errors.append("Slack API token is required")
        elif not token.startswith(("xoxb-", "xoxp-")):
            warnings.append('Slack API token should start with "xoxb-" (bot token) or "xoxp-" (user token)')
        if not flow_input.source_metadata.get("slackTeamId"):
            warnings.append("Slack team ID not configured - events cannot be matched to this input")
        if flow_input.source_type != self.source_type:
            errors.append(
                f"Source type mismatch: expected '{self.source_type.value}', got '{flow_input.source_type.value}'"
            )
        return ValidationResult.from_messages(errors, warnings)

    async def test_connection(self, flow_input: FlowInput) -> bool:
        try:
            data = await self._call("auth.test", {}, flow_input)
        except httpx.HTTPError as e:
            logger.error(f"Failed to test Slack connection: {e}")
            return False
        return bool(data.get("ok"))

    @staticmethod
    def _to_message(message: Dict[str, Any]) -> ThreadMessage:
        return ThreadMessage(
            id=message.get("ts", ""),
            author_handle=message.get("user") or message.get("bot_id") or "unknown",
            content=message.get("text", ""),
            timestamp=_ts_to_datetime(message.get("ts")),
            attachments=list(message.get("files") or []),
        )
