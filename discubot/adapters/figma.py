"""
Figma adapter: comment notifications arrive as forwarded emails; the
Figma REST API is used to locate the comment, reply and react.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .base import SourceAdapter, ValidationResult
from ..config.constants import FIGMA_API_BASE
from ..email.parser import find_comment_by_text, parse_email
from ..models.base import utc_now
from ..models.discussion import DiscussionStatus, DiscussionThread, ParsedDiscussion, ThreadMessage
from ..models.flow import FlowInput, SourceType
from ..utils.webhook_security import parse_event_time

logger = logging.getLogger(__name__)

FUZZY_MATCH_THRESHOLD = 0.8

STATUS_EMOJI = {
    DiscussionStatus.PENDING: ":eyes:",
    DiscussionStatus.PROCESSING: ":hourglass:",
    DiscussionStatus.ANALYZED: ":robot:",
    DiscussionStatus.COMPLETED: ":white_check_mark:",
    DiscussionStatus.FAILED: ":x:",
    DiscussionStatus.RETRYING: ":arrows_counterclockwise:",
}

_PAREN_MENTION = re.compile(r"@([^(@]+?)\s*\(([a-f0-9-]+)\)", re.IGNORECASE)
_BRACKET_MENTION = re.compile(r"@\[([^\]:]+):([^\]]+)\]")
_PLAIN_MENTION = re.compile(r"@([a-zA-Z0-9_.-]+)")
_BROADCAST = {"everyone", "here", "channel"}


@dataclass
class FigmaMention:
    user_id: str
    display_name: str


def extract_mentions_from_comment(message: str) -> List[FigmaMention]:
    """Extract @mentions in the ``@Name (uuid)``, ``@[id:Name]`` or plain ``@handle`` forms."""
    if not message or not message.strip():
        return []

    mentions = [
        FigmaMention(user_id=m.group(2).strip(), display_name=m.group(1).strip())
        for m in _PAREN_MENTION.finditer(message)
        if m.group(1).strip() and m.group(2).strip()
    ]
    if not mentions:
        mentions = [
            FigmaMention(user_id=m.group(1).strip(), display_name=m.group(2).strip())
            for m in _BRACKET_MENTION.finditer(message)
        ]
    if not mentions:
        mentions = [
            FigmaMention(user_id=m.group(1), display_name=m.group(1))
            for m in _PLAIN_MENTION.finditer(message)
            if m.group(1).lower() not in _BROADCAST
        ]
    return mentions


def recipient_local_part(recipient: Optional[str]) -> str:
    """Local part of the recipient address, or 'default'."""
    match = re.match(r"^([^@]+)@", recipient or "")
    return match.group(1) if match else "default"


def split_thread_id(thread_id: str):
    """Split ``fileKey``, ``fileKey:commentId`` or ``fileKey:fuzzy:text``.

    Returns (file_key, comment_id, fuzzy_text).
    """
    parts = thread_id.split(":")
    file_key = parts[0]
    if len(parts) >= 3 and parts[1] == "fuzzy":
        return file_key, None, ":".join(parts[2:])
    if len(parts) == 2:
        return file_key, parts[1] or None, None
    return file_key, None, None


class FigmaAdapter(SourceAdapter):
    source_type = SourceType.FIGMA

    def __init__(self, http_client: httpx.AsyncClient, api_base: str = FIGMA_API_BASE):
        super().__init__(http_client)
        self.api_base = api_base.rstrip("/")

    def _headers(self, flow_input: FlowInput) -> Dict[str, str]:
        return {"X-Figma-Token": flow_input.api_token or ""}

    async def parse_incoming(self, payload: Dict[str, Any], flow_input: Optional[FlowInput] = None) -> ParsedDiscussion:
        parsed = parse_email(payload)

        if not parsed.file_key:
            raise self._error("No Figma file key found in email")
        if not parsed.text or not parsed.text.strip():
            raise self._error("No comment text found in email")

        recipient = payload.get("recipient") or ""
        email_slug = recipient_local_part(recipient)
        participants = [parsed.author] if parsed.author else []

        return ParsedDiscussion(
            source_type=self.source_type,
            source_thread_id=f"{parsed.file_key}:fuzzy:{parsed.text}",
            source_url=parsed.file_url or f"https://www.figma.com/file/{parsed.file_key}",
            team_id=email_slug,
            author_handle=parsed.author or "unknown",
            title=parsed.subject or "Figma Comment",
            content=parsed.text,
            participants=participants,
            timestamp=parsed.timestamp or utc_now(),
            metadata={
                "fileKey": parsed.file_key,
                "emailType": parsed.email_type,
                "links": parsed.links,
                "emailSlug": email_slug,
                "recipientEmail": recipient,
            },
        )

    async def fetch_thread(self, thread_id: str, flow_input: FlowInput) -> DiscussionThread:
        file_key, comment_id, fuzzy_text = split_thread_id(thread_id)

        try:
            response = await self.http_client.get(
                f"{self.api_base}/files/{file_key}/comments", headers=self._headers(flow_input)
            )
        except httpx.HTTPError as e:
            raise self._error(f"Failed to fetch Figma thread: {e}", thread_id=thread_id, retryable=True, cause=e) from e

        if response.status_code >= 400:
            raise self._status_error(response, "Figma", thread_id)

        comments = response.json().get("comments", [])
        root = None
        if fuzzy_text:
            root = find_comment_by_text(fuzzy_text, comments, threshold=FUZZY_MATCH_THRESHOLD)
            if root is None:
                logger.warning(f"Fuzzy match failed for Figma file {file_key}, using most recent comment")
                root = self._most_recent_root(comments)
        elif comment_id:
            root = next((c for c in comments if c.get("id") == comment_id), None)
        else:
            root = self._most_recent_root(comments)

        if root is None:
            raise self._error("Comment not found in file", thread_id=thread_id, status_code=404)

        replies = sorted(
            (c for c in comments if c.get("parent_id") == root["id"]),
            key=lambda c: c.get("created_at") or "",
        )
        root_message = self._to_message(root)
        reply_messages = [self._to_message(c) for c in replies]

        participants: List[str] = []
        for message in [root_message] + reply_messages:
            if message.author_handle not in participants:
                participants.append(message.author_handle)

        return DiscussionThread(
            id=root["id"],
            root_message=root_message,
            replies=reply_messages,
            participants=participants,
            metadata={
                "fileKey": file_key,
                "resolved": root.get("resolved_at") is not None,
                "createdAt": root.get("created_at"),
            },
        )

    async def post_reply(self, thread_id: str, message: str, flow_input: FlowInput) -> bool:
        file_key, comment_id, _ = split_thread_id(thread_id)
        if not comment_id:
            logger.warning("No Figma comment id in thread reference, cannot post reply")
            return False
        try:
            response = await self.http_client.post(
                f"{self.api_base}/files/{file_key}/comments",
                headers=self._headers(flow_input),
                json={"message": message, "comment_id": comment_id},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to post Figma reply: {e}")
            return False
        if response.status_code >= 400:
            logger.error(f"Failed to post Figma reply: {self._status_error(response, 'Figma').message}")
            return False
        return True

    async def update_status(self, thread_id: str, status: DiscussionStatus, flow_input: FlowInput) -> bool:
        file_key, comment_id, _ = split_thread_id(thread_id)
        if not comment_id:
            logger.debug("No Figma comment id in thread reference, skipping status reaction")
            return False
        try:
            response = await self.http_client.post(
                f"{self.api_base}/files/{file_key}/comments/{comment_id}/reactions",
                headers=self._headers(flow_input),
                json={"emoji": STATUS_EMOJI[DiscussionStatus(status)]},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to update Figma status: {e}")
            return False
        if response.status_code >= 400:
            logger.error(f"Failed to update Figma status: {response.status_code}")
            return False
        return True

    async def remove_reaction(self, thread_id: str, emoji: str, flow_input: FlowInput) -> bool:
        """Remove a reaction; a missing reaction counts as removed."""
        file_key, comment_id, _ = split_thread_id(thread_id)
        if not comment_id:
            return False
        figma_emoji = emoji if emoji.startswith(":") else f":{emoji}:"
        try:
            response = await self.http_client.delete(
                f"{self.api_base}/files/{file_key}/comments/{comment_id}/reactions",
                headers=self._headers(flow_input),
                params={"emoji": figma_emoji},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to remove Figma reaction: {e}")
            return False
        return response.status_code < 400 or response.status_code == 404

    async def validate_config(self, flow_input: FlowInput) -> ValidationResult:
        errors, warnings = [], []
        token = (flow_input.api_token or "").strip()
        if not token:
            errors.append("Figma API token is required")
        elif len(token) < 20:
            warnings.append("Figma API token appears to be too short")
        if flow_input.source_type != self.source_type:
            errors.append(
                f"Source type mismatch: expected '{self.source_type.value}', got '{flow_input.source_type.value}'"
            )
        if not (flow_input.email_address or flow_input.email_slug):
            warnings.append("No email address or slug configured; forwarded emails cannot be matched")
        return ValidationResult.from_messages(errors, warnings)

    async def test_connection(self, flow_input: FlowInput) -> bool:
        try:
            response = await self.http_client.get(f"{self.api_base}/me", headers=self._headers(flow_input))
        except httpx.HTTPError as e:
            logger.error(f"Failed to test Figma connection: {e}")
            return False
        return response.status_code < 400

    @staticmethod
    def _most_recent_root(comments: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        roots = [c for c in comments if not c.get("parent_id")]
        if not roots:
            return None
        return max(roots, key=lambda c: c.get("created_at") or "")

    @staticmethod
    def _to_message(comment: Dict[str, Any]) -> ThreadMessage:
        # The user id is stable, so it is the handle; the display handle becomes the name
        user = comment.get("user") or {}
        return ThreadMessage(
            id=comment["id"],
            author_handle=user.get("id") or user.get("handle") or "unknown",
            author_name=user.get("handle"),
            content=comment.get("message", ""),
            timestamp=parse_event_time(comment.get("created_at")),
        )
