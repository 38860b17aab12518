"""
Notion adapter: page comments that mention the trigger keyword.

Notion webhooks carry ids only, so comment content, the discussion
thread and page context are fetched with the input's integration token.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from .base import SourceAdapter, ValidationResult
from ..config.constants import (
    DEFAULT_TRIGGER_KEYWORD,
    NOTION_API_BASE,
    NOTION_PAGE_CONTENT_MAX_LENGTH,
    NOTION_VERSION,
)
from ..models.base import utc_now
from ..models.discussion import DiscussionStatus, DiscussionThread, ParsedDiscussion, ThreadMessage
from ..models.flow import FlowInput, SourceType
from ..utils.webhook_security import parse_event_time

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
PAGE_CONTENT_MAX_PAGES = 2

_BLOCK_PREFIXES = {
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "• ",
    "numbered_list_item": "- ",
    "quote": "> ",
}


def extract_plain_text(rich_text: Optional[List[Dict[str, Any]]]) -> str:
    return "".join(rt.get("plain_text", "") for rt in rich_text or [])


def check_for_trigger(rich_text: Optional[List[Dict[str, Any]]], keyword: str = DEFAULT_TRIGGER_KEYWORD) -> bool:
    """Case-insensitive keyword search over the comment's joined plain text."""
    if not rich_text:
        return False
    return keyword.lower() in extract_plain_text(rich_text).lower()


def strip_trigger_keyword(text: str, keyword: str) -> str:
    """Remove ``keyword``, ``@keyword`` and ``keyword:`` when followed by whitespace or the end."""
    if not text or not keyword:
        return text
    pattern = re.compile(rf"@?{re.escape(keyword)}:?(?:\s+|$)", re.IGNORECASE)
    return pattern.sub("", text).strip()


def extract_title(text: str) -> str:
    first_line = (text or "").split("\n")[0].strip()
    if len(first_line) > TITLE_MAX_LENGTH:
        return first_line[:TITLE_MAX_LENGTH - 3] + "..."
    return first_line or "Notion Comment"


def extract_block_text(block: Dict[str, Any]) -> str:
    """Plain-text rendering of one block, with light markdown for headings and lists."""
    block_type = block.get("type", "")
    data = block.get(block_type) or {}
    if isinstance(data.get("rich_text"), list):
        text = extract_plain_text(data["rich_text"])
        if block_type == "to_do":
            return f"{'☑' if data.get('checked') else '☐'} {text}"
        if block_type == "code":
            return f"```\n{text}\n```"
        return _BLOCK_PREFIXES.get(block_type, "") + text
    if block_type == "divider":
        return "---"
    if block_type == "equation":
        return data.get("expression", "")
    return ""


def get_trigger_keyword(flow_input: Optional[FlowInput]) -> str:
    if flow_input is None:
        return DEFAULT_TRIGGER_KEYWORD
    return flow_input.source_metadata.get("triggerKeyword") or DEFAULT_TRIGGER_KEYWORD


def get_notion_token(flow_input: FlowInput) -> Optional[str]:
    """The integration token lives in ``api_token`` or ``source_metadata['notionToken']``."""
    return flow_input.api_token or flow_input.source_metadata.get("notionToken")


def match_notion_input(
    candidates: List[FlowInput],
    workspace_id: Optional[str],
    integration_id: Optional[str] = None,
) -> Optional[FlowInput]:
    """
    Pick the input for a Notion event.

    Order: stored workspace id, then the only candidate with a token,
    then stored integration id, then the first candidate with a token.
    """
    if workspace_id:
        for flow_input in candidates:
            if flow_input.source_metadata.get("notionWorkspaceId") == workspace_id:
                logger.info(f"Matched Notion input {flow_input.id} by workspace ID")
                return flow_input

    with_token = [i for i in candidates if get_notion_token(i)]
    if len(with_token) == 1:
        logger.info(f"Matched Notion input {with_token[0].id} as the only configured input")
        return with_token[0]
    if not with_token:
        return None

    if integration_id:
        for flow_input in with_token:
            if flow_input.source_metadata.get("notionIntegrationId") == integration_id:
                logger.info(f"Matched Notion input {flow_input.id} by integration ID")
                return flow_input

    logger.warning(
        f"Multiple Notion inputs found for workspace {workspace_id}, using '{with_token[0].name}' "
        f"(configure workspace/integration ID for precise matching)"
    )
    return with_token[0]


def capture_notion_ids(flow_input: FlowInput, workspace_id: Optional[str], integration_id: Optional[str]) -> bool:
    """Store workspace and integration ids the input does not have yet. Returns True if changed."""
    changed = False
    if workspace_id and workspace_id != "unknown" and not flow_input.source_metadata.get("notionWorkspaceId"):
        flow_input.source_metadata["notionWorkspaceId"] = workspace_id
        changed = True
    if integration_id and not flow_input.source_metadata.get("notionIntegrationId"):
        flow_input.source_metadata["notionIntegrationId"] = integration_id
        changed = True
    if changed:
        flow_input.updated_at = utc_now()
    return changed


class NotionAdapter(SourceAdapter):
    source_type = SourceType.NOTION

    def __init__(self, http_client: httpx.AsyncClient, api_base: str = NOTION_API_BASE):
        super().__init__(http_client)
        self.api_base = api_base.rstrip("/")

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    async def fetch_comment(self, comment_id: str, token: str) -> Optional[Dict[str, Any]]:
        """Fetch one comment; None when it does not exist or is not shared with the integration."""
        try:
            response = await self.http_client.get(f"{self.api_base}/comments/{comment_id}", headers=self._headers(token))
        except httpx.HTTPError as e:
            raise self._error(f"Failed to fetch Notion comment: {e}", retryable=True, cause=e) from e
        if response.status_code == 404:
            logger.warning(f"Notion comment {comment_id} not found or not accessible")
            return None
        if response.status_code >= 400:
            raise self._status_error(response, "Notion")
        return response.json()

    async def parse_incoming(
        self,
        payload: Dict[str, Any],
        flow_input: Optional[FlowInput] = None,
        comment: Optional[Dict[str, Any]] = None,
    ) -> ParsedDiscussion:
        """
        Parse a ``comment.created`` event.

        Args:
            payload: Raw webhook body
            flow_input: Matched input; its token is used to fetch the comment
            comment: Comment the caller already fetched

        Raises:
            AdapterError: Wrong event type or missing ids
        """
        if payload.get("type") != "comment.created":
            raise self._error(f'Unsupported event type: {payload.get("type")} (only "comment.created" is supported)')

        entity = payload.get("entity") or {}
        data = payload.get("data") or {}
        parent = data.get("parent") or {}
        comment_id = entity.get("id") or data.get("id")
        parent_id = parent.get("id") or parent.get("page_id") or parent.get("block_id") or data.get("page_id")
        if not comment_id or not parent_id:
            raise self._error("Missing required IDs in webhook payload (commentId or parentId)")

        if comment is None and flow_input is not None and get_notion_token(flow_input):
            comment = await self.fetch_comment(comment_id, get_notion_token(flow_input))

        content, author_id = "", ""
        discussion_id = data.get("discussion_id") or ""
        created = payload.get("timestamp")
        if comment:
            content = strip_trigger_keyword(extract_plain_text(comment.get("rich_text")), get_trigger_keyword(flow_input))
            author_id = (comment.get("created_by") or {}).get("id", "")
            created = comment.get("created_time") or created
            discussion_id = discussion_id or comment.get("discussion_id") or ""

        if not discussion_id:
            logger.warning(f"No discussion id for Notion comment {comment_id}, using the comment id")
            discussion_id = comment_id

        return ParsedDiscussion(
            source_type=self.source_type,
            source_thread_id=f"{parent_id}:{discussion_id}",
            source_url=f"https://notion.so/{parent_id.replace('-', '')}",
            team_id=payload.get("workspace_id") or "default",
            author_handle=author_id,
            title=extract_title(content),
            content=content,
            participants=[author_id] if author_id else [],
            timestamp=parse_event_time(created),
            metadata={
                "commentId": comment_id,
                "discussionId": discussion_id,
                "parentId": parent_id,
                "parentType": parent.get("type") or "page",
                "workspaceId": payload.get("workspace_id"),
                "entityType": entity.get("type"),
            },
        )

    async def _fetch_discussion_comments(self, page_id: str, discussion_id: str, token: str) -> List[Dict[str, Any]]:
        comments: List[Dict[str, Any]] = []
        cursor = None
        while True:
            params = {"block_id": page_id}
            if cursor:
                params["start_cursor"] = cursor
            response = await self.http_client.get(
                f"{self.api_base}/comments", headers=self._headers(token), params=params
            )
            if response.status_code >= 400:
                raise self._status_error(response, "Notion", f"{page_id}:{discussion_id}")
            body = response.json()
            comments.extend(c for c in body.get("results", []) if c.get("discussion_id") == discussion_id)
            cursor = body.get("next_cursor")
            if not body.get("has_more") or not cursor:
                break
        return sorted(comments, key=lambda c: c.get("created_time") or "")

    async def fetch_page_content(self, block_id: str, token: str,
                                 max_length: int = NOTION_PAGE_CONTENT_MAX_LENGTH) -> str:
        """Page text for AI context, read from at most two pages of blocks. Empty on failure."""
        content = ""
        cursor = None
        try:
            for _ in range(PAGE_CONTENT_MAX_PAGES):
                params = {"start_cursor": cursor} if cursor else None
                response = await self.http_client.get(
                    f"{self.api_base}/blocks/{block_id}/children", headers=self._headers(token), params=params
                )
                response.raise_for_status()
                body = response.json()
                for block in body.get("results", []):
                    text = extract_block_text(block)
                    if text:
                        content += text + "\n"
                    if len(content) >= max_length:
                        break
                cursor = body.get("next_cursor")
                if len(content) >= max_length or not body.get("has_more") or not cursor:
                    break
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch page content for {block_id}: {e}")
            return ""

        if len(content) > max_length:
            truncated = content[:max_length]
            last_space = truncated.rfind(" ")
            content = truncated[:last_space] + "..." if last_space > 0 else truncated
        return content.strip()

    async def fetch_thread(self, thread_id: str, flow_input: FlowInput) -> DiscussionThread:
        page_id, _, discussion_id = thread_id.partition(":")
        if not page_id or not discussion_id:
            raise self._error('Invalid thread ID format, expected "page_id:discussion_id"', thread_id=thread_id)

        token = get_notion_token(flow_input) or ""
        try:
            comments = await self._fetch_discussion_comments(page_id, discussion_id, token)
        except httpx.HTTPError as e:
            raise self._error(f"Failed to fetch Notion thread: {e}", thread_id=thread_id, retryable=True, cause=e) from e

        if not comments:
            raise self._error("No comments found in thread", thread_id=thread_id, status_code=404)

        keyword = get_trigger_keyword(flow_input)
        messages = [self._to_message(c, keyword) for c in comments]
        participants: List[str] = []
        for message in messages:
            if message.author_handle not in participants:
                participants.append(message.author_handle)

        page_content = await self.fetch_page_content(page_id, token) if token else ""

        return DiscussionThread(
            id=discussion_id,
            root_message=messages[0],
            replies=messages[1:],
            participants=participants,
            metadata={
                "pageId": page_id,
                "discussionId": discussion_id,
                "commentCount": len(comments),
                "pageContent": page_content,
            },
        )

    async def post_reply(self, thread_id: str, message: str, flow_input: FlowInput) -> bool:
        _, _, discussion_id = thread_id.partition(":")
        if not discussion_id:
            logger.warning("No Notion discussion id in thread reference, cannot post reply")
            return False
        try:
            response = await self.http_client.post(
                f"{self.api_base}/comments",
                headers=self._headers(get_notion_token(flow_input) or ""),
                json={
                    "discussion_id": discussion_id,
                    "rich_text": [{"type": "text", "text": {"content": message}}],
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to post Notion reply: {e}")
            return False
        if response.status_code >= 400:
            logger.error(f"Failed to post Notion reply: {response.status_code}")
            return False
        return True

    async def update_status(self, thread_id: str, status: DiscussionStatus, flow_input: FlowInput) -> bool:
        # Notion comments have no reactions
        logger.debug("Notion status updates are a no-op")
        return True

    async def validate_config(self, flow_input: FlowInput) -> ValidationResult:
        errors, warnings = [], []
        token = (get_notion_token(flow_input) or "").strip()
        if not token:
            errors.append("Notion API token is required")
        elif not token.startswith(("secret_", "ntn_")):
            warnings.append('Notion API token should start with "secret_" or "ntn_" (internal integration token format)')
        if flow_input.source_type != self.source_type:
            errors.append(
                f"Source type mismatch: expected '{self.source_type.value}', got '{flow_input.source_type.value}'"
            )
        return ValidationResult.from_messages(errors, warnings)

    async def test_connection(self, flow_input: FlowInput) -> bool:
        token = get_notion_token(flow_input)
        if not token:
            return False
        try:
            response = await self.http_client.get(f"{self.api_base}/users/me", headers=self._headers(token))
        except httpx.HTTPError as e:
            logger.error(f"Failed to test Notion connection: {e}")
            return False
        return response.status_code < 400 and response.json().get("object") == "user"

    async def list_users(self, flow_input: FlowInput) -> Dict[str, str]:
        """Workspace users as ``{user_id: name}``; empty when the call fails."""
        token = get_notion_token(flow_input)
        if not token:
            return {}
        try:
            response = await self.http_client.get(f"{self.api_base}/users", headers=self._headers(token))
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to list Notion users, authors stay as ids: {e}")
            return {}
        return {u["id"]: u["name"] for u in response.json().get("results", []) if u.get("id") and u.get("name")}

    @staticmethod
    def _to_message(comment: Dict[str, Any], keyword: str) -> ThreadMessage:
        return ThreadMessage(
            id=comment.get("id", ""),
            author_handle=(comment.get("created_by") or {}).get("id", "unknown"),
            content=strip_trigger_keyword(extract_plain_text(comment.get("rich_text")), keyword),
            timestamp=parse_event_time(comment.get("created_time")),
        )
