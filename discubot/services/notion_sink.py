"""
Notion task sink.

Creates one database page per detected task: the title in ``Name``,
mapped database properties from the output's field mapping, and a page
body with the AI summary, action items, participants, the full thread
transcript and source metadata.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config.constants import (
    NOTION_API_BASE,
    NOTION_TEXT_MAX_LENGTH,
    NOTION_TITLE_MAX_LENGTH,
    NOTION_VERSION,
)
from ..exceptions import NotionAPIError, ProcessingError
from ..models.discussion import DiscussionThread
from ..models.flow import FlowOutput, OutputType, SourceType
from ..models.task import AISummary, DetectedTask, NotionTaskResult
from ..utils.field_mapping import generate_default_mapping, transform_value
from ..utils.retry import is_retryable, retry_with_backoff

logger = logging.getLogger(__name__)

_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_MENTION_OR_URL = re.compile(
    r"@(?P<name>[^@(\n]+?)\s*\((?P<uuid>[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\)"
    r"|(?P<url>https?://[^\s<>()]+)",
    re.IGNORECASE,
)
_SELECT_TYPES = {"select", "multi_select", "status"}


@dataclass
class NotionTaskConfig:
    """Where and how tasks for one output are created."""
    database_id: str
    notion_token: str
    field_mapping: Dict[str, Any] = field(default_factory=dict)
    output_id: Optional[str] = None


def config_from_output(output: FlowOutput) -> NotionTaskConfig:
    """
    Extract the Notion settings of an output.

    Raises:
        ProcessingError: The output is not a Notion output or lacks token or database id
    """
    if output.output_type != OutputType.NOTION:
        raise ProcessingError(
            f"Output {output.id} is not a Notion output (type: {output.output_type.value})",
            stage="delivery",
        )
    cfg = output.output_config
    token = cfg.get("notion_token") or cfg.get("notionToken")
    database_id = cfg.get("database_id") or cfg.get("databaseId")
    if not token:
        raise ProcessingError(f"Output {output.id} missing notion_token in output_config", stage="delivery")
    if not database_id:
        raise ProcessingError(f"Output {output.id} missing database_id in output_config", stage="delivery")
    return NotionTaskConfig(
        database_id=database_id,
        notion_token=token,
        field_mapping=cfg.get("field_mapping") or cfg.get("fieldMapping") or {},
        output_id=output.id,
    )


def is_notion_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(_UUID.match(value))


def format_notion_property(value: Any, property_type: str) -> Optional[Dict[str, Any]]:
    """Format a value as a Notion property payload of the given type."""
    if property_type == "title":
        return {"title": [{"text": {"content": str(value)[:NOTION_TITLE_MAX_LENGTH]}}]}
    if property_type == "number":
        try:
            return {"number": float(value)}
        except (TypeError, ValueError):
            return {"number": 0}
    if property_type == "select":
        return {"select": {"name": str(value)}}
    if property_type == "status":
        return {"status": {"name": str(value)}}
    if property_type == "multi_select":
        values = value if isinstance(value, (list, tuple)) else [value]
        return {"multi_select": [{"name": str(v)} for v in values]}
    if property_type == "date":
        start = value.isoformat() if isinstance(value, datetime) else str(value)
        return {"date": {"start": start}}
    if property_type == "checkbox":
        return {"checkbox": bool(value)}
    if property_type in ("url", "email", "phone_number"):
        return {property_type: str(value)}
    if property_type == "people":
        ids = value if isinstance(value, (list, tuple)) else [value]
        ids = [str(i) for i in ids if i]
        if not ids:
            return None
        return {"people": [{"object": "user", "id": i} for i in ids]}
    return {"rich_text": [{"text": {"content": str(value)[:NOTION_TEXT_MAX_LENGTH]}}]}


def _resolve_mapping(field_mapping: Dict[str, Any], ai_field: str) -> Optional[Dict[str, Any]]:
    mapping = field_mapping.get(ai_field)
    if not mapping:
        # Legacy form: {"priorityProperty": "Priority"}, always a select
        legacy = field_mapping.get(f"{ai_field}Property")
        if isinstance(legacy, str):
            logger.warning(f"Using legacy field mapping format for '{ai_field}'")
            mapping = {"notionProperty": legacy, "propertyType": "select", "valueMap": {}}
    if not isinstance(mapping, dict):
        return None
    prop = mapping.get("notionProperty")
    if isinstance(prop, dict):
        prop = prop.get("value") or prop.get("name")
    if not prop:
        return None
    return {"notionProperty": prop, "propertyType": mapping.get("propertyType") or "select",
            "valueMap": mapping.get("valueMap") or {}}


def build_task_properties(
    task: DetectedTask,
    field_mapping: Optional[Dict[str, Any]] = None,
    user_mappings: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Build the page properties for a task.

    Args:
        task: Detected task
        field_mapping: AI field -> {notionProperty, propertyType, valueMap}
        user_mappings: Source user id -> Notion user id, for the assignee

    Returns:
        Notion ``properties`` object; ``Name`` is always present
    """
    properties: Dict[str, Any] = {
        "Name": {"title": [{"text": {"content": task.title[:NOTION_TITLE_MAX_LENGTH]}}]}
    }
    if not field_mapping:
        return properties

    values = {
        "priority": task.priority,
        "type": task.type,
        "assignee": task.assignee,
        "dueDate": task.due_date,
        "tags": task.tags or None,
        "domain": task.domain,
    }
    for ai_field, value in values.items():
        if value is None:
            continue
        mapping = _resolve_mapping(field_mapping, ai_field)
        if mapping is None:
            continue
        prop, prop_type = mapping["notionProperty"], mapping["propertyType"]

        if prop_type == "people":
            notion_user_id = value if is_notion_uuid(value) else (user_mappings or {}).get(str(value))
            if not notion_user_id:
                logger.warning(f"No user mapping found for assignee '{value}', leaving {prop} empty")
                continue
            formatted = format_notion_property(notion_user_id, prop_type)
        else:
            if prop_type in _SELECT_TYPES and isinstance(value, str):
                value = transform_value(value, None, mapping["valueMap"]) or value
            formatted = format_notion_property(value, prop_type)

        if formatted:
            properties[prop] = formatted
    return properties


def build_message_url(
    source_type: SourceType,
    source_url: Optional[str],
    message_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Deep link to a single message in the source, falling back to the thread URL."""
    metadata = metadata or {}
    source_type = SourceType(source_type)
    if source_type == SourceType.FIGMA and metadata.get("fileKey"):
        return f"https://www.figma.com/file/{metadata['fileKey']}#comment-{message_id}"
    if source_type == SourceType.SLACK and metadata.get("channelId") and metadata.get("slackTeamId"):
        return (
            f"https://slack.com/app_redirect?team={metadata['slackTeamId']}"
            f"&channel={metadata['channelId']}&message_ts={message_id}"
        )
    page_id = metadata.get("pageId") or metadata.get("parentId")
    if source_type == SourceType.NOTION and page_id:
        return f"https://notion.so/{page_id.replace('-', '')}"
    return source_url or None


def _text(content: str, link: Optional[str] = None, **annotations) -> Dict[str, Any]:
    item: Dict[str, Any] = {"type": "text", "text": {"content": content}}
    if link:
        item["text"]["link"] = {"url": link}
    if annotations:
        item["annotations"] = annotations
    return item


def _mention(user_id: str) -> Dict[str, Any]:
    return {"type": "mention", "mention": {"type": "user", "user": {"object": "user", "id": user_id}}}


def _block(block_type: str, rich_text: List[Dict[str, Any]], **extra) -> Dict[str, Any]:
    return {"object": "block", "type": block_type, block_type: {"rich_text": rich_text, **extra}}


def _divider() -> Dict[str, Any]:
    return {"object": "block", "type": "divider", "divider": {}}


def content_to_rich_text(content: str) -> List[Dict[str, Any]]:
    """Turn ``@Name (uuid)`` into user mentions and bare URLs into links."""
    rich_text: List[Dict[str, Any]] = []
    position = 0
    for match in _MENTION_OR_URL.finditer(content):
        if match.start() > position:
            rich_text.append(_text(content[position:match.start()]))
        if match.group("uuid"):
            rich_text.append(_mention(match.group("uuid")))
        else:
            rich_text.append(_text(match.group("url"), link=match.group("url")))
        position = match.end()
    if position < len(content):
        rich_text.append(_text(content[position:]))
    return rich_text or [_text("")]


def build_task_content(
    task: DetectedTask,
    thread: DiscussionThread,
    summary: AISummary,
    source_type: SourceType,
    source_url: Optional[str],
    user_mentions: Optional[Dict[str, str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Page body blocks: summary, checklist, context, participants, transcript, metadata, link."""
    user_mentions = user_mentions or {}
    source_name = SourceType(source_type).value
    blocks: List[Dict[str, Any]] = []

    if summary.summary:
        blocks.append(_block("callout", [_text(f"AI Summary: {summary.summary}")], icon={"emoji": "🤖"}))

    if task.action_items:
        blocks.append(_block("heading_3", [_text("📋 This Task Requires")]))
        for item in task.action_items:
            blocks.append(_block("to_do", [_text(item)], checked=False))

    if summary.key_points:
        blocks.append(_block(
            "toggle",
            [_text("🔍 Discussion Context", bold=True)],
            children=[_block("bulleted_list_item", [_text(point)]) for point in summary.key_points],
        ))

    if thread.participants:
        rich_text = [_text("👥 Participants: ")]
        for index, participant in enumerate(thread.participants):
            notion_id = user_mentions.get(participant)
            rich_text.append(_mention(notion_id) if notion_id else _text(f"@{participant}"))
            if index < len(thread.participants) - 1:
                rich_text.append(_text(", "))
        blocks.append(_block("paragraph", rich_text))

    blocks.append(_divider())
    blocks.append(_block("heading_2", [_text("Thread Content")]))
    blocks.append(_block("paragraph", [_text(task.description[:NOTION_TEXT_MAX_LENGTH])]))

    transcript: List[Dict[str, Any]] = []
    for index, message in enumerate(thread.messages):
        url = build_message_url(source_type, source_url, message.id, metadata)
        author = f"@{message.author_name}" if message.author_name else message.author_handle
        if index > 0:
            transcript.append(_block("paragraph", [_text("—")]))
        transcript.append(_block(
            "paragraph", [_text(f"{author}:", link=url, bold=True, color="blue" if url else "default")]
        ))
        transcript.append(_block("paragraph", content_to_rich_text(message.content[:NOTION_TEXT_MAX_LENGTH])))
    blocks.append(_block("toggle", [_text("💬 Full Discussion Thread", bold=True)], children=transcript))

    blocks.append(_divider())
    blocks.append(_block("heading_2", [_text("Metadata")]))

    def item(label: str, value: str, notion_user_id: Optional[str] = None) -> Dict[str, Any]:
        return _block("bulleted_list_item", [_text(f"{label}: "), _mention(notion_user_id) if notion_user_id else _text(value)])

    author_handle = thread.root_message.author_handle
    blocks.append(item("Source", source_name))
    blocks.append(item("Thread ID", thread.id))
    blocks.append(item("Thread Size", f"{len(thread.replies) + 1} messages"))
    blocks.append(item("Created By", author_handle, user_mentions.get(author_handle)))
    blocks.append(item("Priority", task.priority or "medium"))
    blocks.append(item("Sentiment", summary.sentiment or "neutral"))
    blocks.append(item("Confidence", f"{round((summary.confidence or 0) * 100)}%"))
    blocks.append(item("Timestamp", datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S UTC")))
    if task.assignee:
        assignee_id = task.assignee if is_notion_uuid(task.assignee) else user_mentions.get(task.assignee)
        blocks.append(item("Assignee", task.assignee, assignee_id))
    if task.tags:
        blocks.append(item("Tags", ", ".join(task.tags)))

    if source_url:
        blocks.append(_divider())
        blocks.append(_block("paragraph", [
            _text("🔗 "),
            _text(f"View Discussion in {source_name}", link=source_url, bold=True, color="blue"),
        ]))
    return blocks


class NotionTaskSink:
    """Creates task pages in Notion databases over httpx."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_base: str = NOTION_API_BASE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.api_base = api_base.rstrip("/")
        self._sleep = sleep

    async def _request(self, method: str, path: str, token: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        try:
            response = await self.http_client.request(method, f"{self.api_base}/{path}", headers=headers, json=json)
        except httpx.HTTPError as e:
            raise NotionAPIError(f"Notion request to {path} failed: {e}", cause=e) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise NotionAPIError(
                f"Notion API error {response.status_code} on {path}: {body.get('message', response.reason_phrase)}",
                status_code=response.status_code,
                notion_code=body.get("code"),
            )
        return response.json()

    async def create_task(
        self,
        task: DetectedTask,
        thread: DiscussionThread,
        summary: AISummary,
        config: NotionTaskConfig,
        source_type: SourceType,
        source_url: Optional[str],
        user_mentions: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotionTaskResult:
        """
        Create one task page, retrying transient failures.

        Raises:
            NotionAPIError: Retryable for 5xx, 429 and network errors
        """
        logger.info(f"Creating Notion task '{task.title}' in database {config.database_id}")
        body = {
            "parent": {"database_id": config.database_id},
            "properties": build_task_properties(task, config.field_mapping, user_mentions),
            "children": build_task_content(task, thread, summary, source_type, source_url, user_mentions, metadata),
        }
        started = time.monotonic()
        page = await retry_with_backoff(
            lambda: self._request("POST", "pages", config.notion_token, json=body),
            max_attempts=3,
            base_delay=1.0,
            max_delay=5.0,
            timeout=15.0,
            should_retry=is_retryable,
            sleep=self._sleep,
        )
        logger.info(f"Task created: {page.get('id')} ({time.monotonic() - started:.2f}s)")
        return NotionTaskResult(id=page["id"], url=page.get("url", ""))

    async def test_connection(self, notion_token: str, database_id: str) -> Dict[str, Any]:
        """Check that the database is reachable with the token."""
        try:
            database = await retry_with_backoff(
                lambda: self._request("GET", f"databases/{database_id}", notion_token),
                max_attempts=2,
                base_delay=0.5,
                timeout=10.0,
                should_retry=is_retryable,
                sleep=self._sleep,
            )
        except NotionAPIError as e:
            logger.error(f"Notion connection test failed: {e.to_log_string()}")
            return {"connected": False, "error": e.message}
        except asyncio.TimeoutError:
            return {"connected": False, "error": "Timed out connecting to Notion"}

        title = "Untitled Database"
        if database.get("title"):
            title = database["title"][0].get("plain_text") or title
        return {
            "connected": True,
            "details": {
                "database_id": database_id,
                "title": title,
                "url": database.get("url") or f"https://notion.so/{database_id.replace('-', '')}",
                "suggested_mapping": generate_default_mapping(database),
            },
        }
