"""
Tests for Notion task page creation.
"""

import pytest

from discubot.exceptions import NotionAPIError, ProcessingError
from discubot.models.discussion import DiscussionThread, ThreadMessage
from discubot.models.flow import FlowOutput, OutputType, SourceType
from discubot.models.task import AISummary, DetectedTask
from discubot.services.notion_sink import (
    NotionTaskConfig,
    NotionTaskSink,
    build_message_url,
    build_task_content,
    build_task_properties,
    config_from_output,
    content_to_rich_text,
)

from conftest import json_body, no_sleep

NOTION_USER = "8f14e45f-ceea-467a-9af2-0bd5f1a2b3c4"
PAGES = "api.notion.com/v1/pages"


@pytest.fixture
def thread():
    return DiscussionThread(
        id="C999:1700000000.000100",
        root_message=ThreadMessage(id="1700000000.000100", author_handle="U111", content="Login is broken"),
        replies=[ThreadMessage(id="1700000100.000200", author_handle="U222", content="Same here")],
        participants=["U111", "U222"],
    )


@pytest.fixture
def summary():
    return AISummary(summary="Login broken on mobile", key_points=["Safari only"], sentiment="negative", confidence=0.9)


@pytest.fixture
def sink(http_client):
    return NotionTaskSink(http_client, sleep=no_sleep)


@pytest.fixture
def notion_config():
    return NotionTaskConfig(database_id="db-main", notion_token="ntn_output_token", output_id="out-1")


class TestTaskProperties:
    """Tests for property mapping."""

    FIELD_MAPPING = {
        "priority": {"notionProperty": "Priority", "propertyType": "select", "valueMap": {"high": "P1"}},
        "assignee": {"notionProperty": "Owner", "propertyType": "people"},
        "typeProperty": "Kind",
    }

    def test_title_only_without_mapping(self):
        properties = build_task_properties(DetectedTask(title="Fix it", priority="high"))
        assert properties == {"Name": {"title": [{"text": {"content": "Fix it"}}]}}

    def test_mapped_properties(self):
        task = DetectedTask(title="Fix it", priority="high", type="bug", assignee="U111")
        properties = build_task_properties(task, self.FIELD_MAPPING, {"U111": NOTION_USER})

        assert properties["Priority"] == {"select": {"name": "P1"}}
        assert properties["Kind"] == {"select": {"name": "bug"}}
        assert properties["Owner"] == {"people": [{"object": "user", "id": NOTION_USER}]}

    def test_unmapped_assignee_is_skipped(self):
        task = DetectedTask(title="Fix it", assignee="U999")
        properties = build_task_properties(task, self.FIELD_MAPPING, {"U111": NOTION_USER})
        assert "Owner" not in properties

    def test_notion_uuid_assignee_used_directly(self):
        task = DetectedTask(title="Fix it", assignee=NOTION_USER)
        assert "Owner" in build_task_properties(task, self.FIELD_MAPPING)

    def test_long_title_truncated(self):
        properties = build_task_properties(DetectedTask(title="x" * 2500))
        assert len(properties["Name"]["title"][0]["text"]["content"]) == 2000


class TestPageContent:
    """Tests for the page body."""

    def test_rich_text_mentions_and_links(self):
        rich_text = content_to_rich_text(f"Ping @Ada ({NOTION_USER}) see https://example.com/a now")
        assert [item["type"] for item in rich_text] == ["text", "mention", "text", "text", "text"]
        assert rich_text[1]["mention"]["user"]["id"] == NOTION_USER
        assert rich_text[3]["text"]["link"] == {"url": "https://example.com/a"}
        assert rich_text[4]["text"]["content"] == " now"

    def test_empty_content(self):
        assert content_to_rich_text("") == [{"type": "text", "text": {"content": ""}}]

    def test_message_urls(self):
        assert build_message_url(SourceType.FIGMA, None, "c1", {"fileKey": "K"}) == "https://www.figma.com/file/K#comment-c1"
        slack = build_message_url(SourceType.SLACK, None, "1.2", {"channelId": "C1", "slackTeamId": "T1"})
        assert slack == "https://slack.com/app_redirect?team=T1&channel=C1&message_ts=1.2"
        assert build_message_url(SourceType.SLACK, "https://fallback", "1.2") == "https://fallback"

    def test_blocks_include_checklist_and_mentioned_participants(self, thread, summary):
        task = DetectedTask(title="Fix it", description="desc", action_items=["Reproduce"])
        blocks = build_task_content(task, thread, summary, SourceType.SLACK, "https://slack.example", {"U111": NOTION_USER})

        assert blocks[0]["type"] == "callout"
        to_dos = [b for b in blocks if b["type"] == "to_do"]
        assert to_dos[0]["to_do"]["rich_text"][0]["text"]["content"] == "Reproduce"
        participants = next(
            b for b in blocks
            if b["type"] == "paragraph" and b["paragraph"]["rich_text"][0]["text"]["content"].startswith("👥")
        )
        kinds = [item["type"] for item in participants["paragraph"]["rich_text"]]
        assert kinds == ["text", "mention", "text", "text"]
        assert blocks[-1]["paragraph"]["rich_text"][1]["text"]["link"] == {"url": "https://slack.example"}


class TestConfigFromOutput:
    """Tests for reading Notion settings from an output."""

    def test_camel_and_snake_keys(self):
        output = FlowOutput(output_config={"notionToken": "tok", "databaseId": "db"})
        config = config_from_output(output)
        assert (config.notion_token, config.database_id, config.output_id) == ("tok", "db", output.id)

    def test_missing_token(self):
        with pytest.raises(ProcessingError, match="notion_token"):
            config_from_output(FlowOutput(output_config={"database_id": "db"}))

    def test_wrong_output_type(self):
        with pytest.raises(ProcessingError):
            config_from_output(FlowOutput(output_type=OutputType.GITHUB, output_config={"notion_token": "t"}))


class TestNotionTaskSink:
    """Tests for page creation over HTTP."""

    @pytest.mark.asyncio
    async def test_create_task(self, sink, fake_api, thread, summary, notion_config):
        fake_api.add("POST", PAGES, {"id": "page-1", "url": "https://notion.so/page-1"})
        result = await sink.create_task(
            DetectedTask(title="Fix it"), thread, summary, notion_config, SourceType.SLACK, None
        )

        assert (result.id, result.url) == ("page-1", "https://notion.so/page-1")
        request = fake_api.calls("POST", PAGES)[0]
        assert request.headers["Authorization"] == "Bearer ntn_output_token"
        assert request.headers["Notion-Version"] == "2022-06-28"
        assert json_body(request)["parent"] == {"database_id": "db-main"}

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, sink, fake_api, thread, summary, notion_config):
        fake_api.add("POST", PAGES, [(500, {"message": "oops"}), {"id": "page-1", "url": "u"}])
        result = await sink.create_task(DetectedTask(title="t"), thread, summary, notion_config, SourceType.SLACK, None)
        assert result.id == "page-1"
        assert len(fake_api.calls("POST", PAGES)) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, sink, fake_api, thread, summary, notion_config):
        fake_api.add("POST", PAGES, (400, {"message": "Title is not a property", "code": "validation_error"}))
        with pytest.raises(NotionAPIError) as exc_info:
            await sink.create_task(DetectedTask(title="t"), thread, summary, notion_config, SourceType.SLACK, None)

        assert exc_info.value.status_code == 400
        assert exc_info.value.notion_code == "validation_error"
        assert not exc_info.value.retryable
        assert len(fake_api.calls("POST", PAGES)) == 1

    @pytest.mark.asyncio
    async def test_connection_check(self, sink, fake_api):
        fake_api.add("GET", "api.notion.com/v1/databases/db-main", {
            "title": [{"plain_text": "Tasks"}],
            "url": "https://n/db",
            "properties": {"Name": {"type": "title"}, "Assignee": {"type": "people"}},
        })
        result = await sink.test_connection("ntn_output_token", "db-main")
        assert result["connected"]
        assert result["details"]["title"] == "Tasks"
        assert result["details"]["suggested_mapping"]["assignee"]["notionProperty"] == "Assignee"

        failing = await sink.test_connection("ntn_output_token", "missing")
        assert not failing["connected"]
