"""
Tests for the FastAPI webhook routes, driven through TestClient against
in-memory repositories and mocked upstream APIs.
"""

import base64
import hashlib
import hmac
import json
import time

import pytest
from fastapi.testclient import TestClient

from discubot.config.settings import EmailConfig
from discubot.email.forwarding import EmailForwarder
from discubot.email.resend import ResendClient
from discubot.models.flow import SourceType
from discubot.webhook_service.server import WebhookServer

from conftest import json_body, slack_input_kwargs

SECRET = "a-long-enough-secret"
API_KEY = "management-key-0123456789"
NOTION_PAGES = "api.notion.com/v1/pages"

FIGMA_EMAIL = {
    "from": "Ada via Figma <comments-FILE123@email.figma.com>",
    "recipient": "acme-design@in.discubot.app",
    "subject": "Ada commented on Landing",
    "stripped-text": "Make the header darker",
}

FIGMA_COMMENTS = {
    "comments": [
        {"id": "c2", "message": "Make the header darker", "created_at": "2023-11-14T00:00:00Z",
         "user": {"id": "u1", "handle": "ada"}},
        {"id": "c3", "message": "Agreed", "parent_id": "c2", "created_at": "2023-11-14T01:00:00Z",
         "user": {"id": "u2", "handle": "bob"}},
    ]
}

NOTION_EVENT = {
    "type": "comment.created",
    "workspace_id": "W1",
    "entity": {"id": "comment-1", "type": "comment"},
    "data": {"page_id": "page-1", "parent": {"id": "page-1", "type": "page"}},
}

NOTION_COMMENT = {
    "id": "comment-1",
    "discussion_id": "disc-1",
    "created_time": "2023-11-14T22:13:00Z",
    "created_by": {"id": "user-1"},
    "rich_text": [{"plain_text": "@discubot the pricing table is wrong"}],
}


def slack_headers(body: bytes, secret: str = SECRET) -> dict:
    timestamp = str(int(time.time()))
    digest = hmac.new(secret.encode(), f"v0:{timestamp}:".encode() + body, hashlib.sha256).hexdigest()
    return {
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": f"v0={digest}",
        "Content-Type": "application/json",
    }


@pytest.fixture
def client(config, app_context):
    return TestClient(WebhookServer(config, app_context).get_app())


class TestServer:
    """Tests for health and discussion management routes."""

    def test_health_reports_degraded_services(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["services"] == {"ai": "configured", "resend": "not_configured", "storage": "memory"}

    def test_retry_unknown_discussion(self, config, client):
        config.secrets.management_api_key = API_KEY
        response = client.post("/api/discussions/nope/retry", headers={"X-API-Key": API_KEY})
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "DISCUSSION_NOT_FOUND"

    def test_retry_requires_api_key(self, config, client, app_context):
        config.secrets.management_api_key = API_KEY

        missing = client.post("/api/discussions/nope/retry")
        wrong = client.post("/api/discussions/nope/retry", headers={"X-API-Key": "not-the-key"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert wrong.json()["detail"]["error"] == "INVALID_API_KEY"
        assert len(app_context.rate_limiter) == 0

    def test_retry_disabled_without_configured_key(self, client):
        response = client.post("/api/discussions/nope/retry", headers={"X-API-Key": API_KEY})
        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "API_KEY_NOT_CONFIGURED"

    def test_retry_rate_limited(self, config, client, app_context):
        config.secrets.management_api_key = API_KEY
        for _ in range(30):
            app_context.rate_limiter.check_rate_limit("testclient", "/api/discussions/nope/retry", 30, 60)

        response = client.post("/api/discussions/nope/retry", headers={"X-API-Key": API_KEY})

        assert response.status_code == 429
        assert response.headers["RateLimit-Limit"] == "30"

    def test_invalid_json_body(self, client):
        response = client.post("/api/webhooks/notion", content=b"not json")
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PAYLOAD"


class TestSlackRoute:
    """Tests for /api/webhooks/slack."""

    def test_challenge_with_valid_signature(self, config, client):
        config.secrets.slack_signing_secret = SECRET
        body = json.dumps({"type": "url_verification", "challenge": "abc123"}).encode()

        response = client.post("/api/webhooks/slack", content=body, headers=slack_headers(body))

        assert response.status_code == 200
        assert response.json() == {"challenge": "abc123"}

    def test_bad_signature(self, config, client):
        config.secrets.slack_signing_secret = SECRET
        body = json.dumps({"type": "url_verification", "challenge": "abc123"}).encode()

        response = client.post("/api/webhooks/slack", content=body, headers=slack_headers(body, "wrong-secret"))

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid webhook signature"

    def test_ignores_other_events(self, client):
        body = {"type": "event_callback", "event": {"type": "message", "text": "hi"}}
        response = client.post("/api/webhooks/slack", json=body)
        assert response.json() == {"success": True, "message": "Event type not supported", "event_type": "message"}

    def test_rate_limited(self, client, app_context):
        for _ in range(100):
            app_context.rate_limiter.check_rate_limit("testclient", "/api/webhooks/slack", 100, 60)

        response = client.post("/api/webhooks/slack", json={"type": "url_verification", "challenge": "x"})

        assert response.status_code == 429
        assert response.json()["error"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["RateLimit-Limit"] == "100"
        assert "Retry-After" in response.headers


class TestMailgunRoute:
    """Tests for /api/webhooks/mailgun."""

    def test_missing_recipient(self, client):
        response = client.post("/api/webhooks/mailgun", json={"body-plain": "hello"})
        assert response.status_code == 400
        assert response.json()["errors"] == ["Missing required field: recipient"]

    def test_bad_signature(self, config, client):
        config.secrets.mailgun_signing_key = SECRET
        form = {**FIGMA_EMAIL, "timestamp": str(int(time.time())), "token": "tok", "signature": "bad"}

        response = client.post("/api/webhooks/mailgun", data=form)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_figma_email_end_to_end(self, client, seed_flow, fake_api, discussions):
        await seed_flow(SourceType.FIGMA, input_kwargs={"email_slug": "acme-design", "api_token": "figd_token"})
        fake_api.add("GET", "api.figma.com/v1/files/FILE123/comments", FIGMA_COMMENTS)
        fake_api.add("POST", "api.figma.com/v1/files/FILE123/comments", {"id": "c9"})
        fake_api.add("POST", "api.figma.com/v1/files/FILE123/comments/c2/reactions", {})
        fake_api.add("POST", NOTION_PAGES, {"id": "page-1", "url": "https://notion.so/page-1"})

        response = client.post("/api/webhooks/mailgun", data=FIGMA_EMAIL)

        assert response.status_code == 200
        body = response.json()
        assert body["success"]
        assert body["task_count"] == 1
        assert body["tasks"] == [{"id": "page-1", "url": "https://notion.so/page-1"}]

        record = await discussions.get_discussion(body["discussion_id"])
        assert record.thread_ref == "FILE123:c2"
        reply = json_body(fake_api.calls("POST", "api.figma.com/v1/files/FILE123/comments")[0])
        assert reply["comment_id"] == "c2"
        assert "https://notion.so/page-1" in reply["message"]


class TestResendRoute:
    """Tests for /api/webhooks/resend."""

    EVENT = {"type": "email.received", "created_at": "2023-11-14T22:13:20Z", "data": {"email_id": "em_9"}}

    def test_requires_resend_client(self, client):
        response = client.post("/api/webhooks/resend", json=self.EVENT)
        assert response.status_code == 500
        assert response.json()["error"] == "RESEND_NOT_CONFIGURED"

    def test_rejects_other_event_types(self, client):
        response = client.post("/api/webhooks/resend", json={**self.EVENT, "type": "email.sent"})
        assert response.status_code == 400
        assert response.json()["errors"] == ["Invalid event type: email.sent. Expected: email.received"]

    @pytest.mark.asyncio
    async def test_verification_email_is_stored_and_forwarded(self, client, app_context, http_client,
                                                              seed_flow, fake_api, inbox):
        resend = ResendClient(http_client, "re_token")
        app_context.resend_client = resend
        app_context.forwarder = EmailForwarder(resend, inbox, EmailConfig())
        _, flow_input, _ = await seed_flow(SourceType.FIGMA, input_kwargs={
            "email_slug": "acme-design", "enable_email_forwarding": True, "owner_email": "owner@example.com",
        })
        fake_api.add("GET", "api.resend.com/emails/receiving/em_9", {
            "id": "em_9",
            "from": "no-reply@figma.com",
            "to": ["acme-design@in.discubot.app"],
            "subject": "Verify your email",
            "html": "<p>Click to verify your email</p>",
            "text": "Click to verify your email",
            "created_at": "2023-11-14T22:13:20Z",
        })
        fake_api.add("POST", "api.resend.com/emails", {"id": "sent_1"})

        response = client.post("/api/webhooks/resend", json=self.EVENT)

        assert response.status_code == 200
        body = response.json()
        assert body["stored"]
        assert body["forwarded"]
        assert body["message_type"] == "account-verification"
        stored = await inbox.get_messages_by_input(flow_input.id)
        assert [m.provider_email_id for m in stored] == ["em_9"]
        assert stored[0].forwarded_to == "owner@example.com"

    def test_fetch_failure(self, client, app_context, http_client, fake_api):
        app_context.resend_client = ResendClient(http_client, "re_token")
        fake_api.add("GET", "api.resend.com/emails/receiving/em_9", (404, {"message": "Email not found"}))

        response = client.post("/api/webhooks/resend", json=self.EVENT)

        assert response.status_code == 422
        assert response.json()["detail"]["message"] == "Failed to fetch email from Resend API"

    def test_transient_fetch_failure_asks_for_redelivery(self, client, app_context, http_client, fake_api):
        app_context.resend_client = ResendClient(http_client, "re_token")
        fake_api.add("GET", "api.resend.com/emails/receiving/em_9", (503, {"message": "Service unavailable"}))

        response = client.post("/api/webhooks/resend", json=self.EVENT)

        assert response.status_code == 503
        assert response.json()["detail"]["message"] == "Failed to fetch email from Resend API"

    def test_signature_checked_before_payload(self, config, client):
        config.secrets.resend_webhook_signing_secret = "whsec_" + base64.b64encode(b"resend-secret").decode()
        headers = {"svix-id": "msg_1", "svix-timestamp": str(int(time.time())), "svix-signature": "v1,bad"}

        response = client.post("/api/webhooks/resend", json={"type": "email.sent"}, headers=headers)

        assert response.status_code == 401


class TestNotionInputRoute:
    """Tests for /api/webhooks/notion-input."""

    @pytest.fixture
    def notion_input_kwargs(self):
        return {"source_metadata": {"notionWorkspaceId": "W1", "notionToken": "ntn_input"}}

    def test_challenge(self, client):
        response = client.post("/api/webhooks/notion-input", json={"verification_token": "tok-1"})
        assert response.json() == {"verification_token": "tok-1"}

    def test_bad_signature(self, config, client):
        config.secrets.notion_webhook_secret = SECRET
        response = client.post(
            "/api/webhooks/notion-input", json=NOTION_EVENT, headers={"X-Notion-Signature": "v1=bad"},
        )
        assert response.status_code == 401

    def test_rate_limited_per_workspace(self, client, app_context):
        for _ in range(60):
            app_context.rate_limiter.check_rate_limit("notion:W1", "notion-input", 60, 60)
        response = client.post("/api/webhooks/notion-input", json=NOTION_EVENT)
        assert response.status_code == 429

    def test_no_matching_flow(self, client):
        response = client.post("/api/webhooks/notion-input", json=NOTION_EVENT)
        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "No active flow configured for workspace: W1"}

    @pytest.mark.asyncio
    async def test_comment_without_trigger(self, client, seed_flow, fake_api, notion_input_kwargs):
        await seed_flow(SourceType.NOTION, input_kwargs=notion_input_kwargs)
        fake_api.add("GET", "api.notion.com/v1/comments/comment-1", {
            **NOTION_COMMENT, "rich_text": [{"plain_text": "just a note"}],
        })

        response = client.post("/api/webhooks/notion-input", json=NOTION_EVENT)

        assert response.json() == {"success": True, "message": "Comment does not contain trigger keyword 'discubot'"}
        assert fake_api.calls("POST", NOTION_PAGES) == []

    @pytest.mark.asyncio
    async def test_trigger_end_to_end(self, client, seed_flow, fake_api, flows, notion_input_kwargs):
        _, flow_input, _ = await seed_flow(SourceType.NOTION, input_kwargs=notion_input_kwargs)
        fake_api.add("GET", "api.notion.com/v1/comments/comment-1", NOTION_COMMENT)
        fake_api.add("GET", "api.notion.com/v1/comments", {"results": [NOTION_COMMENT], "has_more": False})
        fake_api.add("GET", "api.notion.com/v1/blocks/page-1/children", {"results": [], "has_more": False})
        fake_api.add("GET", "api.notion.com/v1/users", {"results": [{"id": "user-1", "name": "Ada"}]})
        fake_api.add("POST", NOTION_PAGES, {"id": "page-9", "url": "https://notion.so/page-9"})
        fake_api.add("POST", "api.notion.com/v1/comments", {"object": "comment"})

        response = client.post("/api/webhooks/notion-input", json={**NOTION_EVENT, "integration_id": "I1"})

        assert response.status_code == 200
        body = response.json()
        assert body["task_count"] == 1
        assert body["tasks"] == [{"id": "page-9", "url": "https://notion.so/page-9"}]
        page = json_body(fake_api.calls("POST", NOTION_PAGES)[0])
        assert page["parent"] == {"database_id": "db-main"}
        assert page["properties"]["Name"]["title"][0]["text"]["content"] == "Fix login button"
        reply = json_body(fake_api.calls("POST", "api.notion.com/v1/comments")[0])
        assert reply["discussion_id"] == "disc-1"
        stored = await flows.get_input(flow_input.id)
        assert stored.source_metadata["notionIntegrationId"] == "I1"

    @pytest.mark.asyncio
    async def test_epoch_timestamp_without_comment_time(self, client, seed_flow, fake_api, notion_input_kwargs):
        await seed_flow(SourceType.NOTION, input_kwargs=notion_input_kwargs)
        comment = {k: v for k, v in NOTION_COMMENT.items() if k != "created_time"}
        fake_api.add("GET", "api.notion.com/v1/comments/comment-1", comment)
        fake_api.add("GET", "api.notion.com/v1/comments", {"results": [comment], "has_more": False})
        fake_api.add("GET", "api.notion.com/v1/blocks/page-1/children", {"results": [], "has_more": False})
        fake_api.add("GET", "api.notion.com/v1/users", {"results": []})
        fake_api.add("POST", NOTION_PAGES, {"id": "page-9", "url": "https://notion.so/page-9"})
        fake_api.add("POST", "api.notion.com/v1/comments", {"object": "comment"})

        response = client.post("/api/webhooks/notion-input", json={**NOTION_EVENT, "timestamp": int(time.time())})

        assert response.status_code == 200
        assert response.json()["task_count"] == 1


class TestNotionCompletionRoute:
    """Tests for /api/webhooks/notion."""

    def page_event(self, status):
        return {
            "type": "page",
            "data": {"object": "page", "id": "page-x", "properties": {"Status": {"status": {"name": status}}}},
        }

    def test_unknown_task(self, client):
        response = client.post("/api/webhooks/notion", json=self.page_event("Done"))
        assert response.json() == {"success": False, "error": "Task not found", "notion_page_id": "page-x"}

    def test_other_status_ignored(self, client):
        response = client.post("/api/webhooks/notion", json=self.page_event("In progress"))
        assert response.json() == {"success": True, "message": 'Status "In progress" is not Done - ignored'}

    def test_rate_limited(self, client, app_context):
        for _ in range(100):
            app_context.rate_limiter.check_rate_limit("testclient", "/api/webhooks/notion", 100, 60)
        response = client.post("/api/webhooks/notion", json=self.page_event("Done"))
        assert response.status_code == 429


class TestConnectionRoutes:
    """Tests for the /api/.../test-connection management routes."""

    @pytest.fixture
    def headers(self, config):
        config.secrets.management_api_key = API_KEY
        return {"X-API-Key": API_KEY}

    @pytest.mark.asyncio
    async def test_flow_outputs(self, client, headers, seed_flow, fake_api):
        flow, _, output = await seed_flow(SourceType.SLACK, input_kwargs=slack_input_kwargs())
        fake_api.add("GET", "api.notion.com/v1/databases/db-main", {
            "title": [{"plain_text": "Tasks"}],
            "properties": {"Name": {"type": "title"}, "Priority": {"type": "select", "select": {"options": []}}},
        })

        response = client.post(f"/api/flows/{flow.id}/test-connection", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"]
        [result] = body["outputs"]
        assert result["output_id"] == output.id
        assert result["details"]["title"] == "Tasks"
        assert result["details"]["suggested_mapping"]["priority"]["notionProperty"] == "Priority"
        request = fake_api.calls("GET", "api.notion.com/v1/databases/db-main")[0]
        assert request.headers["Authorization"] == "Bearer ntn_output_token"

    @pytest.mark.asyncio
    async def test_flow_output_unreachable(self, client, headers, seed_flow, fake_api):
        flow, _, _ = await seed_flow(SourceType.SLACK, input_kwargs=slack_input_kwargs())
        fake_api.add("GET", "api.notion.com/v1/databases/db-main", (404, {"message": "Could not find database"}))

        body = client.post(f"/api/flows/{flow.id}/test-connection", headers=headers).json()

        assert not body["success"]
        assert not body["outputs"][0]["connected"]
        assert "Could not find database" in body["outputs"][0]["error"]

    def test_unknown_flow(self, client, headers):
        response = client.post("/api/flows/missing/test-connection", headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "FLOW_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_input(self, client, headers, seed_flow, fake_api):
        _, flow_input, _ = await seed_flow(SourceType.SLACK, input_kwargs=slack_input_kwargs())
        fake_api.add("POST", "slack.com/api/auth.test", {"ok": True})

        response = client.post(f"/api/inputs/{flow_input.id}/test-connection", headers=headers)

        assert response.json() == {
            "success": True, "input_id": flow_input.id, "source_type": "slack", "connected": True, "error": None,
        }

    def test_requires_api_key(self, config, client):
        config.secrets.management_api_key = API_KEY
        assert client.post("/api/inputs/any/test-connection").status_code == 401
