"""
Tests for confirmation replies.
"""

import pytest

from discubot.models.task import NotionTaskResult
from discubot.services.reply_generator import PERSONALITY_PRESETS, ReplyGenerator

from conftest import FakeAnthropic


def results(count):
    return [NotionTaskResult(id=f"p{i}", url=f"https://notion.so/p{i}") for i in range(1, count + 1)]


class TestPresetReplies:
    """Tests for the built-in personalities."""

    @pytest.mark.asyncio
    async def test_professional_default(self):
        generator = ReplyGenerator()
        assert await generator.generate_reply([]) == "✅ Discussion processed (no tasks created)"
        assert await generator.generate_reply(results(1)) == "✅ Task created in Notion\n🔗 https://notion.so/p1"
        assert await generator.generate_reply(results(2)) == (
            "✅ Created 2 tasks in Notion:\n1. https://notion.so/p1\n2. https://notion.so/p2"
        )

    @pytest.mark.asyncio
    async def test_every_preset_mentions_task_urls(self):
        generator = ReplyGenerator()
        for name in PERSONALITY_PRESETS:
            reply = await generator.generate_reply(results(2), name)
            assert "https://notion.so/p1" in reply and "https://notion.so/p2" in reply

    @pytest.mark.asyncio
    async def test_icon_prefix(self):
        generator = ReplyGenerator()
        assert await generator.generate_reply(results(1), "concise", "🤖") == "🤖 Done → https://notion.so/p1"

    @pytest.mark.asyncio
    async def test_unknown_personality_falls_back(self):
        reply = await ReplyGenerator().generate_reply(results(1), "shakespeare")
        assert reply.startswith("✅ Task created in Notion")

    @pytest.mark.asyncio
    async def test_bootstrap(self):
        generator = ReplyGenerator()
        assert await generator.generate_bootstrap(3) == "Found 3 users. Map them in your dashboard."
        assert await generator.generate_bootstrap(1, "concise") == "1 users found"
        assert (await generator.generate_bootstrap(0, "robot")).endswith("MANUAL_INPUT_REQUIRED.")


class TestCustomReplies:
    """Tests for custom: personalities."""

    @pytest.mark.asyncio
    async def test_custom_uses_claude(self):
        client = FakeAnthropic(reply="  Yo, task is live: https://notion.so/p1  ")
        generator = ReplyGenerator(client)

        reply = await generator.generate_reply(results(1), "custom:Talk like a surfer", "🏄")

        assert reply == "🏄 Yo, task is live: https://notion.so/p1"
        prompt = client.messages.prompts[0]
        assert prompt.startswith("You are a bot confirming task creation. Talk like a surfer")
        assert "https://notion.so/p1" in prompt

    @pytest.mark.asyncio
    async def test_custom_without_client_uses_professional(self):
        reply = await ReplyGenerator().generate_reply(results(1), "custom:Talk like a surfer")
        assert reply.startswith("✅ Task created in Notion")

    @pytest.mark.asyncio
    async def test_empty_custom_reply_uses_professional(self):
        reply = await ReplyGenerator(FakeAnthropic(reply="")).generate_bootstrap(2, "custom:Be brief")
        assert reply == "Found 2 users. Map them in your dashboard."
