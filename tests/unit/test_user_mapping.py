"""
Tests for user mapping resolution, mention conversion and bootstrap discovery.
"""

import pytest

from discubot.models.discussion import DiscussionThread, ThreadMessage
from discubot.models.flow import FlowInput, SourceType
from discubot.models.user_mapping import UserMapping
from discubot.services.user_mapping import (
    DiscoveredUser,
    UserMention,
    convert_figma_mentions,
    convert_slack_mentions,
    convert_thread_mentions,
    detect_bootstrap,
    load_user_mentions,
    source_workspace_id,
    store_discovered_users,
)


def slack_thread(root_text, reply_text="Looks good"):
    return DiscussionThread(
        id="C1:1.0",
        root_message=ThreadMessage(id="1.0", author_handle="U111", content=root_text),
        replies=[ThreadMessage(id="2.0", author_handle="U222", author_name="Bob", content=reply_text)],
        participants=["U111", "U222"],
    )


class TestMentionConversion:
    """Tests for rewriting source mentions."""

    def test_slack_mentions(self):
        mentions = {"U111": UserMention(name="Ada", notion_id="n-1")}
        converted = convert_slack_mentions("<@UBOT>  ping <@U111|ada> and <@U333>", mentions, "UBOT")
        assert converted == "ping @Ada (n-1) and <@U333>"

    def test_slack_without_bot_keeps_spacing(self):
        assert convert_slack_mentions("a  <@U9>", {}) == "a  <@U9>"

    def test_figma_mention_forms(self):
        mentions = {
            "def2": UserMention(name="Ada L.", notion_id="n-2"),
            "u9": UserMention(name="Bob B", notion_id="n-9"),
        }
        content = "@Figbot (abc1) hey @Ada Lovelace (def2) and @[u9:Bob]"
        converted = convert_figma_mentions(content, mentions, bot_handle="Figbot")
        assert converted == "hey @Ada L. and @Bob B (n-9)"

    def test_figma_plain_handles(self):
        by_handle = {"ada": UserMention(name="Ada Lovelace", notion_id="n-1")}
        assert convert_figma_mentions("@figbot thanks @ada", {}, by_handle, bot_handle="figbot") == "thanks @Ada Lovelace"

    def test_thread_conversion_names_authors(self):
        thread = slack_thread("<@UBOT> fix <@U222>")
        flow_input = FlowInput(source_type=SourceType.SLACK, source_metadata={"botUserId": "UBOT"})
        mentions = {"U111": UserMention(name="Ada", notion_id="n-1"), "U222": UserMention(name="Bob", notion_id="n-2")}

        convert_thread_mentions(thread, SourceType.SLACK, mentions, flow_input)

        assert thread.root_message.content == "fix @Bob (n-2)"
        assert thread.root_message.author_name == "Ada"


class TestBootstrap:
    """Tests for user-sync detection and storage."""

    def test_not_bootstrap(self):
        assert not detect_bootstrap(slack_thread("please fix"), SourceType.SLACK).is_bootstrap

    def test_slack_discovers_authors_and_unmapped_mentions(self):
        detection = detect_bootstrap(slack_thread("User Sync <@U333> <@U111>"), SourceType.SLACK)
        assert detection.is_bootstrap
        assert detection.reason == 'Contains "user sync" keyword'
        assert [(u.user_id, u.display_name) for u in detection.users] == [
            ("U111", "U111"), ("U222", "Bob"), ("U333", "U333"),
        ]

    def test_keyword_in_email_content(self):
        detection = detect_bootstrap(slack_thread("hello"), SourceType.FIGMA, email_content="bootstrap please")
        assert detection.is_bootstrap
        assert [u.user_id for u in detection.users] == ["U222"]

    @pytest.mark.asyncio
    async def test_store_skips_known_users(self, user_mappings):
        await user_mappings.save_mapping(UserMapping(
            team_id="team-1", source_type=SourceType.SLACK, source_workspace_id="T123",
            source_user_id="U111", notion_user_id="n-1",
        ))
        users = [DiscoveredUser("U111", "Ada"), DiscoveredUser("U222", "Bob")]

        created = await store_discovered_users(user_mappings, users, "team-1", SourceType.SLACK, "T123")

        assert created == 1
        pending = await user_mappings.find_mapping("team-1", SourceType.SLACK, "T123", "U222")
        assert pending.is_pending
        assert not pending.active
        assert pending.mapping_type == "discovered"


class TestLoadUserMentions:
    """Tests for loading active, completed mappings."""

    @pytest.mark.asyncio
    async def test_filters(self, user_mappings):
        def mapping(user_id, workspace="T123", notion_id="n", active=True, **kwargs):
            return UserMapping(
                team_id="team-1", source_type=SourceType.SLACK, source_workspace_id=workspace,
                source_user_id=user_id, notion_user_id=notion_id, active=active, **kwargs,
            )

        for m in (
            mapping("U1", notion_user_name="Ada"),
            mapping("U2", notion_id=None),
            mapping("U3", workspace="T999"),
            mapping("U4", workspace="", source_user_name="dee"),
            mapping("U5", active=False),
        ):
            await user_mappings.save_mapping(m)
        await user_mappings.save_mapping(UserMapping(
            team_id="team-1", source_type=SourceType.FIGMA, source_user_id="U6", notion_user_id="n",
        ))

        mentions = await load_user_mentions(user_mappings, "team-1", SourceType.SLACK, "T123")

        assert sorted(mentions) == ["U1", "U4"]
        assert mentions["U1"].name == "Ada"
        assert mentions["U4"].name == "dee"

    def test_workspace_scope(self):
        assert source_workspace_id(FlowInput(source_type=SourceType.FIGMA, email_slug="acme")) == "acme"
        slack = FlowInput(source_type=SourceType.SLACK, source_metadata={"slackTeamId": "T1"})
        assert source_workspace_id(slack) == "T1"
        assert source_workspace_id(FlowInput(source_type=SourceType.NOTION), "W-fallback") == "W-fallback"
