"""
Source user to Notion user resolution.

Mappings are loaded once per run as ``source_user_id -> UserMention`` and
used to rewrite mentions in thread content, name message authors and
assign Notion people properties. Bootstrap ("user sync") comments feed
new, pending mappings back into the repository.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..data.base import UserMappingRepository
from ..models.discussion import DiscussionThread
from ..models.flow import FlowInput, SourceType
from ..models.user_mapping import UserMapping

logger = logging.getLogger(__name__)

BOOTSTRAP_KEYWORDS = ("user sync", "bootstrap")

_SLACK_MENTION = re.compile(r"<@([A-Z0-9]+)(?:\|[^>]*)?>")
_FIGMA_PAREN_MENTION = re.compile(r"@([^(@]+?)\s*\(([a-f0-9-]+)\)", re.IGNORECASE)
_FIGMA_BRACKET_MENTION = re.compile(r"@\[([^\]:]+):([^\]]+)\]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class UserMention:
    name: str
    notion_id: str


@dataclass
class DiscoveredUser:
    user_id: str
    display_name: str


@dataclass
class BootstrapDetection:
    is_bootstrap: bool
    users: List[DiscoveredUser] = field(default_factory=list)
    reason: Optional[str] = None


def is_bootstrap_text(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in BOOTSTRAP_KEYWORDS)


def source_workspace_id(flow_input: FlowInput, fallback: str = "") -> str:
    """Workspace scope a source user id lives in."""
    metadata = flow_input.source_metadata or {}
    if flow_input.source_type == SourceType.FIGMA:
        return flow_input.email_slug or fallback
    return (
        metadata.get("slackTeamId")
        or metadata.get("notionWorkspaceId")
        or fallback
    )


async def load_user_mentions(
    repository: UserMappingRepository,
    team_id: str,
    source_type: SourceType,
    workspace_id: Optional[str] = None,
) -> Dict[str, UserMention]:
    """Active, completed mappings for one team and source.

    A mapping without a workspace id applies to every workspace.
    """
    mappings = await repository.get_mappings(team_id, source_type=source_type, active_only=True)
    mentions: Dict[str, UserMention] = {}
    for mapping in mappings:
        if mapping.is_pending:
            continue
        if workspace_id and mapping.source_workspace_id and mapping.source_workspace_id != workspace_id:
            continue
        name = mapping.notion_user_name or mapping.source_user_name or mapping.source_user_id
        mentions[mapping.source_user_id] = UserMention(name=name, notion_id=mapping.notion_user_id)
    logger.info(f"Loaded {len(mentions)} user mapping(s) for {source_type.value} in team {team_id}")
    return mentions


async def load_handle_mentions(repository: UserMappingRepository, team_id: str) -> Dict[str, UserMention]:
    """Figma mappings keyed by source display name, for plain ``@handle`` text."""
    mappings = await repository.get_mappings(team_id, source_type=SourceType.FIGMA, active_only=True)
    return {
        m.source_user_name: UserMention(name=m.notion_user_name or m.source_user_name, notion_id=m.notion_user_id)
        for m in mappings
        if m.source_user_name and not m.is_pending
    }


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def convert_slack_mentions(
    content: str,
    mentions: Dict[str, UserMention],
    bot_user_id: Optional[str] = None,
) -> str:
    """``<@U123>`` becomes ``@Name (notionId)``; the bot's own mention is dropped."""
    def replace(match):
        user_id = match.group(1)
        if bot_user_id and user_id == bot_user_id:
            return ""
        mention = mentions.get(user_id)
        if mention is None:
            return match.group(0)
        return f"@{mention.name} ({mention.notion_id})"

    converted = _SLACK_MENTION.sub(replace, content)
    return _collapse(converted) if bot_user_id else converted


def convert_figma_mentions(
    content: str,
    mentions: Dict[str, UserMention],
    by_handle: Optional[Dict[str, UserMention]] = None,
    bot_user_id: Optional[str] = None,
    bot_handle: Optional[str] = None,
) -> str:
    """Normalize the three Figma mention forms and drop the bot mention."""
    bot_handle_lower = (bot_handle or "").lower()

    def is_bot(user_id: str, name: str) -> bool:
        return bool(
            (bot_user_id and user_id == bot_user_id)
            or (bot_handle_lower and name.strip().lower() == bot_handle_lower)
        )

    def replace_paren(match):
        name, user_id = match.group(1).strip(), match.group(2)
        if is_bot(user_id, name):
            return ""
        mention = mentions.get(user_id)
        return f"@{mention.name}" if mention else f"@{name}"

    def replace_bracket(match):
        user_id, name = match.group(1), match.group(2).strip()
        if is_bot(user_id, name):
            return ""
        mention = mentions.get(user_id)
        return f"@{mention.name} ({mention.notion_id})" if mention else f"@{name}"

    converted = _collapse(_FIGMA_PAREN_MENTION.sub(replace_paren, content))
    converted = _collapse(_FIGMA_BRACKET_MENTION.sub(replace_bracket, converted))

    if bot_handle:
        converted = _collapse(re.sub(rf"@{re.escape(bot_handle)}(?!\S)", "", converted, flags=re.IGNORECASE))

    for handle, mention in (by_handle or {}).items():
        converted = re.sub(rf"@{re.escape(handle)}(?!\S)", f"@{mention.name}", converted, flags=re.IGNORECASE)

    return converted


def convert_thread_mentions(
    thread: DiscussionThread,
    source_type: SourceType,
    mentions: Dict[str, UserMention],
    flow_input: FlowInput,
    by_handle: Optional[Dict[str, UserMention]] = None,
) -> DiscussionThread:
    """Rewrite mentions in every message and name authors from the mappings (in place)."""
    metadata = flow_input.source_metadata or {}
    bot_user_id = metadata.get("botUserId")
    bot_handle = metadata.get("botHandle") or flow_input.name or None

    for message in thread.messages:
        if source_type == SourceType.SLACK:
            message.content = convert_slack_mentions(message.content, mentions, bot_user_id)
        elif source_type == SourceType.FIGMA:
            message.content = convert_figma_mentions(
                message.content, mentions, by_handle, bot_user_id, bot_handle
            )

        mention = mentions.get(message.author_handle)
        if mention is not None:
            message.author_name = mention.name

    return thread


def notion_ids(mentions: Dict[str, UserMention]) -> Dict[str, str]:
    """``source_user_id -> notion_user_id`` for the task sink."""
    return {user_id: mention.notion_id for user_id, mention in mentions.items()}


def detect_bootstrap(
    thread: DiscussionThread,
    source_type: SourceType,
    email_content: Optional[str] = None,
) -> BootstrapDetection:
    """Decide whether a thread is a user-sync request and collect its users.

    Thread authors with a known display name are discovered for every
    source. Slack mentions left unconverted (users without a mapping yet)
    are discovered too.
    """
    root_text = thread.root_message.content.lower()
    extra = (email_content or "").lower()
    if "user sync" in root_text or "user sync" in extra:
        reason = 'Contains "user sync" keyword'
    elif "bootstrap" in root_text or "bootstrap" in extra:
        reason = 'Contains "bootstrap" keyword'
    else:
        return BootstrapDetection(is_bootstrap=False)

    users: Dict[str, str] = {}
    for message in thread.messages:
        if message.author_handle and message.author_name:
            users.setdefault(message.author_handle, message.author_name)
        elif source_type == SourceType.SLACK and message.author_handle:
            users.setdefault(message.author_handle, message.author_handle)

    if source_type == SourceType.SLACK:
        for message in thread.messages:
            for user_id in _SLACK_MENTION.findall(message.content):
                users.setdefault(user_id, user_id)

    discovered = [DiscoveredUser(user_id=k, display_name=v) for k, v in users.items()]
    logger.info(f"Bootstrap comment detected ({reason}); {len(discovered)} user(s) discovered")
    return BootstrapDetection(is_bootstrap=True, users=discovered, reason=reason)


async def store_discovered_users(
    repository: UserMappingRepository,
    users: List[DiscoveredUser],
    team_id: str,
    source_type: SourceType,
    workspace_id: str,
) -> int:
    """Save pending mappings for users that have none yet; returns the number created."""
    created = 0
    for user in users:
        existing = await repository.find_mapping(team_id, source_type, workspace_id, user.user_id)
        if existing is not None:
            continue
        await repository.save_mapping(UserMapping(
            team_id=team_id,
            source_type=source_type,
            source_workspace_id=workspace_id,
            source_user_id=user.user_id,
            source_user_name=user.display_name,
            notion_user_id=None,
            mapping_type="discovered",
            confidence=0.0,
            active=False,
        ))
        created += 1

    logger.info(
        f"Stored {created} pending user mapping(s) for {source_type.value} workspace {workspace_id} "
        f"({len(users) - created} already known)"
    )
    return created
