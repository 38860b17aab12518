"""
Confirmation replies posted back to the source thread.

A flow's ``reply_personality`` is either a preset name or
``custom:<instructions>``; custom personalities are written by Claude
and fall back to the professional preset on any failure.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from ..models.task import NotionTaskResult

logger = logging.getLogger(__name__)

DEFAULT_PERSONALITY = "professional"
CUSTOM_PREFIX = "custom:"
CUSTOM_REPLY_MODEL = "claude-3-haiku-20240307"


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def _numbered(tasks: List[NotionTaskResult], fmt: str = "{i}. {url}") -> str:
    return "\n".join(fmt.format(i=i, url=t.url) for i, t in enumerate(tasks, 1))


@dataclass(frozen=True)
class Personality:
    label: str
    description: str
    no_tasks: str
    single_task: Callable[[str], str]
    multiple_tasks: Callable[[List[NotionTaskResult]], str]
    bootstrap: Callable[[int], str]


PERSONALITY_PRESETS: Dict[str, Personality] = {
    "professional": Personality(
        label="Professional",
        description="Formal, clear, minimal",
        no_tasks="✅ Discussion processed (no tasks created)",
        single_task=lambda url: f"✅ Task created in Notion\n🔗 {url}",
        multiple_tasks=lambda tasks: f"✅ Created {len(tasks)} tasks in Notion:\n{_numbered(tasks)}",
        bootstrap=lambda n: (
            f"Found {n} {_plural(n, 'user')}. Map them in your dashboard."
            if n > 0 else
            "Bootstrap comment processed. No @mentions detected - add users manually in the dashboard."
        ),
    ),
    "friendly": Personality(
        label="Friendly",
        description="Warm, encouraging",
        no_tasks="Got it! 👍 I've noted this discussion, but no specific tasks were needed.",
        single_task=lambda url: f"Nice catch! 🎯 I've logged this as a task for you:\n{url}",
        multiple_tasks=lambda tasks: f"Great discussion! 🙌 I've created {len(tasks)} tasks:\n{_numbered(tasks)}",
        bootstrap=lambda n: (
            f"Welcome aboard! 👋 Found {n} team {_plural(n, 'member')}. "
            "Head to your dashboard to map them to Notion users."
            if n > 0 else
            "Hi there! 👋 Bootstrap received, but I didn't spot any @mentions. "
            "You can add users manually in the dashboard."
        ),
    ),
    "concise": Personality(
        label="Concise",
        description="Ultra-brief",
        no_tasks="✓ Noted",
        single_task=lambda url: f"Done → {url}",
        multiple_tasks=lambda tasks: f"{len(tasks)} tasks → {' '.join(t.url for t in tasks)}",
        bootstrap=lambda n: f"{n} users found" if n > 0 else "No users found",
    ),
    "pirate": Personality(
        label="Pirate",
        description="Arrr!",
        no_tasks="Ahoy! ⚓ I've scanned the horizon but found no treasure (tasks) to log!",
        single_task=lambda url: f"Arrr! ⚓ Task be logged in ye Notion seas!\n🗺️ {url}",
        multiple_tasks=lambda tasks: (
            f"Shiver me timbers! ☠️ {len(tasks)} treasures have been charted:\n{_numbered(tasks)}"
        ),
        bootstrap=lambda n: (
            f"Ahoy! 🏴‍☠️ {n} crew {_plural(n, 'member')} spotted! Chart 'em in yer dashboard, captain!"
            if n > 0 else
            "Arrr! No crew spotted in these waters. Add yer mateys manually!"
        ),
    ),
    "robot": Personality(
        label="Robot",
        description="Beep boop",
        no_tasks="SCAN_COMPLETE. TASKS_DETECTED: 0. STATUS: ACKNOWLEDGED.",
        single_task=lambda url: f"TASK_CREATED: SUCCESS.\nDATA_LINK: {url}\nSTATUS: OPERATIONAL.",
        multiple_tasks=lambda tasks: (
            f"BATCH_PROCESS: COMPLETE.\nTASKS_GENERATED: {len(tasks)}\n"
            f"{_numbered(tasks, '[{i}] {url}')}\nEND_TRANSMISSION."
        ),
        bootstrap=lambda n: (
            f"USER_SCAN: COMPLETE. ENTITIES_FOUND: {n}. AWAITING_MAPPING_INPUT."
            if n > 0 else
            "USER_SCAN: COMPLETE. ENTITIES_FOUND: 0. MANUAL_INPUT_REQUIRED."
        ),
    ),
    "zen": Personality(
        label="Zen",
        description="Calm, mindful",
        no_tasks="🧘 The discussion flows like water. No tasks arise from this moment.",
        single_task=lambda url: f"🧘 A task has found its home. Peace follows action.\n{url}",
        multiple_tasks=lambda tasks: (
            f"🧘 {len(tasks)} intentions have been set. Each step brings clarity.\n{_numbered(tasks)}"
        ),
        bootstrap=lambda n: (
            f"🧘 {n} {_plural(n, 'soul')} have been recognized. "
            "Connect them in your dashboard to complete the circle."
            if n > 0 else
            "🧘 The search finds stillness. Add your companions when the time is right."
        ),
    ),
}


def is_preset(personality: Optional[str]) -> bool:
    return personality is not None and personality in PERSONALITY_PRESETS


def is_custom_prompt(personality: Optional[str]) -> bool:
    return personality is not None and personality.startswith(CUSTOM_PREFIX)


def extract_custom_prompt(personality: str) -> str:
    return personality[len(CUSTOM_PREFIX):].strip()


def _prefix_icon(message: str, icon: Optional[str]) -> str:
    if icon and not message.startswith(icon):
        return f"{icon} {message}"
    return message


def preset_reply(tasks: List[NotionTaskResult], personality: str = DEFAULT_PERSONALITY) -> str:
    preset = PERSONALITY_PRESETS.get(personality, PERSONALITY_PRESETS[DEFAULT_PERSONALITY])
    if not tasks:
        return preset.no_tasks
    if len(tasks) == 1:
        return preset.single_task(tasks[0].url)
    return preset.multiple_tasks(tasks)


def preset_bootstrap(user_count: int, personality: str = DEFAULT_PERSONALITY) -> str:
    preset = PERSONALITY_PRESETS.get(personality, PERSONALITY_PRESETS[DEFAULT_PERSONALITY])
    return preset.bootstrap(user_count)


class ReplyGenerator:
    """Builds the reply text for processed and bootstrap discussions."""

    def __init__(self, client: Optional[AsyncAnthropic] = None, model: str = CUSTOM_REPLY_MODEL):
        self._client = client
        self.model = model

    async def generate_reply(
        self,
        tasks: List[NotionTaskResult],
        personality: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> str:
        selected = personality or DEFAULT_PERSONALITY

        if is_preset(selected):
            return _prefix_icon(preset_reply(tasks, selected), icon)

        if is_custom_prompt(selected):
            if not tasks:
                context = "No tasks were created from this discussion."
            elif len(tasks) == 1:
                context = f"One task was created: {tasks[0].url}"
            else:
                context = f"{len(tasks)} tasks were created:\n{_numbered(tasks)}"
            prompt = (
                f"You are a bot confirming task creation. {extract_custom_prompt(selected)}\n"
                f"Context: {context}\n"
                "Generate a SHORT reply message (1-3 sentences max) confirming the task(s). "
                "Include the URLs if tasks were created. Keep it brief and match the personality style."
            )
            text = await self._custom(prompt, max_tokens=150)
            return _prefix_icon(text if text else preset_reply(tasks), icon)

        logger.warning(f"Unknown reply personality '{selected}', using {DEFAULT_PERSONALITY}")
        return _prefix_icon(preset_reply(tasks), icon)

    async def generate_bootstrap(
        self,
        user_count: int,
        personality: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> str:
        selected = personality or DEFAULT_PERSONALITY

        if is_preset(selected):
            return _prefix_icon(preset_bootstrap(user_count, selected), icon)

        if is_custom_prompt(selected):
            if user_count > 0:
                context = (
                    f"{user_count} {'user was' if user_count == 1 else 'users were'} discovered from "
                    "@mentions. Users need to be mapped in the dashboard."
                )
            else:
                context = "No users were found in the @mentions. Users can be added manually in the dashboard."
            prompt = (
                f"You are a bot confirming user discovery for mapping. {extract_custom_prompt(selected)}\n"
                f"Context: {context}\n"
                "Generate a SHORT reply message (1-2 sentences max) about the user discovery. "
                "Keep it brief and match the personality style."
            )
            text = await self._custom(prompt, max_tokens=100)
            return _prefix_icon(text if text else preset_bootstrap(user_count), icon)

        return _prefix_icon(preset_bootstrap(user_count), icon)

    async def _custom(self, prompt: str, max_tokens: int) -> Optional[str]:
        """Ask Claude for a custom reply; None means use the professional preset."""
        if self._client is None:
            logger.warning("Custom personality requires an Anthropic API key, using professional")
            return None
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error(f"Custom reply generation failed, using professional: {e}")
            return None

        text = response.content[0].text.strip() if response.content else ""
        return text or None
