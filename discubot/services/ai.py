"""
Discussion analysis with Claude: summary and task detection.

Both calls run concurrently and the combined result is cached in memory
per thread and content, so a redelivered event does not pay twice.
"""

import asyncio
import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import anthropic
from anthropic import AsyncAnthropic

from ..config.constants import AI_MAX_TASKS
from ..config.settings import AIConfig
from ..exceptions import AIAnalysisError
from ..models.discussion import DiscussionThread, ThreadMessage
from ..models.task import AIAnalysisResult, AISummary, DetectedTask, TaskDetectionResult
from ..utils.retry import is_retryable, retry_with_backoff

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class AnalysisOptions:
    """Per-flow knobs for one analysis run."""
    source_type: Optional[str] = None
    summary_prompt: Optional[str] = None
    task_prompt: Optional[str] = None
    available_domains: List[str] = field(default_factory=list)
    max_tasks: int = AI_MAX_TASKS
    skip_cache: bool = False


def _display_name(message: ThreadMessage) -> str:
    return message.author_name or message.author_handle or "Unknown"


def format_conversation(thread: DiscussionThread) -> str:
    lines = [f"Root message by {_display_name(thread.root_message)}:", thread.root_message.content, ""]
    for reply in thread.replies:
        lines.append(f"Reply by {_display_name(reply)}:\n{reply.content}")
    return "\n".join(lines)


def build_summary_prompt(thread: DiscussionThread, options: AnalysisOptions) -> str:
    """Prompt asking for summary, key points, sentiment and primary domain as JSON."""
    conversation = format_conversation(thread)
    source_context = f" from {options.source_type}" if options.source_type else ""
    page_content = thread.metadata.get("pageContent")
    page_context = f"\nPage Context (the content being discussed):\n{page_content}\n" if page_content else ""

    if options.available_domains:
        domain_step = (
            "4. Detect the primary domain. Available domains: "
            f"{', '.join(options.available_domains)}. Return null if uncertain or if the "
            "discussion does not clearly fit one domain."
        )
    else:
        domain_step = (
            "4. Detect the primary domain if the discussion clearly relates to one "
            "(design, frontend, backend, product, marketing and so on). Return null if uncertain."
        )

    response_format = (
        "{\n"
        '  "summary": "...",\n'
        '  "keyPoints": ["..."] or [],\n'
        '  "sentiment": "positive|neutral|negative",\n'
        '  "confidence": 0.0-1.0,\n'
        '  "domain": "domain-name"|null\n'
        "}"
    )

    if options.summary_prompt:
        prompt = f"{options.summary_prompt}\n\n"
        if source_context:
            prompt += f"Context: This discussion is{source_context}.\n\n"
        if page_context:
            prompt += f"{page_context}\n"
        prompt += f"Discussion:\n{conversation}\n\n"
        prompt += f"\nImportant: {domain_step}\n"
        prompt += f"\nPlease respond in JSON format:\n{response_format}"
        return prompt

    return (
        f"Analyze this discussion thread{source_context} and provide:\n\n"
        "1. A concise summary (2-3 sentences)\n"
        "2. Key points or decisions (only if meaningful ones exist, otherwise an empty array)\n"
        "3. Overall sentiment (positive, neutral, or negative)\n"
        f"{domain_step}\n"
        f"{page_context}\n"
        f"Discussion:\n{conversation}\n\n"
        f"Respond in JSON format:\n{response_format}\n\n"
        "Do NOT fabricate key points. If the discussion is brief or lacks meaningful "
        "decisions, return an empty keyPoints array."
    )


def build_task_prompt(thread: DiscussionThread, options: AnalysisOptions) -> str:
    """Prompt asking for up to ``max_tasks`` actionable tasks as JSON."""
    conversation = format_conversation(thread)
    page_content = thread.metadata.get("pageContent")
    page_context = f"<page_context>\n{page_content}\n</page_context>\n\n" if page_content else ""
    custom = (
        f"<custom_instructions>\n{options.task_prompt}\n</custom_instructions>\n\n"
        if options.task_prompt else ""
    )

    if options.available_domains:
        domain_rules = (
            "### Domain Detection\n"
            "For EACH task, pick the domain that matches the work involved.\n"
            f"Available domains: {', '.join(options.available_domains)}\n"
            "Return null if the task does not clearly fit one domain."
        )
    else:
        domain_rules = (
            "### Domain Detection\n"
            "For EACH task, name its domain if clearly identifiable (design, frontend, "
            "backend, product...). Return null if uncertain or if it spans several."
        )

    return (
        "<task>\nAnalyze this discussion and identify actionable tasks. "
        "Extract task-specific action items for each task.\n</task>\n\n"
        f"{page_context}<discussion>\n{conversation}\n</discussion>\n\n"
        f"{custom}"
        "<instructions>\n"
        "## Task Detection Guidelines\n"
        "1. Look for specific, actionable work items mentioned or implied\n"
        f"2. Extract up to {options.max_tasks} tasks\n"
        "3. If no clear tasks exist, return an empty array\n"
        "4. Set isMultiTask=true if 2+ distinct tasks exist\n\n"
        f"{domain_rules}\n\n"
        "## Action Items\n"
        "Only list action items that are explicitly stated or clearly required. "
        "Return null instead of inventing steps.\n\n"
        "## Fields\n"
        "Fill a field only when confident, otherwise return null.\n"
        '- priority: "low" | "medium" | "high" | "urgent" | null\n'
        '- type: "bug" | "feature" | "question" | "improvement" | null\n'
        '- assignee: the UUID from a mention like "@Name (uuid)", or null\n'
        "- tags: relevant tags, or null\n"
        '- dueDate: "YYYY-MM-DD" only if explicitly mentioned, or null\n'
        "</instructions>\n\n"
        "<response_format>\n"
        "Respond with ONLY valid JSON in this exact format:\n"
        "{\n"
        '  "isMultiTask": true|false,\n'
        '  "tasks": [\n'
        "    {\n"
        '      "title": "Concise task title (5-10 words)",\n'
        '      "description": "What needs to be done (1-2 sentences)",\n'
        '      "actionItems": ["Step 1", "Step 2"] or null,\n'
        '      "priority": "low"|"medium"|"high"|"urgent"|null,\n'
        '      "type": "bug"|"feature"|"question"|"improvement"|null,\n'
        '      "assignee": "uuid-string"|null,\n'
        '      "dueDate": "YYYY-MM-DD"|null,\n'
        '      "tags": ["tag1"]|null,\n'
        '      "domain": "domain-name"|null\n'
        "    }\n"
        "  ],\n"
        '  "confidence": 0.0-1.0\n'
        "}\n"
        "</response_format>"
    )


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pull the outermost JSON object out of a model response."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise AIAnalysisError(
            "Failed to parse JSON from Claude response",
            error_code="AI_INVALID_RESPONSE",
        )
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise AIAnalysisError(
            f"Invalid JSON in Claude response: {e}",
            error_code="AI_INVALID_RESPONSE",
            cause=e,
        )
    if not isinstance(data, dict):
        raise AIAnalysisError("Claude response is not a JSON object", error_code="AI_INVALID_RESPONSE")
    return data


def _as_float(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def parse_summary(data: Dict[str, Any]) -> AISummary:
    return AISummary(
        summary=str(data.get("summary") or ""),
        key_points=[str(p) for p in (data.get("keyPoints") or data.get("key_points") or [])],
        sentiment=data.get("sentiment"),
        confidence=_as_float(data.get("confidence")),
        domain=data.get("domain") or None,
    )


def parse_task_detection(data: Dict[str, Any], max_tasks: int = AI_MAX_TASKS) -> TaskDetectionResult:
    raw_tasks = data.get("tasks") or []
    tasks = [DetectedTask.from_dict(t) for t in raw_tasks if isinstance(t, dict)][:max_tasks]
    return TaskDetectionResult(
        is_multi_task=bool(data.get("isMultiTask")) or len(tasks) > 1,
        tasks=tasks,
        confidence=_as_float(data.get("confidence")),
    )


def cache_key(thread: DiscussionThread) -> str:
    """``thread_{id}_{hash}`` over the root and reply bodies."""
    content = "|".join(m.content for m in thread.messages)
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
    return f"thread_{thread.id}_{digest}"


class DiscussionAnalyzer:
    """Runs summary and task detection against the Anthropic Messages API."""

    def __init__(
        self,
        client: Optional[AsyncAnthropic],
        config: Optional[AIConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        self._client = client
        self.config = config or AIConfig()
        self._clock = clock
        self._sleep = sleep
        self._cache: Dict[str, Tuple[float, AIAnalysisResult]] = {}

    @classmethod
    def from_api_key(cls, api_key: Optional[str], config: Optional[AIConfig] = None) -> 'DiscussionAnalyzer':
        client = AsyncAnthropic(api_key=api_key) if api_key else None
        if client is None:
            logger.warning("ANTHROPIC_API_KEY not set; AI analysis will fail until configured")
        return cls(client, config)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def analyze_discussion(
        self,
        thread: DiscussionThread,
        options: Optional[AnalysisOptions] = None,
    ) -> AIAnalysisResult:
        """Summarize a thread and detect its tasks.

        Args:
            thread: Fetched thread with mentions already converted
            options: Source type, custom prompts and available domains

        Returns:
            Combined analysis; ``cached`` is True when served from memory

        Raises:
            AIAnalysisError: When the API fails or returns unusable output
        """
        options = options or AnalysisOptions()
        key = cache_key(thread)

        if not options.skip_cache:
            cached = self._get_cached(key)
            if cached is not None:
                logger.info(f"AI analysis cache hit for thread {thread.id}")
                return cached

        started = self._clock()
        summary, detection = await asyncio.gather(
            self.generate_summary(thread, options),
            self.detect_tasks(thread, options),
        )
        result = AIAnalysisResult(
            summary=summary,
            task_detection=detection,
            processing_time=self._clock() - started,
            cached=False,
        )

        if not options.skip_cache:
            self._cache[key] = (self._clock() + self.config.cache_ttl, result)

        logger.info(
            f"Analyzed thread {thread.id}: {len(detection.tasks)} task(s), "
            f"domain={summary.domain or 'none'}, {result.processing_time:.2f}s"
        )
        return result

    async def generate_summary(self, thread: DiscussionThread, options: AnalysisOptions) -> AISummary:
        prompt = build_summary_prompt(thread, options)
        text = await self._complete_with_retry(prompt, self.config.summary_max_tokens)
        return parse_summary(extract_json_object(text))

    async def detect_tasks(self, thread: DiscussionThread, options: AnalysisOptions) -> TaskDetectionResult:
        prompt = build_task_prompt(thread, options)
        text = await self._complete_with_retry(prompt, self.config.tasks_max_tokens)
        return parse_task_detection(extract_json_object(text), options.max_tasks)

    def _get_cached(self, key: str) -> Optional[AIAnalysisResult]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, result = entry
        if self._clock() >= expires_at:
            del self._cache[key]
            return None
        return AIAnalysisResult(
            summary=result.summary,
            task_detection=result.task_detection,
            processing_time=result.processing_time,
            cached=True,
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def cleanup_expired_cache(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._cache.items() if now >= expires_at]
        for k in expired:
            del self._cache[k]
        return len(expired)

    def get_cache_stats(self) -> Dict[str, int]:
        now = self._clock()
        valid = sum(1 for expires_at, _ in self._cache.values() if now < expires_at)
        return {
            "total_entries": len(self._cache),
            "valid_entries": valid,
            "expired_entries": len(self._cache) - valid,
        }

    async def _complete_with_retry(self, prompt: str, max_tokens: int) -> str:
        return await retry_with_backoff(
            lambda: self._complete(prompt, max_tokens),
            max_attempts=3,
            base_delay=1.0,
            max_delay=10.0,
            timeout=self.config.timeout,
            should_retry=is_retryable,
            sleep=self._sleep,
        )

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        if self._client is None:
            raise AIAnalysisError(
                "ANTHROPIC_API_KEY is not configured",
                error_code="AI_NOT_CONFIGURED",
                user_message="AI analysis is not configured",
            )

        try:
            response = await self._client.messages.create(
                model=self.config.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise AIAnalysisError("Claude rate limit exceeded", error_code="AI_RATE_LIMITED", retryable=True, cause=e)
        except anthropic.AuthenticationError as e:
            raise AIAnalysisError(f"Claude authentication failed: {e}", error_code="AI_AUTHENTICATION_FAILED", cause=e)
        except anthropic.APITimeoutError as e:
            raise AIAnalysisError("Claude request timed out", error_code="AI_TIMEOUT", retryable=True, cause=e)
        except anthropic.APIConnectionError as e:
            raise AIAnalysisError(f"Claude connection failed: {e}", error_code="AI_NETWORK_ERROR", retryable=True, cause=e)
        except anthropic.NotFoundError as e:
            raise AIAnalysisError(
                f"Model unavailable: {self.config.model}", error_code="AI_MODEL_UNAVAILABLE", cause=e,
            )
        except anthropic.BadRequestError as e:
            raise AIAnalysisError(f"Bad request: {e}", error_code="AI_BAD_REQUEST", cause=e)
        except anthropic.APIStatusError as e:
            raise AIAnalysisError(
                f"Claude API error {e.status_code}", error_code="AI_API_ERROR",
                retryable=e.status_code >= 500, cause=e,
            )

        if not response.content:
            raise AIAnalysisError("No content in Claude response", error_code="AI_INVALID_RESPONSE")
        block = response.content[0]
        if getattr(block, "type", None) != "text":
            raise AIAnalysisError("Unexpected response type from Claude", error_code="AI_INVALID_RESPONSE")
        return block.text
