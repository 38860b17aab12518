"""
Discussion processing pipeline.

Takes a parsed discussion from any source through validation,
deduplication, flow loading, thread building, AI analysis, routing and
delivery to Notion, and reports back to the source thread.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..adapters.base import SourceAdapter
from ..config.constants import NOTION_TASK_DELAY
from ..data.base import DiscussionRepository, FlowRepository, TaskRepository, UserMappingRepository
from ..exceptions import DeliveryError, DiscubotError, ProcessingError
from ..models.base import BaseModel, utc_now
from ..models.discussion import (
    DiscussionRecord, DiscussionStatus, DiscussionThread, ParsedDiscussion,
)
from ..models.flow import Flow, FlowInput, FlowOutput, OutputType, SourceType
from ..models.task import (
    AIAnalysisResult, AISummary, DetectedTask, NotionTaskResult, TaskDetectionResult, TaskRecord,
)
from .ai import AnalysisOptions, DiscussionAnalyzer
from .domain_routing import route_task_to_outputs
from .notion_sink import NotionTaskSink, config_from_output
from .reply_generator import ReplyGenerator
from .user_mapping import (
    UserMention,
    convert_thread_mentions,
    detect_bootstrap,
    is_bootstrap_text,
    load_handle_mentions,
    load_user_mentions,
    notion_ids,
    source_workspace_id,
    store_discovered_users,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "source_type", "source_thread_id", "source_url", "team_id", "author_handle", "title", "content",
)
_RETRYABLE_STATUSES = (DiscussionStatus.FAILED, DiscussionStatus.RETRYING)


@dataclass
class ProcessingResult(BaseModel):
    """Outcome of one pipeline run."""
    discussion_id: str
    ai_analysis: AIAnalysisResult
    notion_tasks: List[NotionTaskResult] = field(default_factory=list)
    processing_time: float = 0.0
    is_multi_task: bool = False
    delivered_count: int = 0
    skipped: bool = False
    bootstrap: bool = False


@dataclass
class FlowContext:
    """The matched input with its flow and the flow's active outputs."""
    flow: Flow
    flow_input: FlowInput
    outputs: List[FlowOutput]


def _already_processed(discussion_id: str) -> ProcessingResult:
    return ProcessingResult(
        discussion_id=discussion_id,
        ai_analysis=AIAnalysisResult(
            summary=AISummary(summary="Already processed"),
            task_detection=TaskDetectionResult(is_multi_task=False),
            cached=True,
        ),
        skipped=True,
    )


def _analysis_without_ai(parsed: ParsedDiscussion) -> AIAnalysisResult:
    """Single task straight from the comment, for flows with AI disabled."""
    return AIAnalysisResult(
        summary=AISummary(summary=""),
        task_detection=TaskDetectionResult(
            is_multi_task=False,
            tasks=[DetectedTask(title=parsed.title, description=parsed.content)],
        ),
    )


def validate_parsed_discussion(parsed: ParsedDiscussion) -> None:
    """
    Raises:
        ProcessingError: A required field is empty (stage ``validation``)
    """
    missing = [name for name in REQUIRED_FIELDS if not getattr(parsed, name, None)]
    if missing:
        raise ProcessingError(
            f"Missing required fields: {', '.join(missing)}",
            stage="validation",
            context={"missing": missing},
        )


class DiscussionProcessor:
    """Runs the pipeline for one discussion at a time.

    Collaborators are injected so the whole pipeline can run against
    in-memory repositories and mocked HTTP transports.
    """

    def __init__(
        self,
        flows: FlowRepository,
        discussions: DiscussionRepository,
        tasks: TaskRepository,
        user_mappings: UserMappingRepository,
        adapters: Dict[SourceType, SourceAdapter],
        analyzer: DiscussionAnalyzer,
        sink: NotionTaskSink,
        reply_generator: Optional[ReplyGenerator] = None,
        task_delay: float = NOTION_TASK_DELAY,
        sleep=asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.flows = flows
        self.discussions = discussions
        self.tasks = tasks
        self.user_mappings = user_mappings
        self.adapters = adapters
        self.analyzer = analyzer
        self.sink = sink
        self.reply_generator = reply_generator or ReplyGenerator()
        self.task_delay = task_delay
        self._sleep = sleep
        self._clock = clock

    def adapter_for(self, source_type: SourceType) -> SourceAdapter:
        try:
            return self.adapters[SourceType(source_type)]
        except (KeyError, ValueError):
            raise ProcessingError(f"No adapter registered for source type {source_type}", stage="validation")

    async def process(
        self,
        parsed: ParsedDiscussion,
        flow_input: Optional[FlowInput] = None,
    ) -> ProcessingResult:
        """
        Process a discussion end to end.

        Args:
            parsed: Normalized discussion from an adapter
            flow_input: Input the caller already matched (Notion, retries)

        Returns:
            ProcessingResult; ``skipped`` is True for duplicates

        Raises:
            ProcessingError: Any stage failed; ``retryable`` tells the
                webhook whether the source should redeliver
        """
        started = self._clock()
        record: Optional[DiscussionRecord] = None
        logger.info(f"Processing {parsed.source_type.value} discussion {parsed.source_thread_id}")

        try:
            validate_parsed_discussion(parsed)

            existing = await self._check_duplicate(parsed)
            if existing is not None:
                return _already_processed(existing.id)

            ctx = await self.load_flow(parsed, flow_input)
            team_id = ctx.flow.team_id or parsed.team_id
            adapter = self.adapter_for(parsed.source_type)
            workspace_id = source_workspace_id(ctx.flow_input, parsed.team_id)
            mentions = await self._load_mentions(team_id, parsed.source_type, workspace_id)

            record = DiscussionRecord(
                team_id=team_id,
                flow_id=ctx.flow.id,
                input_id=ctx.flow_input.id,
                source_type=parsed.source_type,
                source_thread_id=parsed.source_thread_id,
                thread_ref=parsed.source_thread_id,
                source_url=parsed.source_url,
                title=parsed.title,
                content=parsed.content,
                author_handle=parsed.author_handle,
                participants=list(parsed.participants),
                status=DiscussionStatus.PROCESSING,
                metadata=dict(parsed.metadata),
                raw_payload=dict(parsed.metadata),
            )
            await self.discussions.save_discussion(record)
            logger.info(f"Discussion {record.id} saved for flow {ctx.flow.id}")
            await adapter.update_status(record.thread_ref, DiscussionStatus.PENDING, ctx.flow_input)

            thread = await self._build_thread(parsed, record, ctx, adapter, mentions, team_id)

            if ctx.flow.ai_enabled:
                analysis = await self._analyze(thread, parsed, ctx.flow)
            else:
                logger.info(f"AI disabled for flow {ctx.flow.id}, creating a single task from the comment")
                analysis = _analysis_without_ai(parsed)
            record.summary = analysis.summary.summary or None
            record.is_multi_task = analysis.task_detection.is_multi_task
            await self._set_status(record, DiscussionStatus.ANALYZED)

            bootstrap = detect_bootstrap(thread, parsed.source_type, parsed.content)
            if bootstrap.is_bootstrap:
                created = 0
                if bootstrap.users and workspace_id:
                    created = await store_discovered_users(
                        self.user_mappings, bootstrap.users, team_id, parsed.source_type, workspace_id
                    )
                elif bootstrap.users:
                    logger.warning(f"Cannot store discovered users for {record.id}: no source workspace id")
                await self._finalize(record, started)
                message = await self.reply_generator.generate_bootstrap(
                    len(bootstrap.users), ctx.flow.reply_personality, ctx.flow.personality_icon
                )
                await self._notify_source(adapter, record, ctx.flow_input, message)
                logger.info(f"Bootstrap discussion {record.id} done, {created} new pending mapping(s)")
                return ProcessingResult(
                    discussion_id=record.id,
                    ai_analysis=analysis,
                    processing_time=self._clock() - started,
                    bootstrap=True,
                )

            delivered = await self._deliver(parsed, record, ctx, thread, analysis, notion_ids(mentions))

            await self._finalize(record, started)
            message = await self.reply_generator.generate_reply(
                delivered, ctx.flow.reply_personality, ctx.flow.personality_icon
            )
            await self._notify_source(adapter, record, ctx.flow_input, message)

            processing_time = self._clock() - started
            logger.info(
                f"Discussion {record.id} completed: {len(delivered)} task(s) in {processing_time:.2f}s"
            )
            return ProcessingResult(
                discussion_id=record.id,
                ai_analysis=analysis,
                notion_tasks=delivered,
                processing_time=processing_time,
                is_multi_task=analysis.task_detection.is_multi_task,
                delivered_count=len(delivered),
            )

        except ProcessingError as e:
            logger.error(f"Processing failed: {e.to_log_string()}")
            await self._mark_failed(record, e.message)
            raise
        except Exception as e:
            logger.error(f"Processing failed unexpectedly: {type(e).__name__}: {e}")
            await self._mark_failed(record, str(e) or type(e).__name__)
            raise ProcessingError(
                str(e) or type(e).__name__, stage="unknown", retryable=True, cause=e,
            ) from e

    async def _check_duplicate(self, parsed: ParsedDiscussion) -> Optional[DiscussionRecord]:
        """Existing discussion to short-circuit on, or None to proceed.

        Failed discussions and bootstrap comments are reprocessed; the old
        record is removed so the new run starts clean.
        """
        existing = await self.discussions.find_by_source_thread_id(parsed.source_thread_id)
        if existing is None:
            return None

        if existing.status not in _RETRYABLE_STATUSES and not is_bootstrap_text(parsed.content):
            logger.info(
                f"Discussion {existing.id} already exists for {parsed.source_thread_id} "
                f"(status {existing.status.value}), skipping duplicate"
            )
            return existing

        reason = "bootstrap_comment" if is_bootstrap_text(parsed.content) else existing.status.value
        logger.info(f"Reprocessing discussion {existing.id} ({reason})")
        await self.discussions.delete_discussion(existing.id)
        return None

    def _candidate_inputs(self, parsed: ParsedDiscussion, inputs: List[FlowInput]) -> List[FlowInput]:
        if parsed.source_type == SourceType.SLACK:
            return [i for i in inputs if i.source_metadata.get("slackTeamId") == parsed.team_id]

        if parsed.source_type == SourceType.FIGMA:
            slug = (parsed.metadata.get("emailSlug") or parsed.team_id or "").lower()
            recipient = (parsed.metadata.get("recipientEmail") or "").lower()
            return [
                i for i in inputs
                if (i.email_slug and i.email_slug.lower() == slug)
                or (recipient and i.email_address and i.email_address.lower() == recipient)
            ]

        workspace = parsed.metadata.get("workspaceId") or parsed.team_id
        by_workspace = [i for i in inputs if i.source_metadata.get("notionWorkspaceId") == workspace]
        return by_workspace or inputs

    async def load_flow(self, parsed: ParsedDiscussion, flow_input: Optional[FlowInput] = None) -> FlowContext:
        """
        Find the active input, flow and outputs for a discussion.

        Raises:
            ProcessingError: No active input with an active flow (stage ``flow_loading``)
        """
        if flow_input is not None:
            candidates = [flow_input]
            available = 1
        else:
            inputs = await self.flows.get_inputs_by_source(parsed.source_type, active_only=True)
            candidates = self._candidate_inputs(parsed, inputs)
            available = len(inputs)

        for candidate in candidates:
            flow = await self.flows.get_flow(candidate.flow_id)
            if flow is not None and flow.active:
                outputs = await self.flows.get_outputs(flow.id, active_only=True)
                logger.info(
                    f"Loaded flow {flow.id} ('{flow.name}') via input {candidate.id} "
                    f"with {len(outputs)} output(s)"
                )
                return FlowContext(flow=flow, flow_input=candidate, outputs=outputs)
            logger.warning(f"Skipping orphaned input {candidate.id} (flow {candidate.flow_id} missing or inactive)")

        raise ProcessingError(
            f"No active flow input found for {parsed.source_type.value} identifier: {parsed.team_id}",
            stage="flow_loading",
            context={
                "identifier": parsed.team_id,
                "available_inputs": available,
                "candidate_inputs": len(candidates),
            },
        )

    async def _load_mentions(self, team_id: str, source_type: SourceType, workspace_id: str) -> Dict[str, UserMention]:
        try:
            return await load_user_mentions(self.user_mappings, team_id, source_type, workspace_id or None)
        except DiscubotError as e:
            logger.warning(f"Failed to load user mappings, continuing without: {e.to_log_string()}")
            return {}

    async def _build_thread(
        self,
        parsed: ParsedDiscussion,
        record: DiscussionRecord,
        ctx: FlowContext,
        adapter: SourceAdapter,
        mentions: Dict[str, UserMention],
        team_id: str,
    ) -> DiscussionThread:
        try:
            thread = await adapter.fetch_thread(record.thread_ref, ctx.flow_input)
        except DiscubotError as e:
            raise ProcessingError(
                f"Failed to fetch thread: {e.message}",
                stage="thread_building",
                retryable=e.retryable,
                cause=e,
            ) from e

        if parsed.source_type == SourceType.NOTION and not mentions and hasattr(adapter, "list_users"):
            names = await adapter.list_users(ctx.flow_input)
            mentions.update({uid: UserMention(name=name, notion_id=uid) for uid, name in names.items()})

        by_handle = None
        if parsed.source_type == SourceType.FIGMA:
            by_handle = await load_handle_mentions(self.user_mappings, team_id)
        convert_thread_mentions(thread, parsed.source_type, mentions, ctx.flow_input, by_handle)

        record.author_handle = thread.root_message.author_handle or record.author_handle
        record.participants = list(thread.participants) or record.participants

        file_key = parsed.metadata.get("fileKey")
        if parsed.source_type == SourceType.FIGMA and file_key and thread.id:
            record.thread_ref = f"{file_key}:{thread.id}"
            record.source_url = f"https://www.figma.com/file/{file_key}#{thread.id}"
            logger.info(f"Resolved Figma thread reference to {record.thread_ref}")
            await adapter.update_status(record.thread_ref, DiscussionStatus.PENDING, ctx.flow_input)

        record.updated_at = utc_now()
        await self.discussions.save_discussion(record)
        logger.info(f"Thread {thread.id} built: {len(thread.messages)} message(s), {len(thread.participants)} participant(s)")
        return thread

    async def _analyze(self, thread: DiscussionThread, parsed: ParsedDiscussion, flow: Flow) -> AIAnalysisResult:
        options = AnalysisOptions(
            source_type=parsed.source_type.value,
            summary_prompt=flow.summary_prompt,
            task_prompt=flow.task_prompt,
            available_domains=list(flow.available_domains),
        )
        try:
            return await self.analyzer.analyze_discussion(thread, options)
        except DiscubotError as e:
            raise ProcessingError(
                f"AI analysis failed: {e.message}", stage="ai_analysis", retryable=e.retryable, cause=e,
            ) from e
        except asyncio.TimeoutError as e:
            raise ProcessingError("AI analysis timed out", stage="ai_analysis", retryable=True, cause=e) from e

    async def _deliver(
        self,
        parsed: ParsedDiscussion,
        record: DiscussionRecord,
        ctx: FlowContext,
        thread: DiscussionThread,
        analysis: AIAnalysisResult,
        user_ids: Dict[str, str],
    ) -> List[NotionTaskResult]:
        """Create every routed task, in order, stopping at the first failure.

        Pages already recorded for this source thread and output are
        reused, so a redelivered event never duplicates a task.

        Raises:
            DeliveryError: Carries the results delivered before the failure
        """
        tasks = analysis.task_detection.tasks
        if not tasks:
            logger.info(f"No tasks detected for discussion {record.id}")
            return []

        recorded = {
            (t.title, t.output_id): t
            for t in await self.tasks.get_tasks_by_source_thread(parsed.source_thread_id)
        }
        delivered: List[NotionTaskResult] = []
        created_count = 0

        for index, task in enumerate(tasks):
            try:
                outputs = route_task_to_outputs(task, ctx.outputs)
            except DiscubotError as e:
                raise DeliveryError(
                    f"Routing failed for task {index + 1}: {e.message}", delivered=delivered, cause=e,
                ) from e
            logger.info(f"Task {index + 1}/{len(tasks)} '{task.title}' routed to {[o.name for o in outputs]}")

            for output in outputs:
                if output.output_type != OutputType.NOTION:
                    logger.warning(f"Output {output.id} has unsupported type {output.output_type.value}, skipping")
                    continue

                prior = recorded.get((task.title, output.id))
                if prior is not None:
                    logger.info(f"Task '{task.title}' already delivered to output {output.id}, reusing {prior.notion_page_id}")
                    delivered.append(NotionTaskResult(
                        id=prior.notion_page_id, url=prior.notion_page_url, created_at=prior.created_at,
                    ))
                    if prior.discussion_id != record.id:
                        prior.discussion_id = record.id
                        prior.team_id = record.team_id or prior.team_id
                        await self.tasks.save_task(prior)
                    if prior.id not in record.task_ids:
                        record.task_ids.append(prior.id)
                    continue

                if created_count > 0 and self.task_delay > 0:
                    await self._sleep(self.task_delay)

                try:
                    config = config_from_output(output)
                    result = await self.sink.create_task(
                        task, thread, analysis.summary, config,
                        parsed.source_type, record.source_url, user_ids, parsed.metadata,
                    )
                except (DiscubotError, asyncio.TimeoutError) as e:
                    retryable = getattr(e, "retryable", True)
                    reason = getattr(e, "message", None) or type(e).__name__
                    await self.discussions.save_discussion(record)
                    raise DeliveryError(
                        f"Delivery stopped at task {index + 1} of {len(tasks)} "
                        f"(output {output.name or output.id}): {reason}",
                        delivered=delivered,
                        retryable=retryable,
                        cause=e,
                        context={"task_index": index, "output_id": output.id, "delivered_count": len(delivered)},
                    ) from e

                created_count += 1
                delivered.append(result)
                task_record = TaskRecord(
                    team_id=record.team_id,
                    discussion_id=record.id,
                    output_id=output.id,
                    notion_page_id=result.id,
                    notion_page_url=result.url,
                    title=task.title,
                    description=task.description,
                    source_thread_id=parsed.source_thread_id,
                    source_url=record.source_url,
                )
                await self.tasks.save_task(task_record)
                record.task_ids.append(task_record.id)

        logger.info(f"Delivered {len(delivered)} task(s) for discussion {record.id} ({created_count} new)")
        return delivered

    async def _finalize(self, record: DiscussionRecord, started: float) -> None:
        record.status = DiscussionStatus.COMPLETED
        record.error = None
        record.processing_time = self._clock() - started
        record.processed_at = utc_now()
        record.updated_at = utc_now()
        await self.discussions.save_discussion(record)

    async def _notify_source(
        self,
        adapter: SourceAdapter,
        record: DiscussionRecord,
        flow_input: FlowInput,
        message: str,
    ) -> None:
        """Post the reply and completion status. Never fails the run."""
        try:
            remove_reaction = getattr(adapter, "remove_reaction", None)
            if remove_reaction is not None:
                await remove_reaction(record.thread_ref, "eyes", flow_input)
            if not await adapter.post_reply(record.thread_ref, message, flow_input):
                logger.warning(f"Reply to {record.thread_ref} was not posted")
            await adapter.update_status(record.thread_ref, DiscussionStatus.COMPLETED, flow_input)
        except DiscubotError as e:
            logger.error(f"Failed to notify source for discussion {record.id}: {e.to_log_string()}")

    async def _set_status(self, record: DiscussionRecord, status: DiscussionStatus) -> None:
        record.status = status
        record.updated_at = utc_now()
        await self.discussions.save_discussion(record)

    async def _mark_failed(self, record: Optional[DiscussionRecord], error: str) -> None:
        if record is None:
            return
        record.status = DiscussionStatus.FAILED
        record.error = error
        record.updated_at = utc_now()
        await self.discussions.save_discussion(record)

    async def retry_discussion(self, discussion_id: str) -> ProcessingResult:
        """
        Reprocess a failed discussion from its stored record.

        Raises:
            ProcessingError: Unknown id (``DISCUSSION_NOT_FOUND``), a discussion
                that did not fail (``DISCUSSION_NOT_RETRYABLE``) or a new failure
        """
        record = await self.discussions.get_discussion(discussion_id)
        if record is None:
            raise ProcessingError(
                f"Discussion {discussion_id} not found",
                stage="load_discussion",
                error_code="DISCUSSION_NOT_FOUND",
            )
        if record.status not in _RETRYABLE_STATUSES:
            raise ProcessingError(
                f"Only failed discussions can be retried (current status: {record.status.value})",
                stage="load_discussion",
                error_code="DISCUSSION_NOT_RETRYABLE",
                context={"status": record.status.value},
            )

        flow_input = await self.flows.get_input(record.input_id) if record.input_id else None
        logger.info(f"Retrying discussion {discussion_id}")
        await self._set_status(record, DiscussionStatus.RETRYING)
        return await self.process(record.to_parsed(), flow_input=flow_input)

    async def notify_task_completed(self, notion_page_id: str) -> Dict[str, Any]:
        """Tell the source thread that a task's Notion page was marked done."""
        task = await self.tasks.find_by_notion_page_id(notion_page_id)
        if task is None:
            logger.warning(f"No task found for Notion page {notion_page_id}")
            return {"success": False, "error": "Task not found", "notion_page_id": notion_page_id}

        discussion = await self.discussions.get_discussion(task.discussion_id)
        if discussion is None:
            logger.error(f"Discussion {task.discussion_id} not found for task {task.id}")
            return {"success": False, "error": "Discussion not found", "discussion_id": task.discussion_id}

        flow_input = await self.flows.get_input(discussion.input_id) if discussion.input_id else None
        if flow_input is None:
            logger.error(f"Input {discussion.input_id} not found for discussion {discussion.id}")
            return {"success": False, "error": "Input not found", "input_id": discussion.input_id}

        adapter = self.adapter_for(discussion.source_type)
        message = f"✅ Task completed in Notion!\n\n**{task.title}**\n{task.notion_page_url}"
        thread_ref = discussion.thread_ref or discussion.source_thread_id
        if not await adapter.post_reply(thread_ref, message, flow_input):
            logger.error(f"Failed to post completion message for task {task.id}")
            return {"success": False, "error": "Failed to post completion message to source thread",
                    "task": {"id": task.id, "title": task.title}}

        task.status = "done"
        task.completed_at = utc_now()
        await self.tasks.save_task(task)
        logger.info(f"Completion for task {task.id} posted to {thread_ref}")
        return {
            "success": True,
            "message": "Completion notification posted to source thread",
            "task": {"id": task.id, "title": task.title, "notion_page_url": task.notion_page_url},
            "source_thread_id": discussion.source_thread_id,
        }
