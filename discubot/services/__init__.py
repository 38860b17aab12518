"""
Pipeline services: AI analysis, routing, Notion delivery and the processor.
"""

from .ai import AnalysisOptions, DiscussionAnalyzer
from .domain_routing import route_task_to_outputs, validate_flow_outputs
from .notion_sink import NotionTaskConfig, NotionTaskSink, config_from_output
from .processor import DiscussionProcessor, FlowContext, ProcessingResult
from .reply_generator import ReplyGenerator, PERSONALITY_PRESETS

__all__ = [
    'AnalysisOptions',
    'DiscussionAnalyzer',
    'route_task_to_outputs',
    'validate_flow_outputs',
    'NotionTaskConfig',
    'NotionTaskSink',
    'config_from_output',
    'DiscussionProcessor',
    'FlowContext',
    'ProcessingResult',
    'ReplyGenerator',
    'PERSONALITY_PRESETS',
]
