"""
Source adapters, one per platform, in a closed registry keyed by SourceType.
"""

from typing import Dict, Type

import httpx

from .base import SourceAdapter, ValidationResult
from .figma import FigmaAdapter
from .slack import SlackAdapter
from .notion import NotionAdapter
from ..models.flow import SourceType

ADAPTER_REGISTRY: Dict[SourceType, Type[SourceAdapter]] = {
    SourceType.FIGMA: FigmaAdapter,
    SourceType.SLACK: SlackAdapter,
    SourceType.NOTION: NotionAdapter,
}


def get_adapter(source_type, http_client: httpx.AsyncClient) -> SourceAdapter:
    """
    Create the adapter for a source type.

    Raises:
        ValueError: Unknown source type
    """
    try:
        adapter_cls = ADAPTER_REGISTRY[SourceType(source_type)]
    except (KeyError, ValueError):
        raise ValueError(
            f"Unsupported source type: {source_type}. "
            f"Supported: {', '.join(s.value for s in ADAPTER_REGISTRY)}"
        )
    return adapter_cls(http_client)


__all__ = [
    'SourceAdapter',
    'ValidationResult',
    'FigmaAdapter',
    'SlackAdapter',
    'NotionAdapter',
    'ADAPTER_REGISTRY',
    'get_adapter',
]
