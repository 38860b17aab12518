"""
Base model utilities shared by the domain dataclasses.
"""

import dataclasses
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def generate_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.utcnow()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string (with optional trailing Z) into a datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _serialize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


class BaseModel:
    """Mixin giving dataclasses a JSON-friendly ``to_dict``."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            f.name: _serialize(getattr(self, f.name))
            for f in dataclasses.fields(self)
        }
