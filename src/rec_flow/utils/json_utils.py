"""JSON helpers for records crossing the websocket boundary."""

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any


def to_json_dict(obj: Any) -> Any:
    """Recursively convert dataclasses, enums, sets and datetimes to JSON types."""
    if hasattr(obj, "to_dict"):
        return to_json_dict(obj.to_dict())
    if is_dataclass(obj) and not isinstance(obj, type):
        return to_json_dict(asdict(obj))
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_json_dict(v) for k, v in obj.items()}
    if isinstance(obj, (set, frozenset)):
        return sorted(to_json_dict(v) for v in obj)
    if isinstance(obj, (list, tuple)):
        return [to_json_dict(v) for v in obj]
    return obj


def safe_json_dumps(obj: Any, **kwargs) -> str:
    return json.dumps(to_json_dict(obj), ensure_ascii=False, **kwargs)
