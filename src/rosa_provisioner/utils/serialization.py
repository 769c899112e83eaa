"""JSON serialization utilities for run results."""

from __future__ import annotations

import dataclasses
import datetime
import json
from enum import Enum

from pydantic import BaseModel


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: getattr(obj, f.name)
            for f in dataclasses.fields(obj)
            if not f.name.startswith("_")
        }
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, BaseException):
        payload: dict[str, object] = {
            "type": type(obj).__name__,
            "message": str(obj),
        }
        code = getattr(obj, "code", None)
        if code is not None:
            payload["code"] = code
        return payload
    return str(obj)


def dumps(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=True, indent=2, default=json_default)
