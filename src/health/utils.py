"""
Shared helpers for the prediction pipeline.

Serialization of snapshot values for LLM payloads and extraction of JSON
from free-form LLM responses.
"""

import json
import re
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

import numpy as np


def safe_json_serialize(obj: Any) -> Any:
    """Recursively convert objects to JSON-serializable types.

    Handles numpy scalars, datetimes (rendered as dates only), enums and
    dataclasses.

    Args:
        obj: Object to serialize.

    Returns:
        JSON-serializable version of the object.
    """
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, datetime):
        return obj.date().isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return safe_json_serialize(asdict(obj))
    if isinstance(obj, dict):
        return {k: safe_json_serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [safe_json_serialize(item) for item in obj]
    return obj


def extract_json_from_response(content: str) -> dict | None:
    """Extract a JSON object from an LLM response that may contain markdown fences.

    Args:
        content: LLM response text.

    Returns:
        Parsed dict, or None if no valid JSON object found.
    """
    try:
        parsed = json.loads(content)
        return parsed if isinstance(parsed, dict) else None
    except (json.JSONDecodeError, TypeError):
        pass

    json_blocks = re.findall(r"```(?:json)?\s*\n(.*?)\n```", content, re.DOTALL)
    for block in json_blocks:
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    brace_match = re.search(r"\{.*\}", content, re.DOTALL)
    if brace_match:
        try:
            parsed = json.loads(brace_match.group())
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    return None


def response_text(content: Any) -> str:
    """Flatten a chat message's content (string or content blocks) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            elif isinstance(block, str):
                parts.append(block)
        return "".join(parts)
    return ""
