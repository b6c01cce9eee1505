# -*- coding: utf-8 -*-
"""
I/O helpers: JSON output files and LLM JSON responses.

Examples:
    from kgforge.utils.io import parse_json_response, save_json

    payload = parse_json_response('```json\\n{"entities": []}\\n```')
    save_json(result.to_dict(), "outputs/query.json")

"""
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Union

from kgforge.utils.errors import SchemaViolationError

logger = logging.getLogger(__name__)


# ============================================================================
# LLM RESPONSES
# ============================================================================

def parse_json_response(content: str, required_keys: Iterable[str] = ()) -> Any:
    """
    Parse a JSON object out of an LLM answer.

    Handles markdown code fences (```json ... ```) and prose before or after
    the object by falling back to the outermost {...} span.

    Args:
        content: Raw model output
        required_keys: Keys that must be present in the top-level object

    Raises:
        SchemaViolationError: No parseable JSON object or missing keys
    """
    text = (content or '').strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.rstrip().endswith("```"):
            text = text.rstrip().rsplit("```", 1)[0]
        text = text.strip()

    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find('{'), text.rfind('}')
        if start == -1 or end <= start:
            raise SchemaViolationError(f"No JSON object in response: {text[:120]!r}")
        try:
            result = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise SchemaViolationError(f"Malformed JSON in response: {e}") from e

    if not isinstance(result, dict):
        raise SchemaViolationError(f"Expected JSON object, got {type(result).__name__}")

    missing = [key for key in required_keys if key not in result]
    if missing:
        raise SchemaViolationError(f"Response missing keys: {missing}")
    return result


# ============================================================================
# FILES
# ============================================================================

def save_json(data: Any, path: Union[str, Path], indent: int = 2) -> str:
    """Write data as UTF-8 JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, default=_serialize)
    logger.info(f"Saved {path}")
    return str(path)


def _serialize(obj: Any) -> Any:
    if hasattr(obj, 'tolist'):
        return obj.tolist()
    if hasattr(obj, 'value'):
        return obj.value
    return str(obj)
