"""
Token-Oriented Object Notation (TOON) rendering for tool output.

Encoding is done by ``toon_format``; callers always get text back, falling
back to JSON when the encoder rejects the data.
"""

import json
import logging
from typing import Any

import toon_format

logger = logging.getLogger(__name__)


def to_toon_or_json(data: Any, json_fallback: str | None = None) -> str:
    if json_fallback is None:
        json_fallback = json.dumps(data, indent=2, ensure_ascii=False)
    try:
        return toon_format.encode(data)
    except Exception:
        logger.exception("TOON encoding failed, using JSON fallback")
        return json_fallback
