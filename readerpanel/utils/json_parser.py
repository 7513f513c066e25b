"""Unified JSON parsing from LLM output.

Handles common LLM response patterns: plain JSON, markdown code blocks,
JSON with surrounding text. Objects and arrays have separate entry points
because analysis replies are objects while memory extraction replies are
arrays.
"""

import json
import re
from typing import Any, Dict, List, Optional

_CODE_BLOCK_RE = re.compile(r'```(?:json)?\s*\n(.*?)\n\s*```', re.DOTALL)


def _try_load(text: str, expected: type) -> Optional[Any]:
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        return None
    return result if isinstance(result, expected) else None


def _parse(raw: str, expected: type, pattern: str) -> Any:
    if not raw or not raw.strip():
        raise ValueError("Empty input")

    text = raw.strip()

    # Try 1: direct parse
    result = _try_load(text, expected)
    if result is not None:
        return result

    # Try 2: extract from markdown code block
    code_block_match = _CODE_BLOCK_RE.search(text)
    if code_block_match:
        result = _try_load(code_block_match.group(1).strip(), expected)
        if result is not None:
            return result

    # Try 3: outermost bracketed span
    span_match = re.search(pattern, text, re.DOTALL)
    if span_match:
        result = _try_load(span_match.group(0), expected)
        if result is not None:
            return result

    raise ValueError(f"No valid JSON found in LLM output: {text[:200]}")


def parse_json_from_llm(raw: str) -> Dict[str, Any]:
    """Parse a JSON object from LLM output, handling common wrapping patterns.

    Supports:
    - Plain JSON: '{"key": "value"}'
    - Markdown code blocks: '```json\\n{"key": "value"}\\n```'
    - JSON with surrounding text

    Args:
        raw: Raw LLM output string.

    Returns:
        Parsed JSON as dict.

    Raises:
        ValueError: If no valid JSON object found.
    """
    return _parse(raw, dict, r'\{.*\}')


def parse_json_array_from_llm(raw: str) -> List[Any]:
    """Parse a JSON array from LLM output.

    Same fallbacks as ``parse_json_from_llm``. A bare object wrapping a
    single list value (``{"items": [...]}``) is unwrapped, since extraction
    models often add an envelope.

    Raises:
        ValueError: If no valid JSON array found.
    """
    try:
        return _parse(raw, list, r'\[.*\]')
    except ValueError:
        envelope = _parse(raw, dict, r'\{.*\}')
        lists = [v for v in envelope.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
        raise
