"""
JSON utilities for cleaning and decoding LLM responses.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

_FENCE_PATTERN = re.compile(r'```(?:json)?\n?')


@dataclass
class JsonArrayResult:
    """Outcome of decoding an LLM response that should hold a JSON array.

    Either ``items`` holds the decoded array, or ``reason`` says why nothing was decoded.
    """
    items: List[Any] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    # Models sometimes fence the array in the middle of their reply, so every marker goes
    return _FENCE_PATTERN.sub('', response).strip()


def decode_json_array(response: Optional[str]) -> JsonArrayResult:
    """Decode an LLM response into a JSON array without ever raising.

    Args:
        response: Raw LLM response, possibly wrapped in Markdown code fences

    Returns:
        JsonArrayResult with the decoded items, or an empty result carrying the reason
    """
    if response is None or not response.strip():
        return JsonArrayResult(reason='empty response')

    try:
        parsed = json.loads(clean_json_response(response))
    except json.JSONDecodeError as e:
        return JsonArrayResult(reason=f'invalid JSON: {e}')

    if not isinstance(parsed, list):
        return JsonArrayResult(reason=f'expected list, got {type(parsed).__name__}')

    return JsonArrayResult(items=parsed)
