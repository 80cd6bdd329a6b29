"""
JSON utilities for cleaning LLM responses.
"""

import re

_FENCED_BLOCK = re.compile(r'```(?:json)?\s*([\s\S]*?)```')
_REASONING_BLOCK = re.compile(r'<(think|thinking|reasoning)>[\s\S]*?</\1>', re.IGNORECASE)


def strip_reasoning(response: str) -> str:
    """Remove reasoning segments some models emit ahead of the answer.

    Args:
        response: Raw LLM response

    Returns:
        Response without <think>/<thinking>/<reasoning> blocks
    """
    return _REASONING_BLOCK.sub('', response).strip()


def clean_json_response(response: str) -> str:
    """Extract the JSON payload from an LLM response.

    The first fenced code block wins; without one the whole response is used.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    match = _FENCED_BLOCK.search(response)
    if match:
        response = match.group(1)

    return response.strip()
