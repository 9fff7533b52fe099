import json
from typing import Any, Dict, List, Union

from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from model output, tolerating common formatting noise.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Prose before or after the JSON value

    Returns:
        Parsed JSON value or None if nothing parseable is found
    """
    if not text:
        return None

    cleaned_text = text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text[7:]
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text[3:]
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text[:-3]
    cleaned_text = cleaned_text.strip()

    try:
        return json.loads(cleaned_text)
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Initial JSON parse failed: {e}, scanning for an embedded value")

    # Decode the first complete object or array that starts anywhere in the text
    decoder = json.JSONDecoder()
    for idx, char in enumerate(cleaned_text):
        if char not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(cleaned_text, idx)
            return value
        except json.JSONDecodeError:
            continue

    LOGGER.error("Failed to parse JSON from model output")
    return None
