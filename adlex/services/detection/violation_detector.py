"""Language-model client that reports violations and a compliant rewrite."""

import json
from collections.abc import Sequence
from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from adlex.core.exceptions import DetectionError
from adlex.prompts.detection_prompts import (
    DETECTION_SYSTEM_PROMPT,
    DETECTION_TOOL,
    DETECTION_TOOL_NAME,
    DETECTION_USER_TEMPLATE,
    NO_REFERENCES_TEXT,
    REFERENCES_HEADER,
)
from adlex.schemas.checks import DetectionResult
from adlex.schemas.dictionaries import RankedCandidate
from adlex.utils.json_parser import parse_json_safely
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ChatClient(Protocol):
    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]: ...


class ViolationDetector:
    """Ask the model for violations in ``text`` given NG reference phrases.

    Transport errors from the client propagate unchanged; a response that
    cannot be turned into a ``DetectionResult`` raises ``DetectionError``.
    """

    def __init__(self, client: ChatClient, temperature: float = 0.1, max_tokens: int = 4000):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(self, text: str, references: Sequence[RankedCandidate]) -> List[Dict[str, Any]]:
        if references:
            payload = [
                {"id": str(ref.id), "phrase": ref.phrase, "category": ref.category.value, "notes": ref.notes}
                for ref in references
            ]
            reference_block = f"{REFERENCES_HEADER}\n{json.dumps(payload, ensure_ascii=False)}"
        else:
            reference_block = NO_REFERENCES_TEXT
        return [
            {"role": "system", "content": DETECTION_SYSTEM_PROMPT},
            {"role": "user", "content": DETECTION_USER_TEMPLATE.format(text=text, references=reference_block)},
        ]

    async def detect(self, text: str, references: Sequence[RankedCandidate]) -> DetectionResult:
        response = await self.client.chat_completion(
            messages=self.build_messages(text, references),
            tools=[DETECTION_TOOL],
            tool_choice={"type": "function", "function": {"name": DETECTION_TOOL_NAME}},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        result = parse_detection_response(response, text, {str(ref.id) for ref in references})
        LOGGER.info(
            "Violation detection finished",
            extra={"references": len(references), "violations": len(result.violations)},
        )
        return result


def _extract_arguments(message: Dict[str, Any]) -> Any:
    """Pull the tool arguments out of a chat message.

    Checks ``tool_calls`` first, then the legacy ``function_call`` field, then
    falls back to JSON in the message content.
    """
    for call in message.get("tool_calls") or []:
        function = call.get("function") or {}
        if function.get("name") == DETECTION_TOOL_NAME:
            return function.get("arguments")

    function_call = message.get("function_call") or {}
    if function_call.get("name") == DETECTION_TOOL_NAME:
        return function_call.get("arguments")

    return message.get("content")


def parse_detection_response(
    response: Dict[str, Any],
    original_text: str,
    reference_ids: Optional[set[str]] = None,
) -> DetectionResult:
    try:
        message = response["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise DetectionError("Model response has no message", original_error=e) from e

    arguments = _extract_arguments(message)
    payload = parse_json_safely(arguments) if isinstance(arguments, str) else arguments
    if not isinstance(payload, dict):
        raise DetectionError(f"Model did not call {DETECTION_TOOL_NAME}")

    violations = payload.get("violations") or []
    if not isinstance(violations, list):
        raise DetectionError("Model returned violations in an unexpected shape")

    cleaned = []
    for item in violations:
        if not isinstance(item, dict):
            raise DetectionError("Model returned a violation that is not an object")
        item = dict(item)
        # Only keep references to entries that were actually offered
        for key in ("dictionary_id", "dictionaryId"):
            if key in item and reference_ids is not None and str(item[key]) not in reference_ids:
                item.pop(key)
        cleaned.append(item)

    modified = payload.get("modified")
    try:
        return DetectionResult.model_validate(
            {
                "modified": modified if isinstance(modified, str) else original_text,
                "violations": cleaned,
            }
        )
    except PydanticValidationError as e:
        raise DetectionError(f"Model returned an invalid violation list: {e.error_count()} errors", original_error=e) from e
