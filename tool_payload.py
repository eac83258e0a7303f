"""
Reading structured tool-call results returned by the chat model.

The model is always forced to call exactly one function, but what comes back
is still untrusted: the gateway may send no choices at all, arguments may be a
JSON string or an already-decoded object, may be truncated, or may be missing
entirely. ``normalize_completion`` makes the raw body readable before LangChain
converts it; everything after that fails soft except
``extract_tool_arguments``, which raises ToolPayloadError so callers can
decide whether a missing payload is fatal.
"""

import json
from typing import Any, List, Optional

from pydantic import BaseModel, ValidationError, model_validator

from errors import ToolPayloadError

EMPTY_CHOICE = {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": ""}}


def _encode_tool_call(call: dict) -> dict:
    call = dict(call)
    function = dict(call.get("function") or {})
    arguments = function.get("arguments")
    if not isinstance(arguments, str):
        function["arguments"] = "" if arguments is None else json.dumps(arguments, ensure_ascii=False)
    call["function"] = function
    return call


def normalize_completion(body: dict) -> dict:
    """
    Reshape a chat-completion body so LangChain can always build a message from it.

    Missing, null or empty ``choices`` become one empty assistant reply, and
    object-valued tool arguments are re-encoded as JSON text.
    """
    body = dict(body or {})
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        print("⚠️ AI response has no choices")
        body["choices"] = [EMPTY_CHOICE]
        return body

    normalized = []
    for index, choice in enumerate(choices):
        choice = dict(choice) if isinstance(choice, dict) else {"index": index}
        message = choice.get("message")
        message = dict(message) if isinstance(message, dict) else {"content": ""}
        message["role"] = message.get("role") or "assistant"
        tool_calls = message.get("tool_calls")
        if isinstance(tool_calls, list):
            message["tool_calls"] = [_encode_tool_call(c) for c in tool_calls if isinstance(c, dict)]
        elif tool_calls is not None:
            message["tool_calls"] = []
        choice["message"] = message
        normalized.append(choice)
    body["choices"] = normalized
    return body


def _decode_arguments(arguments) -> dict:
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str):
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ToolPayloadError(f"Tool arguments are not valid JSON: {e}") from e
        if isinstance(decoded, dict):
            return decoded
    raise ToolPayloadError("Tool arguments are not an object")


def extract_tool_arguments(message: Any) -> dict:
    """
    Return the decoded arguments of the first tool call on a LangChain ``AIMessage``.

    LangChain's parsed ``tool_calls`` win; calls it could not parse are still
    visible in ``additional_kwargs["tool_calls"]`` and are decoded from there.
    """
    parsed_calls = getattr(message, "tool_calls", None) or []
    if parsed_calls and isinstance(parsed_calls[0].get("args"), dict):
        return parsed_calls[0]["args"]

    additional = getattr(message, "additional_kwargs", None) or {}
    raw_calls = additional.get("tool_calls")
    if not isinstance(raw_calls, list) or not raw_calls or not isinstance(raw_calls[0], dict):
        raise ToolPayloadError("Response has no tool call")
    return _decode_arguments((raw_calls[0].get("function") or {}).get("arguments"))


def extract_tool_list(response: Any, field: str) -> List[Any]:
    """The named array from the tool arguments, or [] when anything is off."""
    try:
        value = extract_tool_arguments(response).get(field)
    except ToolPayloadError as e:
        print(f"⚠️ Failed to parse tool call ({field}): {e}")
        return []
    if not isinstance(value, list):
        if value is not None:
            print(f"⚠️ Tool field '{field}' is {type(value).__name__}, expected list")
        return []
    return value


class Recommendation(BaseModel):
    type: str = "general"
    emoji: str = ""
    title_bn: str = ""
    title_en: str = ""
    description_bn: str = ""
    description_en: str = ""
    explanation_bn: str = ""
    explanation_en: Optional[str] = None
    action_steps_bn: List[str] = []
    urgency: str = "মাঝারি"
    confidence: float = 75
    priority: str = "medium"

    @model_validator(mode="after")
    def _fill_english_explanation(self):
        if not self.explanation_en:
            self.explanation_en = self.explanation_bn
        return self


class ScheduledTask(BaseModel):
    title: str = ""
    title_bn: Optional[str] = None
    due_date: Optional[str] = None
    priority: str = "medium"
    task_type: str = "general"
    description: Optional[str] = None


def _shape(items: List[Any], model) -> List[dict]:
    shaped = []
    for item in items:
        if not isinstance(item, dict):
            continue
        present = {k: v for k, v in item.items() if v is not None}
        try:
            shaped.append(model.model_validate(present).model_dump())
        except ValidationError as e:
            print(f"⚠️ Dropping malformed {model.__name__}: {e.error_count()} errors")
    return shaped


def shape_recommendations(items: List[Any]) -> List[dict]:
    return _shape(items, Recommendation)


def shape_tasks(items: List[Any]) -> List[dict]:
    return _shape(items, ScheduledTask)
