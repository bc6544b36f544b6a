"""Parsing of VAPI tool-call requests and shaping of their responses.

VAPI delivers tool invocations as ``message.toolCalls[0].function.arguments``
(older payloads use ``tool_calls``, direct callers post the arguments at the
top level). Argument names have drifted across assistant versions, so every
lookup goes through :meth:`ToolCall.arg` with the accepted names in order of
preference.
"""
import json
from typing import Any, Dict, Optional

from ..schemas.pydantic_schemas import ToolResponse, ToolResult, TransferDestination

_MISSING = (None, "")


class ToolCall:
    def __init__(self, body: Any) -> None:
        self.body: Dict[str, Any] = body if isinstance(body, dict) else {}
        message = self.body.get("message")
        self.message: Dict[str, Any] = message if isinstance(message, dict) else {}

        calls = self.message.get("toolCalls") or self.message.get("tool_calls") or []
        first = calls[0] if isinstance(calls, list) and calls and isinstance(calls[0], dict) else {}
        self.id: str = first.get("id") or "unknown"

        args = (first.get("function") or {}).get("arguments") or self.body.get("arguments") or {}
        if isinstance(args, str):
            try:
                args = json.loads(args)
            except ValueError:
                args = {}
        self.arguments: Dict[str, Any] = args if isinstance(args, dict) else {}

        call = self.message.get("call")
        self.call: Dict[str, Any] = call if isinstance(call, dict) else {}

    @property
    def caller_number(self) -> Optional[str]:
        return (self.call.get("customer") or {}).get("number")

    @property
    def call_id(self) -> Optional[str]:
        return self.call.get("id")

    def arg(self, *names: str, default: Any = None, include_body: bool = True) -> Any:
        """First non-empty value among ``names``, tool arguments before body."""
        sources = [self.arguments]
        if include_body:
            sources.append(self.body)
        for source in sources:
            for name in names:
                value = source.get(name)
                if value not in _MISSING:
                    return value
        return default

    def flag(self, name: str, default: bool = True) -> bool:
        """Boolean switch that is only off when explicitly ``false`` somewhere."""
        for source in (self.arguments, self.body):
            value = source.get(name)
            if value is False or (isinstance(value, str) and value.lower() == "false"):
                return False
        return default


def tool_response(tool_call_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return ToolResponse(
        results=[ToolResult(toolCallId=tool_call_id, result=json.dumps(payload))],
    ).model_dump(exclude_none=True)


def transfer_response(tool_call_id: str, result: str, number: str, message: str, description: str) -> Dict[str, Any]:
    return ToolResponse(
        results=[ToolResult(toolCallId=tool_call_id, result=result)],
        destination=TransferDestination(number=number, message=message, description=description),
    ).model_dump(exclude_none=True)
