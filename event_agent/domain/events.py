"""编排器发给客户端的线协议事件。

事件名与负载结构是对外契约，已有客户端依赖它们，修改需保持兼容：

- thinking            无负载（可选的节奏信号）
- text                {content}
- tool_start          {id, name, arguments}
- tool_pending        {id, name, arguments}
- tool_result         {id, name, success, data?, error?, summary}
- done                {message, toolCalls, toolResults, pendingConfirmations, isComplete, entityId?}
- error               {message}
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from event_agent.tools.definitions import ToolCall, ToolResult


EventName = Literal["thinking", "text", "tool_start", "tool_pending", "tool_result", "done", "error"]
TERMINAL_EVENTS = frozenset({"done", "error"})


@dataclass
class AgentEvent:
    name: EventName
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.name in TERMINAL_EVENTS


def thinking_event(iteration: Optional[int] = None) -> AgentEvent:
    return AgentEvent("thinking", {"iteration": iteration} if iteration is not None else {})


def text_event(content: str) -> AgentEvent:
    return AgentEvent("text", {"content": content})


def tool_start_event(call: ToolCall) -> AgentEvent:
    return AgentEvent("tool_start", call.to_payload())


def tool_pending_event(call: ToolCall) -> AgentEvent:
    return AgentEvent("tool_pending", call.to_payload())


def tool_result_event(result: ToolResult) -> AgentEvent:
    payload: Dict[str, Any] = {
        "id": result.tool_call_id,
        "name": result.name,
        "success": result.success,
        "summary": result.summary,
    }
    if result.data is not None:
        payload["data"] = result.data
    if result.error is not None:
        payload["error"] = result.error
    return AgentEvent("tool_result", payload)


def done_event(
    message: str,
    tool_calls: List[ToolCall],
    tool_results: List[ToolResult],
    pending: List[ToolCall],
    is_complete: bool,
    entity_id: Optional[str] = None,
    turn_id: Optional[int] = None,
    rate_limit: Optional[Dict[str, int]] = None,
) -> AgentEvent:
    payload: Dict[str, Any] = {
        "message": message,
        "toolCalls": [c.to_payload() for c in tool_calls],
        "toolResults": [r.to_payload() for r in tool_results],
        "pendingConfirmations": [c.to_payload() for c in pending],
        "isComplete": is_complete,
    }
    if entity_id is not None:
        payload["entityId"] = entity_id
    if turn_id is not None:
        payload["turnId"] = turn_id
    if rate_limit is not None:
        payload["rateLimit"] = rate_limit
    return AgentEvent("done", payload)


def error_event(message: str) -> AgentEvent:
    return AgentEvent("error", {"message": message})
