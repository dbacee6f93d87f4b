"""事件流的客户端消费者。

StreamingChatClient 通过 httpx-sse 读取 text/event-stream 流式响应，每解析出一个事件就立刻应用到本地状态，
不等待整个响应结束。

状态流转：

    idle -> loading -> streaming -> (awaiting_confirmation | done | error)
    awaiting_confirmation -> executing -> (awaiting_confirmation | done | error)

同一时刻只暴露一个待确认调用（先到先出），其余排队；cancel_tool 只在本地丢弃，
服务端的待确认记录保持不变。
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Set

import httpx
from httpx_sse import SSEError, connect_sse

from event_agent.api.sse import decode_event
from event_agent.domain.events import AgentEvent
from event_agent.infrastructure.logging.logger import logger
from event_agent.tools.definitions import ToolCall, ToolResult


ChatStatus = Literal["idle", "loading", "streaming", "awaiting_confirmation", "executing", "done", "error"]
BUSY_STATUSES = frozenset({"loading", "streaming", "executing"})


@dataclass
class ChatState:
    status: ChatStatus = "idle"
    text: str = ""
    executing_tools: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    pending_confirmation: Optional[ToolCall] = None
    queued_confirmations: List[ToolCall] = field(default_factory=list)
    is_complete: bool = False
    entity_id: Optional[str] = None
    turn_id: Optional[int] = None
    rate_limit: Optional[Dict[str, int]] = None
    retry_after: Optional[str] = None
    error: Optional[str] = None
    # 已发送但服务端尚未以 done 确认的用户消息
    optimistic_message: Optional[str] = None
    last_user_message: str = ""


EventCallback = Callable[[AgentEvent, ChatState], None]


class StreamingChatClient:
    def __init__(
        self,
        base_url: str,
        conversation_id: str,
        http_client: Optional[httpx.Client] = None,
        on_event: Optional[EventCallback] = None,
        timeout: float = 60.0,
    ):
        self._base_url = base_url.rstrip("/")
        self.conversation_id = conversation_id
        self._http = http_client or httpx.Client(timeout=timeout)
        self._owns_http = http_client is None
        self._on_event = on_event
        self._lock = threading.Lock()
        self._response: Optional[httpx.Response] = None
        self._aborted = False
        self._dismissed: Set[str] = set()
        self.state = ChatState()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # ---- 操作 ----

    def send(self, message: str) -> ChatState:
        if not message.strip() or self.state.status in BUSY_STATUSES:
            return self.state
        previous_turn = self.state.turn_id
        self.state = ChatState(
            status="loading",
            turn_id=previous_turn,
            optimistic_message=message,
            last_user_message=message,
        )
        self._run_stream(
            "/api/chat/stream",
            {"conversationId": self.conversation_id, "userMessage": message},
        )
        return self.state

    def confirm_tool(self, call: Optional[ToolCall] = None) -> ChatState:
        """确认当前待确认的调用（或显式传入的调用），应用返回的 tool_result 与 done。"""

        call = call or self.state.pending_confirmation
        if call is None or self.state.status in BUSY_STATUSES:
            return self.state
        if self.state.pending_confirmation and self.state.pending_confirmation.id == call.id:
            self.state.pending_confirmation = None
        self.state.queued_confirmations = [c for c in self.state.queued_confirmations if c.id != call.id]
        self.state.executing_tools = [call]
        self.state.error = None
        self.state.status = "executing"
        self._run_stream(
            "/api/chat/confirm",
            {
                "conversationId": self.conversation_id,
                "toolCallId": call.id,
                "toolName": call.name,
                "arguments": call.arguments,
            },
        )
        self.state.executing_tools = []
        return self.state

    def cancel_tool(self) -> ChatState:
        pending = self.state.pending_confirmation
        if pending is None:
            return self.state
        self._dismissed.add(pending.id)
        self._advance_confirmation()
        if self.state.pending_confirmation is None and self.state.status == "awaiting_confirmation":
            self.state.status = "done"
        return self.state

    def abort(self) -> None:
        """中断进行中的请求，可以从其他线程调用。"""

        with self._lock:
            self._aborted = True
            response = self._response
        if response is not None:
            response.close()

    def retry(self) -> ChatState:
        if not self.state.last_user_message or self.state.status in BUSY_STATUSES:
            return self.state
        return self.send(self.state.last_user_message)

    def reset(self) -> None:
        self.state = ChatState()
        self._dismissed.clear()

    def reconcile(self, persisted_turn_id: int) -> bool:
        """与服务端持久化的最新 turn_id 对账。

        服务端的轮次比本地已确认的更新时（例如流在 done 之前断开，但用户消息已经写入），
        丢弃本地的乐观消息并推进 turn_id。返回是否丢弃了本地消息。
        """

        known = self.state.turn_id or 0
        if persisted_turn_id <= known:
            return False
        self.state.turn_id = persisted_turn_id
        dropped = self.state.optimistic_message is not None
        self.state.optimistic_message = None
        return dropped

    # ---- 传输 ----

    def _run_stream(self, path: str, body: Dict[str, Any]) -> None:
        with self._lock:
            self._aborted = False
        terminal = False
        try:
            with connect_sse(self._http, "POST", f"{self._base_url}{path}", json=body) as event_source:
                resp = event_source.response
                if resp.status_code >= 400:
                    self._apply_http_error(resp)
                    return
                with self._lock:
                    self._response = resp
                    aborted = self._aborted
                if aborted:
                    self._apply_abort()
                    return
                if self.state.status == "loading":
                    self.state.status = "streaming"
                for sse in event_source.iter_sse():
                    if self._aborted:
                        break
                    try:
                        event = decode_event(sse)
                    except ValueError as e:
                        logger.warning(
                            "Malformed event payload",
                            extra={"extra": {"path": path, "event": sse.event, "error": str(e)}},
                        )
                        self._fail(f"Malformed {sse.event} event from server")
                        return
                    self._apply(event)
                    if event.is_terminal:
                        terminal = True
                        break
        except (SSEError, httpx.HTTPError, httpx.StreamError) as e:
            if self._aborted:
                self._apply_abort()
                return
            logger.warning("Event stream failed", extra={"extra": {"path": path, "error": str(e)}})
            self._fail(str(e) or "Connection failed")
            return
        finally:
            with self._lock:
                self._response = None
        if self._aborted and not terminal:
            self._apply_abort()
        elif not terminal:
            self._fail("Stream ended before completion")

    def _apply_http_error(self, resp: httpx.Response) -> None:
        resp.read()
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        message = payload.get("message") if isinstance(payload, dict) else None
        if isinstance(payload, dict) and payload.get("retryAfter"):
            self.state.retry_after = payload["retryAfter"]
        self._fail(message or f"HTTP error! status: {resp.status_code}")

    def _apply_abort(self) -> None:
        # 服务端不会为中断的轮次写入 assistant 消息，本地的部分文本一并丢弃
        self.state.text = ""
        self.state.executing_tools = []
        self.state.status = "idle"

    def _fail(self, message: str) -> None:
        self.state.error = message
        self.state.status = "error"

    # ---- 事件应用 ----

    def _apply(self, event: AgentEvent) -> None:
        payload = event.payload
        state = self.state
        if event.name == "thinking":
            if state.status == "loading":
                state.status = "streaming"
        elif event.name == "text":
            state.text += str(payload.get("content") or "")
        elif event.name == "tool_start":
            state.executing_tools.append(ToolCall.from_payload(payload))
        elif event.name == "tool_pending":
            call = ToolCall.from_payload(payload)
            state.executing_tools = [t for t in state.executing_tools if t.id != call.id]
            self._offer_confirmation(call)
            state.status = "awaiting_confirmation"
        elif event.name == "tool_result":
            result = ToolResult.from_payload(payload)
            state.executing_tools = [t for t in state.executing_tools if t.id != result.tool_call_id]
            state.tool_results.append(result)
        elif event.name == "done":
            self._apply_done(payload)
        elif event.name == "error":
            self._fail(str(payload.get("message") or "Unknown error"))
        if self._on_event is not None:
            self._on_event(event, state)

    def _apply_done(self, payload: Dict[str, Any]) -> None:
        state = self.state
        state.is_complete = bool(payload.get("isComplete"))
        if payload.get("entityId"):
            state.entity_id = str(payload["entityId"])
        if payload.get("turnId") is not None:
            state.turn_id = int(payload["turnId"])
        if payload.get("rateLimit"):
            state.rate_limit = dict(payload["rateLimit"])
        for item in payload.get("pendingConfirmations") or []:
            self._offer_confirmation(ToolCall.from_payload(item))
        if state.pending_confirmation is None:
            self._advance_confirmation()
        state.optimistic_message = None
        state.executing_tools = []
        state.status = "awaiting_confirmation" if state.pending_confirmation else "done"

    def _offer_confirmation(self, call: ToolCall) -> None:
        state = self.state
        if call.id in self._dismissed:
            return
        known = {c.id for c in state.queued_confirmations}
        if state.pending_confirmation is not None:
            known.add(state.pending_confirmation.id)
        if call.id in known:
            return
        if state.pending_confirmation is None:
            state.pending_confirmation = call
        else:
            state.queued_confirmations.append(call)

    def _advance_confirmation(self) -> None:
        queue = self.state.queued_confirmations
        self.state.pending_confirmation = queue.pop(0) if queue else None
