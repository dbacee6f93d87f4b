"""HTTP 传输层（FastAPI）。

- POST /api/conversations   创建会话，返回会话 JSON。
- POST /api/chat/stream     开始一个轮次，响应体为 text/event-stream。
- POST /api/chat/confirm    确认执行待确认的工具调用，响应体为 tool_result + done 两个事件。

前置条件失败（会话不存在、会话忙、配额用尽等）在建立事件流之前以普通 JSON 错误返回；
事件流一旦开始，之后的失败都以 error 事件结束，不会中断连接。
"""

from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.background import BackgroundTask

from event_agent.agents.orchestrator import AgentOrchestrator, TurnStream
from event_agent.api.sse import SSE_HEADERS, encode_event
from event_agent.domain.conversation import Conversation, ConversationStore
from event_agent.domain.events import AgentEvent
from event_agent.domain.exceptions import BusinessError, QuotaExceeded
from event_agent.infrastructure.logging.logger import logger


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateConversationRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1)
    context: Dict[str, Any] = Field(default_factory=dict)


class ChatStreamRequest(_CamelModel):
    conversation_id: str = Field(alias="conversationId", min_length=1)
    user_message: str = Field(alias="userMessage", min_length=1)


class ConfirmToolRequest(_CamelModel):
    conversation_id: str = Field(alias="conversationId", min_length=1)
    tool_call_id: str = Field(alias="toolCallId", min_length=1)
    tool_name: str = Field(alias="toolName", min_length=1)
    arguments: Optional[Dict[str, Any]] = None


def conversation_payload(conv: Conversation) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": conv.id,
        "userId": conv.user_id,
        "status": conv.status,
        "context": conv.context,
        "createdAt": conv.created_at.isoformat(),
        "updatedAt": conv.updated_at.isoformat(),
    }
    if conv.entity_id is not None:
        payload["entityId"] = conv.entity_id
    return payload


def error_response(exc: BusinessError) -> JSONResponse:
    body: Dict[str, Any] = {"error": exc.code, "message": exc.message}
    if isinstance(exc, QuotaExceeded):
        body["limit"] = exc.limit
        body["remaining"] = 0
        if exc.retry_after is not None:
            body["retryAfter"] = exc.retry_after.isoformat().replace("+00:00", "Z")
    return JSONResponse(status_code=exc.http_status, content=body)


def _turn_body(turn: TurnStream) -> Iterator[bytes]:
    try:
        for event in turn:
            yield encode_event(event)
    finally:
        turn.close()


def _events_body(events: List[AgentEvent]) -> Iterator[bytes]:
    for event in events:
        yield encode_event(event)


def create_app(orchestrator: AgentOrchestrator, store: ConversationStore) -> FastAPI:
    app = FastAPI(title="event-agent")

    @app.exception_handler(BusinessError)
    async def _business_error(_request, exc: BusinessError) -> JSONResponse:
        logger.info(
            "Request rejected",
            extra={"extra": {"code": exc.code, "status": exc.http_status, "error": exc.message}},
        )
        return error_response(exc)

    @app.post("/api/conversations")
    def create_conversation(request: CreateConversationRequest) -> Dict[str, Any]:
        conv = store.create_conversation(request.user_id, request.context)
        return conversation_payload(conv)

    @app.post("/api/conversations/{conversation_id}/abandon")
    def abandon_conversation(conversation_id: str) -> Dict[str, Any]:
        return conversation_payload(orchestrator.abandon_conversation(conversation_id))

    @app.post("/api/chat/stream")
    def chat_stream(request: ChatStreamRequest) -> StreamingResponse:
        turn = orchestrator.chat(request.conversation_id, request.user_message)
        # 响应体未被迭代（例如发送响应头时客户端已断开）时，由后台任务结束轮次
        return StreamingResponse(
            _turn_body(turn),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            background=BackgroundTask(turn.close),
        )

    @app.post("/api/chat/confirm")
    def confirm_tool(request: ConfirmToolRequest) -> StreamingResponse:
        outcome = orchestrator.confirm_and_execute(
            request.conversation_id,
            request.tool_call_id,
            request.tool_name,
            request.arguments,
        )
        events = orchestrator.confirmation_events(outcome)
        return StreamingResponse(_events_body(events), media_type="text/event-stream", headers=SSE_HEADERS)

    return app
