"""Server-Sent Events 编解码。

编码：每个事件一帧 ``event: <name>\\ndata: <json>\\n\\n``。

解码由 httpx-sse 完成（行尾、注释、多行 data 以及跨块的 UTF-8 字符都由它和 httpx 处理），
这里只负责把 ServerSentEvent 转成 AgentEvent。
"""

import json
from typing import Iterator

import httpx
from httpx_sse import EventSource, ServerSentEvent

from event_agent.domain.events import AgentEvent


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: AgentEvent) -> bytes:
    data = json.dumps(event.payload, ensure_ascii=False, separators=(",", ":"), default=str)
    return f"event: {event.name}\ndata: {data}\n\n".encode("utf-8")


def decode_event(sse: ServerSentEvent) -> AgentEvent:
    """Raises:
        ValueError: data 不是 JSON 对象。
    """

    payload = sse.json() if sse.data else {}
    if not isinstance(payload, dict):
        raise ValueError(f"Event {sse.event!r} payload is not a JSON object")
    return AgentEvent(sse.event, payload)  # type: ignore[arg-type]


def iter_agent_events(response: httpx.Response) -> Iterator[AgentEvent]:
    for sse in EventSource(response).iter_sse():
        yield decode_event(sse)
