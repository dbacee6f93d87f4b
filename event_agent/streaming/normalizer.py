"""厂商流式增量 → 统一 StreamChunk 的纯转换。

每个 normalize_* 函数只看当前这一条厂商 payload，不持有跨调用状态，
因此可以直接用录制下来的厂商数据做单元测试。

OpenAI（以及 Groq 等兼容接口）规则：
- delta.content 非空 → TextChunk。
- tool_calls 中带 id 的片段是该 index 的第一个片段 → ToolCallStartChunk。
- 不带 id 但带参数文本的片段 → ToolCallDeltaChunk（不重复名称）。
- finish_reason 出现 → DoneChunk。

Anthropic Messages 流规则：
- content_block_start(tool_use) → ToolCallStartChunk（参数为空字符串）。
- content_block_delta(text_delta) → TextChunk。
- content_block_delta(input_json_delta) → ToolCallDeltaChunk。
- message_delta.stop_reason → DoneChunk（原因映射到 OpenAI 词汇）。
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List

from event_agent.domain.models import (
    DoneChunk,
    StreamChunk,
    TextChunk,
    ToolCallDeltaChunk,
    ToolCallStartChunk,
    usage_from_payload,
)


NormalizeFn = Callable[[Dict[str, Any]], List[StreamChunk]]

ANTHROPIC_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "max_tokens": "length",
    "refusal": "content_filter",
}


def normalize_openai_chunk(payload: Dict[str, Any]) -> List[StreamChunk]:
    choices = payload.get("choices") or []
    if not choices:
        return []
    # 只使用第一个候选
    choice = choices[0] or {}
    delta = choice.get("delta") or {}
    chunks: List[StreamChunk] = []

    content = delta.get("content")
    if content:
        chunks.append(TextChunk(content=content))

    for position, call in enumerate(delta.get("tool_calls") or []):
        index = call.get("index", position)
        func = call.get("function") or {}
        fragment = func.get("arguments") or ""
        if call.get("id"):
            chunks.append(
                ToolCallStartChunk(
                    index=index,
                    id=call["id"],
                    name=func.get("name") or "",
                    arguments=fragment,
                )
            )
        elif fragment:
            chunks.append(ToolCallDeltaChunk(index=index, arguments=fragment))

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        chunks.append(DoneChunk(finish_reason=finish_reason, usage=usage_from_payload(payload.get("usage"))))
    return chunks


def normalize_anthropic_event(payload: Dict[str, Any]) -> List[StreamChunk]:
    event_type = payload.get("type")
    if event_type == "content_block_start":
        block = payload.get("content_block") or {}
        if block.get("type") == "tool_use":
            return [
                ToolCallStartChunk(
                    index=int(payload.get("index", 0)),
                    id=block.get("id") or "",
                    name=block.get("name") or "",
                    arguments="",
                )
            ]
        text = block.get("text")
        return [TextChunk(content=text)] if text else []

    if event_type == "content_block_delta":
        delta = payload.get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return [TextChunk(content=delta["text"])]
        if delta.get("type") == "input_json_delta" and delta.get("partial_json"):
            return [ToolCallDeltaChunk(index=int(payload.get("index", 0)), arguments=delta["partial_json"])]
        return []

    if event_type == "message_delta":
        stop_reason = (payload.get("delta") or {}).get("stop_reason")
        if stop_reason:
            return [
                DoneChunk(
                    finish_reason=ANTHROPIC_STOP_REASONS.get(stop_reason, stop_reason),
                    usage=usage_from_payload(payload.get("usage")),
                )
            ]
    return []


def normalize_stream(payloads: Iterable[Dict[str, Any]], normalize: NormalizeFn) -> Iterator[StreamChunk]:
    """按厂商顺序逐条转换，遇到第一个 DoneChunk 后停止。"""

    for payload in payloads:
        for chunk in normalize(payload):
            yield chunk
            if isinstance(chunk, DoneChunk):
                return
