from event_agent.domain.models import DoneChunk, TextChunk, ToolCallDeltaChunk, ToolCallStartChunk
from event_agent.streaming.normalizer import (
    normalize_anthropic_event,
    normalize_openai_chunk,
    normalize_stream,
)


def _openai(delta=None, finish_reason=None, usage=None):
    payload = {"choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}]}
    if usage:
        payload["usage"] = usage
    return payload


def _tool_fragment(index, arguments, call_id=None, name=None):
    fragment = {"index": index, "function": {"arguments": arguments}}
    if call_id:
        fragment["id"] = call_id
        fragment["type"] = "function"
        fragment["function"]["name"] = name
    return {"tool_calls": [fragment]}


RECORDED_OPENAI_STREAM = [
    _openai({"role": "assistant", "content": ""}),
    _openai({"content": "Looking "}),
    _openai({"content": "for vendors."}),
    _openai(_tool_fragment(0, "", call_id="call_a", name="searchVendors")),
    _openai(_tool_fragment(0, '{"category":')),
    _openai(_tool_fragment(1, "", call_id="call_b", name="searchSponsors")),
    _openai(_tool_fragment(0, '"catering"}')),
    _openai(_tool_fragment(1, '{"tier":"gold"}')),
    _openai({}, finish_reason="tool_calls", usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}),
    _openai({"content": "after done"}),
]


def test_openai_text_and_tool_fragments():
    assert normalize_openai_chunk(_openai({"content": "hi"})) == [TextChunk(content="hi")]
    assert normalize_openai_chunk(_openai({"content": ""})) == []

    start = normalize_openai_chunk(_openai(_tool_fragment(2, '{"a"', call_id="c1", name="getEventDetails")))
    assert start == [ToolCallStartChunk(index=2, id="c1", name="getEventDetails", arguments='{"a"')]

    delta = normalize_openai_chunk(_openai(_tool_fragment(2, ":1}")))
    assert delta == [ToolCallDeltaChunk(index=2, arguments=":1}")]

    # 既没有 id 也没有参数文本的片段不产生任何增量
    assert normalize_openai_chunk(_openai(_tool_fragment(2, ""))) == []


def test_openai_finish_reason_produces_single_done():
    chunks = normalize_openai_chunk(
        _openai({}, finish_reason="stop", usage={"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7})
    )
    assert len(chunks) == 1
    assert isinstance(chunks[0], DoneChunk)
    assert chunks[0].finish_reason == "stop"
    assert chunks[0].usage.total_tokens == 7
    assert normalize_openai_chunk({"choices": []}) == []


def test_stream_preserves_order_and_stops_after_done():
    chunks = list(normalize_stream(RECORDED_OPENAI_STREAM, normalize_openai_chunk))

    kinds = [c.kind for c in chunks]
    assert kinds == [
        "text",
        "text",
        "tool_call_start",
        "tool_call_delta",
        "tool_call_start",
        "tool_call_delta",
        "tool_call_delta",
        "done",
    ]
    assert "".join(c.content for c in chunks if isinstance(c, TextChunk)) == "Looking for vendors."

    # 每个 index 的 start 都先于它的所有 delta
    for index in (0, 1):
        positions = [i for i, c in enumerate(chunks) if getattr(c, "index", None) == index]
        assert isinstance(chunks[positions[0]], ToolCallStartChunk)
        assert all(isinstance(chunks[p], ToolCallDeltaChunk) for p in positions[1:])


def test_anthropic_events():
    start = normalize_anthropic_event(
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "createEvent", "input": {}},
        }
    )
    assert start == [ToolCallStartChunk(index=1, id="toolu_1", name="createEvent", arguments="")]

    delta = normalize_anthropic_event(
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"t'}}
    )
    assert delta == [ToolCallDeltaChunk(index=1, arguments='{"t')]

    text = normalize_anthropic_event(
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Sure"}}
    )
    assert text == [TextChunk(content="Sure")]

    done = normalize_anthropic_event(
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 12}}
    )
    assert done[0].finish_reason == "tool_calls"
    assert done[0].usage.completion_tokens == 12

    assert normalize_anthropic_event({"type": "ping"}) == []
    assert normalize_anthropic_event({"type": "message_stop"}) == []
