"""流式增量归一化。"""

from event_agent.streaming.normalizer import (
    normalize_anthropic_event,
    normalize_openai_chunk,
    normalize_stream,
)

__all__ = ["normalize_anthropic_event", "normalize_openai_chunk", "normalize_stream"]
