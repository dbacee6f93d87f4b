"""Provider 抽象接口。

编排器不直接依赖具体厂商的 HTTP API，而是依赖此协议：

- 每个厂商实现一个 AIProvider（如 OpenAIClient、AnthropicClient）。
- 负责：把统一的消息/工具模型转成厂商请求，以流式方式调用，
  并把厂商增量归一化为 StreamChunk。
- 认证、限流、网络错误以 ProviderError 子类抛出，重试在适配器内部完成。
"""

from typing import Iterator, List, Protocol, Sequence

from event_agent.domain.models import ChatMessage, ProviderCallConfig, StreamChunk
from event_agent.tools.definitions import ToolDef


class AIProvider(Protocol):
    """LLM Provider 客户端协议。

    - name: Provider 名称，用于日志/统计。
    - create_streaming_chat: 流式对话调用，逐个产出 StreamChunk；
      第一个增量在整个响应结束前即可被消费。
    """

    name: str

    def create_streaming_chat(
        self,
        messages: Sequence[ChatMessage],
        tools: List[ToolDef],
        config: ProviderCallConfig,
    ) -> Iterator[StreamChunk]:
        ...
