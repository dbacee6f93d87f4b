"""统一的对话与流式数据模型。

本模块定义了编排器在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 发给 Provider 的消息，按角色拆成 4 种类型的联合
  （SystemMessage / UserMessage / AssistantMessage / ToolResultMessage），
  不再使用一个带大量可选字段的宽松结构。
- ProviderCallConfig: 单次 Provider 调用的模型参数。
- StreamChunk: 与厂商无关的流式增量（文本、工具调用开始、工具参数增量、完成）。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional, Union

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from event_agent.tools.definitions import ToolCall


Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "tool_calls", "length", "content_filter"]
ToolChoice = Literal["auto", "none", "required"]


@dataclass
class SystemMessage:
    content: str
    role: Literal["system"] = "system"


@dataclass
class UserMessage:
    content: str
    role: Literal["user"] = "user"


@dataclass
class AssistantMessage:
    """助手消息；模型触发工具调用时 tool_calls 保存调用列表。"""

    content: str
    tool_calls: List["ToolCall"] = field(default_factory=list)
    role: Literal["assistant"] = "assistant"


@dataclass
class ToolResultMessage:
    """工具结果消息，通过 tool_call_id 关联到某一次工具调用。"""

    content: str
    tool_call_id: str
    role: Literal["tool"] = "tool"


ChatMessage = Union[SystemMessage, UserMessage, AssistantMessage, ToolResultMessage]


@dataclass
class ProviderCallConfig:
    """一次 Provider 调用的参数。model 为厂商实际模型 ID。"""

    model: str
    temperature: float = 0.7
    max_tokens: int = 1500
    tool_choice: ToolChoice = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


# ---- 流式增量 ----


@dataclass
class TextChunk:
    content: str
    kind: Literal["text"] = "text"


@dataclass
class ToolCallStartChunk:
    """某个工具调用的第一个片段（携带 id 与名称）。"""

    index: int
    id: str
    name: str
    arguments: str = ""
    kind: Literal["tool_call_start"] = "tool_call_start"


@dataclass
class ToolCallDeltaChunk:
    """同一 index 的后续参数片段，不重复名称。"""

    index: int
    arguments: str
    kind: Literal["tool_call_delta"] = "tool_call_delta"


@dataclass
class DoneChunk:
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
    kind: Literal["done"] = "done"


StreamChunk = Union[TextChunk, ToolCallStartChunk, ToolCallDeltaChunk, DoneChunk]


def usage_from_payload(raw: Optional[Dict[str, Any]]) -> Optional[ChatUsage]:
    if not raw:
        return None
    prompt = int(raw.get("prompt_tokens", raw.get("input_tokens", 0)) or 0)
    completion = int(raw.get("completion_tokens", raw.get("output_tokens", 0)) or 0)
    return ChatUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(raw.get("total_tokens", prompt + completion) or 0),
    )
