"""把持久化的消息记录转换为发给 Provider 的消息列表。

Provider 要求每个 assistant 工具调用后面紧跟它的工具结果，因此：
- 没有持久化结果的工具调用（仍待确认、被取消或所在会话已放弃）从 assistant 消息中去掉；
- 工具结果紧跟在发起它的 assistant 消息之后输出，即使它是稍后才确认执行的；
- 找不到对应调用的工具结果（例如被上下文裁剪截断）直接丢弃。
"""

from typing import Dict, List, Sequence

from event_agent.domain.conversation import MessageRecord
from event_agent.domain.models import (
    AssistantMessage,
    ChatMessage,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)


def trim_records(records: Sequence[MessageRecord], max_context: int) -> List[MessageRecord]:
    if max_context <= 0 or len(records) <= max_context:
        return list(records)
    return list(records[-max_context:])


def build_provider_messages(
    system_prompt: str,
    records: Sequence[MessageRecord],
    max_context: int,
) -> List[ChatMessage]:
    trimmed = trim_records(records, max_context)
    results: Dict[str, MessageRecord] = {
        rec.tool_call_id: rec for rec in trimmed if rec.role == "tool" and rec.tool_call_id
    }

    messages: List[ChatMessage] = [SystemMessage(content=system_prompt)] if system_prompt else []
    for rec in trimmed:
        if rec.role == "user":
            messages.append(UserMessage(content=rec.content))
        elif rec.role == "system":
            messages.append(SystemMessage(content=rec.content))
        elif rec.role == "assistant":
            answered = [call for call in rec.tool_calls or [] if call.id in results]
            if not answered and not rec.content:
                continue
            messages.append(AssistantMessage(content=rec.content, tool_calls=answered))
            for call in answered:
                result = results[call.id]
                messages.append(ToolResultMessage(content=result.content, tool_call_id=call.id))
        # tool 记录只在其 assistant 消息之后输出
    return messages
