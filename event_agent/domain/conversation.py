from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol

from event_agent.tools.definitions import ToolCall
from .models import Role


ConversationStatus = Literal["active", "completed", "abandoned"]


@dataclass
class Conversation:
    id: str
    user_id: str
    status: ConversationStatus
    created_at: datetime
    updated_at: datetime
    entity_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MessageRecord:
    """持久化的一条消息。只追加，不修改。

    - tool_calls: 仅 assistant 消息使用，按模型给出的顺序保存。
    - tool_call_id: 仅 tool 消息使用，关联到某一次工具调用。
    - turn_id: 会话内单调递增的轮次编号，用于客户端对账。
    """

    id: str
    conversation_id: str
    role: Role
    content: str
    turn_id: int
    created_at: datetime
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class ConversationStore(Protocol):
    def create_conversation(self, user_id: str, context: Dict[str, Any]) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self, user_id: Optional[str] = None) -> List[Conversation]:
        ...

    def append_message(self, message: MessageRecord) -> None:
        ...

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        ...

    def mark_complete(self, conversation_id: str, entity_id: Optional[str]) -> Conversation:
        ...

    def update_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        ...

    def update_context(self, conversation_id: str, context: Dict[str, Any]) -> Conversation:
        ...
