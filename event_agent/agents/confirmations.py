"""待确认工具调用队列。

每个会话一个先进先出队列；已处理（确认执行或随会话放弃）的 id 记录在 resolved 集合中，
用于区分“从未存在”与“已经处理过”两种情况。
"""

import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Set

from event_agent.domain.exceptions import AlreadyResolved, UnknownToolCall
from event_agent.tools.definitions import ToolCall


class PendingConfirmationQueue:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[str, "OrderedDict[str, ToolCall]"] = {}
        self._resolved: Dict[str, Set[str]] = {}

    def register(self, conversation_id: str, calls: List[ToolCall]) -> None:
        with self._lock:
            queue = self._pending.setdefault(conversation_id, OrderedDict())
            for call in calls:
                queue[call.id] = call

    def pending(self, conversation_id: str) -> List[ToolCall]:
        with self._lock:
            return list(self._pending.get(conversation_id, {}).values())

    def first(self, conversation_id: str) -> Optional[ToolCall]:
        with self._lock:
            queue = self._pending.get(conversation_id)
            if not queue:
                return None
            return next(iter(queue.values()))

    def resolve(self, conversation_id: str, tool_call_id: str, tool_name: str) -> ToolCall:
        """取出待确认的调用并标记为已处理。

        id 已处理过时抛 AlreadyResolved；id 不存在或名称不匹配时抛 UnknownToolCall，
        两种情况下队列都保持不变。
        """

        with self._lock:
            if tool_call_id in self._resolved.get(conversation_id, set()):
                raise AlreadyResolved(tool_call_id, conversation_id=conversation_id)
            queue = self._pending.get(conversation_id)
            call = queue.get(tool_call_id) if queue else None
            if call is None or call.name != tool_name:
                raise UnknownToolCall(tool_call_id, conversation_id=conversation_id, tool_name=tool_name)
            del queue[tool_call_id]
            self._resolved.setdefault(conversation_id, set()).add(tool_call_id)
            return call

    def discard(self, conversation_id: str) -> List[ToolCall]:
        """丢弃会话的全部待确认调用，返回被丢弃的列表。"""

        with self._lock:
            queue = self._pending.pop(conversation_id, None) or OrderedDict()
            self._resolved.setdefault(conversation_id, set()).update(queue.keys())
            return list(queue.values())
