import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from event_agent.config.settings import settings
from event_agent.domain.conversation import (
    Conversation,
    ConversationStatus,
    ConversationStore,
    MessageRecord,
)
from event_agent.domain.exceptions import BusinessError
from event_agent.tools.definitions import ToolCall


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """基于文件的会话存储。

    每个会话一个目录：meta.json 保存会话元数据（原子替换写入），
    messages.jsonl 每行一条消息，只追加。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def create_conversation(self, user_id: str, context: Optional[Dict[str, Any]] = None) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        cdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        conv = Conversation(
            id=cid,
            user_id=user_id,
            status="active",
            created_at=now,
            updated_at=now,
            context=dict(context or {}),
        )
        self._write_meta(cdir, conv)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_root / conversation_id / "meta.json"
        if not meta_path.exists():
            raise BusinessError(
                code="CONVERSATION_NOT_FOUND",
                message=f"Conversation {conversation_id!r} not found",
                http_status=404,
            )
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e), http_status=500)
        return self._to_conversation(data)

    def list_conversations(self, user_id: Optional[str] = None) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in sorted(self._conv_root.glob("*/")):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                conv = self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError):
                continue
            if user_id is None or conv.user_id == user_id:
                items.append(conv)
        items.sort(key=lambda c: c.created_at)
        return items

    def append_message(self, message: MessageRecord) -> None:
        cdir = self._conv_root / message.conversation_id
        if not (cdir / "meta.json").exists():
            raise BusinessError(
                code="CONVERSATION_NOT_FOUND",
                message=f"Conversation {message.conversation_id!r} not found",
                http_status=404,
            )
        payload: Dict[str, Any] = {
            "id": message.id,
            "conversation_id": message.conversation_id,
            "role": message.role,
            "content": message.content,
            "turn_id": message.turn_id,
            "created_at": _iso(message.created_at),
            "meta": message.meta,
        }
        if message.tool_calls is not None:
            payload["tool_calls"] = [
                {**call.to_payload(), "raw_arguments": call.raw_arguments} for call in message.tool_calls
            ]
        if message.tool_call_id is not None:
            payload["tool_call_id"] = message.tool_call_id
        try:
            line = json.dumps(payload, ensure_ascii=False, default=str)
            with self._lock:
                with (cdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
                conv = self.get_conversation(message.conversation_id)
                conv.updated_at = datetime.now(timezone.utc)
                self._write_meta(cdir, conv)
        except BusinessError:
            raise
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        """按写入顺序返回消息；无法解析的行被跳过。"""

        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        return items

    def mark_complete(self, conversation_id: str, entity_id: Optional[str]) -> Conversation:
        def apply(conv: Conversation) -> None:
            conv.status = "completed"
            if entity_id is not None:
                conv.entity_id = entity_id

        return self._update(conversation_id, apply)

    def update_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        def apply(conv: Conversation) -> None:
            conv.status = status

        return self._update(conversation_id, apply)

    def update_context(self, conversation_id: str, context: Dict[str, Any]) -> Conversation:
        def apply(conv: Conversation) -> None:
            conv.context.update(context)

        return self._update(conversation_id, apply)

    def _update(self, conversation_id: str, apply) -> Conversation:
        with self._lock:
            conv = self.get_conversation(conversation_id)
            apply(conv)
            conv.updated_at = datetime.now(timezone.utc)
            self._write_meta(self._conv_root / conversation_id, conv)
            return conv

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "user_id": conv.user_id,
            "status": conv.status,
            "entity_id": conv.entity_id,
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
            "context": conv.context,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False, default=str), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except (OSError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            user_id=data["user_id"],
            status=data.get("status") or "active",
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            entity_id=data.get("entity_id"),
            context=data.get("context") or {},
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        tool_calls = None
        if data.get("tool_calls") is not None:
            tool_calls = [
                ToolCall(
                    id=str(item.get("id") or ""),
                    name=str(item.get("name") or ""),
                    arguments=dict(item.get("arguments") or {}),
                    raw_arguments=str(item.get("raw_arguments") or ""),
                )
                for item in data["tool_calls"]
            ]
        return MessageRecord(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            turn_id=int(data.get("turn_id", 0)),
            created_at=_parse_dt(data["created_at"]),
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
            meta=data.get("meta") or {},
        )
