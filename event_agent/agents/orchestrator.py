"""Agent 编排器核心模块。

一次用户消息到终止事件（done / error）的过程称为一个轮次(turn)：

    RECEIVED -> STREAMING -> AUTO_EXECUTING* -> AWAITING_CONFIRMATION? -> COMPLETED | FAILED

chat() 同步检查前置条件（会话存在且未放弃、没有其他写入方、配额允许），
检查失败直接抛出业务异常，不产生任何事件；通过后返回 TurnStream，
迭代时才真正持久化用户消息并调用 Provider。

持久化规则：
- 用户消息在轮次开始时写入，失败或中断的轮次也保留它，方便客户端重试。
- assistant 消息与自动工具的结果只在轮次完成时写入，中断或出错的轮次不写。
- 需要确认的工具调用登记到会话的待确认队列，由 confirm_and_execute 单独执行。
"""

import json
import logging
import threading
import time
import weakref
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set
from uuid import uuid4

from event_agent.agents.accumulator import ToolCallAccumulator
from event_agent.agents.confirmations import PendingConfirmationQueue
from event_agent.agents.history import build_provider_messages
from event_agent.config.settings import settings
from event_agent.domain.conversation import Conversation, ConversationStore, MessageRecord
from event_agent.domain.events import (
    AgentEvent,
    done_event,
    error_event,
    text_event,
    thinking_event,
    tool_pending_event,
    tool_result_event,
    tool_start_event,
)
from event_agent.domain.exceptions import BusinessError, ConversationBusy, QuotaExceeded
from event_agent.domain.models import (
    AssistantMessage,
    ChatMessage,
    DoneChunk,
    ProviderCallConfig,
    TextChunk,
    ToolCallDeltaChunk,
    ToolCallStartChunk,
    ToolResultMessage,
)
from event_agent.domain.quota import QuotaService
from event_agent.infrastructure.logging.logger import logger
from event_agent.prompts import load_system_prompt, render_system_prompt
from event_agent.providers.base import AIProvider
from event_agent.providers.registry import PROVIDER_REGISTRY
from event_agent.tools.catalog import TERMINAL_ENTITY_KEY, TERMINAL_TOOL
from event_agent.tools.definitions import ToolCall, ToolResult
from event_agent.tools.executor import ToolExecutor


class TurnState(str, Enum):
    RECEIVED = "received"
    STREAMING = "streaming"
    AUTO_EXECUTING = "auto_executing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AgentConfig:
    agent_type: str = "event-planner"
    locale: str = "en"
    call: Optional[ProviderCallConfig] = None
    max_tool_rounds: int = field(default_factory=lambda: settings.max_tool_rounds)
    max_context_messages: int = field(default_factory=lambda: settings.max_context_messages)


@dataclass
class ConfirmationOutcome:
    """confirm_and_execute 的结果。pending 为该会话剩余的待确认调用。"""

    conversation_id: str
    result: ToolResult
    is_complete: bool
    entity_id: Optional[str]
    pending: List[ToolCall]
    turn_id: int


class _WriterSlots:
    """进程内的单写入方约束：同一会话同时只允许一个轮次或确认在执行。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    def acquire(self, conversation_id: str) -> None:
        with self._lock:
            if conversation_id in self._active:
                raise ConversationBusy(conversation_id)
            self._active.add(conversation_id)

    def release(self, conversation_id: str) -> None:
        with self._lock:
            self._active.discard(conversation_id)

    def is_active(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._active


class TurnStream:
    """一个轮次的事件迭代器。

    close() 会中断轮次（等同于客户端断开连接）并释放写入槽位。
    从未开始迭代就被丢弃的轮次在回收时释放槽位；槽位只会被释放一次。
    """

    def __init__(
        self,
        conversation_id: str,
        turn_id: int,
        body: Callable[["TurnStream"], Iterator[AgentEvent]],
        release: Callable[[str], None],
    ):
        self.conversation_id = conversation_id
        self.turn_id = turn_id
        self.state = TurnState.RECEIVED
        self._finalizer = weakref.finalize(self, release, conversation_id)
        self._gen = body(self)

    def __iter__(self) -> "TurnStream":
        return self

    def __next__(self) -> AgentEvent:
        return next(self._gen)

    @property
    def released(self) -> bool:
        return not self._finalizer.alive

    def release(self) -> None:
        self._finalizer()

    def close(self) -> None:
        self._gen.close()
        self.release()


@dataclass
class _TurnProgress:
    text_parts: List[str] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    pending: List[ToolCall] = field(default_factory=list)
    is_complete: bool = False
    entity_id: Optional[str] = None


class AgentOrchestrator:
    def __init__(
        self,
        store: ConversationStore,
        provider: AIProvider,
        tool_executor: ToolExecutor,
        quota: QuotaService,
        config: Optional[AgentConfig] = None,
        confirmations: Optional[PendingConfirmationQueue] = None,
    ):
        self._store = store
        self._provider = provider
        self._tool_executor = tool_executor
        self._quota = quota
        self._config = config or AgentConfig()
        self._confirmations = confirmations or PendingConfirmationQueue()
        self._slots = _WriterSlots()

    @property
    def confirmations(self) -> PendingConfirmationQueue:
        return self._confirmations

    def is_busy(self, conversation_id: str) -> bool:
        return self._slots.is_active(conversation_id)

    # ---- 对话轮次 ----

    def chat(self, conversation_id: str, user_message: str) -> TurnStream:
        """开始一个轮次。

        Raises:
            BusinessError: 会话不存在（CONVERSATION_NOT_FOUND）或已放弃（CONVERSATION_ABANDONED）。
            ConversationBusy: 会话已有进行中的轮次或确认。
            QuotaExceeded: 每日配额已用尽，此时不会调用 Provider，也不会增加用量。
        """

        conv = self._store.get_conversation(conversation_id)
        self._ensure_writable(conv)
        self._slots.acquire(conv.id)
        try:
            status = self._quota.check_quota(conv.user_id)
            if not status.allowed:
                self._log(
                    logging.INFO,
                    "Quota exceeded",
                    {"conversation_id": conv.id, "user_id": conv.user_id},
                    limit=status.limit,
                    retry_after=status.retry_after,
                )
                raise QuotaExceeded(
                    message=(
                        f"You've used all {status.limit} AI prompts for today. "
                        "Your limit resets at midnight UTC."
                    ),
                    retry_after=status.retry_after,
                    limit=status.limit,
                    remaining=status.remaining,
                )
            turn_id = self._next_turn_id(conv.id)
        except Exception:
            self._slots.release(conv.id)
            raise

        return TurnStream(
            conversation_id=conv.id,
            turn_id=turn_id,
            body=lambda turn: self._run_turn(turn, conv, user_message),
            release=self._slots.release,
        )

    def _run_turn(self, turn: TurnStream, conv: Conversation, user_message: str) -> Iterator[AgentEvent]:
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conv.id,
            "turn_id": turn.turn_id,
            "provider": self._provider.name,
        }
        progress = _TurnProgress()
        finished = False
        try:
            user_rec = self._new_record(conv.id, "user", user_message, turn.turn_id)
            self._store.append_message(user_rec)
            self._log(logging.INFO, "Stored user message", log_ctx, message_id=user_rec.id)

            system_prompt = render_system_prompt(
                load_system_prompt(self._config.agent_type, self._config.locale),
                conv.context,
            )
            messages = build_provider_messages(
                system_prompt,
                self._store.list_messages(conv.id),
                self._config.max_context_messages,
            )

            max_rounds = max(1, self._config.max_tool_rounds)
            for round_no in range(1, max_rounds + 1):
                yield thinking_event(round_no)
                turn.state = TurnState.STREAMING
                round_text: List[str] = []
                accumulator = ToolCallAccumulator()
                with closing(self._stream_round(messages)) as chunks:
                    for chunk in chunks:
                        if isinstance(chunk, TextChunk):
                            round_text.append(chunk.content)
                            yield text_event(chunk.content)
                        elif isinstance(chunk, ToolCallStartChunk):
                            accumulator.add_start(chunk)
                        elif isinstance(chunk, ToolCallDeltaChunk):
                            accumulator.add_delta(chunk)
                        elif isinstance(chunk, DoneChunk):
                            self._log(
                                logging.INFO,
                                "Provider round finished",
                                log_ctx,
                                round=round_no,
                                finish_reason=chunk.finish_reason,
                            )

                if round_no == 1:
                    self._quota.increment_usage(conv.user_id)

                progress.text_parts.extend(round_text)
                calls, malformed = accumulator.finalize()
                if malformed:
                    self._log(logging.WARNING, "Discarded malformed tool calls", log_ctx, count=len(malformed))
                if not calls:
                    break

                round_results: List[ToolResult] = []
                for call in calls:
                    progress.tool_calls.append(call)
                    yield tool_start_event(call)
                    if self._tool_executor.requires_confirmation(call.name):
                        progress.pending.append(call)
                        yield tool_pending_event(call)
                        continue
                    turn.state = TurnState.AUTO_EXECUTING
                    result = self._tool_executor.execute(call)
                    self._log(
                        logging.INFO,
                        "Executed tool",
                        log_ctx,
                        tool_name=call.name,
                        tool_call_id=call.id,
                        success=result.success,
                    )
                    round_results.append(result)
                    progress.tool_results.append(result)
                    self._apply_terminal(progress, result)
                    yield tool_result_event(result)

                if progress.pending or not round_results:
                    break
                answered = {r.tool_call_id for r in round_results}
                messages.append(
                    AssistantMessage(
                        content="".join(round_text),
                        tool_calls=[c for c in calls if c.id in answered],
                    )
                )
                messages.extend(
                    ToolResultMessage(content=self._result_content(r), tool_call_id=r.tool_call_id)
                    for r in round_results
                )
            else:
                self._log(logging.WARNING, "Reached max tool rounds", log_ctx, max_rounds=max_rounds)

            done = self._complete_turn(turn, conv, progress, log_ctx)
            finished = True
            self._log(
                logging.INFO,
                "Completed turn",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
                tool_calls=len(progress.tool_calls),
                pending=len(progress.pending),
            )
            yield done
        except GeneratorExit:
            if not finished:
                turn.state = TurnState.FAILED
                self._log(logging.INFO, "Turn aborted by client", log_ctx)
            raise
        except BusinessError as e:
            turn.state = TurnState.FAILED
            turn.release()
            self._log(logging.ERROR, "Turn failed", log_ctx, code=e.code, error=e.message)
            yield error_event(e.message)
        except Exception as e:
            turn.state = TurnState.FAILED
            turn.release()
            logger.exception("Unexpected error in turn", extra={"extra": log_ctx})
            yield error_event(str(e) or "Unknown error")
        finally:
            turn.release()

    def _stream_round(self, messages: List[ChatMessage]) -> Iterator[Any]:
        stream = self._provider.create_streaming_chat(messages, self._tool_executor.tool_defs, self._call_config())
        try:
            yield from stream
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    def _complete_turn(
        self,
        turn: TurnStream,
        conv: Conversation,
        progress: _TurnProgress,
        log_ctx: Dict[str, Any],
    ) -> AgentEvent:
        message = "".join(progress.text_parts)
        assistant_rec = self._new_record(
            conv.id,
            "assistant",
            message,
            turn.turn_id,
            tool_calls=list(progress.tool_calls),
        )
        self._store.append_message(assistant_rec)
        for result in progress.tool_results:
            self._store.append_message(
                self._new_record(
                    conv.id,
                    "tool",
                    self._result_content(result),
                    turn.turn_id,
                    tool_call_id=result.tool_call_id,
                )
            )
        if progress.is_complete:
            self._store.mark_complete(conv.id, progress.entity_id)
        if progress.pending:
            self._confirmations.register(conv.id, progress.pending)

        turn.state = TurnState.AWAITING_CONFIRMATION if progress.pending else TurnState.COMPLETED
        rate_limit = self._rate_limit(conv.user_id)
        # 先释放写入槽位再发 done，客户端收到 done 后可以立刻确认
        turn.release()
        self._log(logging.INFO, "Stored assistant message", log_ctx, message_id=assistant_rec.id)
        return done_event(
            message=message,
            tool_calls=progress.tool_calls,
            tool_results=progress.tool_results,
            pending=progress.pending,
            is_complete=progress.is_complete,
            entity_id=progress.entity_id,
            turn_id=turn.turn_id,
            rate_limit=rate_limit,
        )

    # ---- 确认执行 ----

    def confirm_and_execute(
        self,
        conversation_id: str,
        tool_call_id: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> ConfirmationOutcome:
        """执行一个待确认的工具调用。

        使用流中累积得到的参数执行；调用方提供的参数与之不一致时只记录日志。

        Raises:
            UnknownToolCall: 该会话没有这个待确认的调用，或名称不匹配。
            AlreadyResolved: 该调用已经执行过（或随会话放弃）。
            ConversationBusy: 会话正在进行其他轮次。
        """

        conv = self._store.get_conversation(conversation_id)
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conv.id,
            "tool_call_id": tool_call_id,
            "tool_name": tool_name,
        }
        self._slots.acquire(conv.id)
        try:
            call = self._confirmations.resolve(conv.id, tool_call_id, tool_name)
            if arguments is not None and arguments != call.arguments:
                self._log(logging.WARNING, "Ignored client-supplied tool arguments", log_ctx)
            result = self._tool_executor.execute(call)
            turn_id = self._current_turn_id(conv.id)
            self._store.append_message(
                self._new_record(
                    conv.id,
                    "tool",
                    self._result_content(result),
                    turn_id,
                    tool_call_id=call.id,
                )
            )
            progress = _TurnProgress()
            self._apply_terminal(progress, result)
            if progress.is_complete:
                conv = self._store.mark_complete(conv.id, progress.entity_id)
            self._log(logging.INFO, "Executed confirmed tool", log_ctx, success=result.success)
            return ConfirmationOutcome(
                conversation_id=conv.id,
                result=result,
                is_complete=conv.status == "completed",
                entity_id=conv.entity_id,
                pending=self._confirmations.pending(conv.id),
                turn_id=turn_id,
            )
        finally:
            self._slots.release(conv.id)

    def confirmation_events(self, outcome: ConfirmationOutcome) -> List[AgentEvent]:
        """确认执行的结果按线协议展开为 tool_result + done。"""

        return [
            tool_result_event(outcome.result),
            done_event(
                message=outcome.result.summary,
                tool_calls=[],
                tool_results=[outcome.result],
                pending=outcome.pending,
                is_complete=outcome.is_complete,
                entity_id=outcome.entity_id,
                turn_id=outcome.turn_id,
            ),
        ]

    def abandon_conversation(self, conversation_id: str) -> Conversation:
        """放弃会话：丢弃全部待确认调用，之后不再接受新的轮次。"""

        conv = self._store.get_conversation(conversation_id)
        self._slots.acquire(conv.id)
        try:
            dropped = self._confirmations.discard(conv.id)
            conv = self._store.update_status(conv.id, "abandoned")
            self._log(
                logging.INFO,
                "Abandoned conversation",
                {"conversation_id": conv.id},
                dropped_confirmations=len(dropped),
            )
            return conv
        finally:
            self._slots.release(conv.id)

    # ---- 内部工具 ----

    @staticmethod
    def _ensure_writable(conv: Conversation) -> None:
        if conv.status == "abandoned":
            raise BusinessError(
                code="CONVERSATION_ABANDONED",
                message=f"Conversation {conv.id!r} has been abandoned",
                http_status=409,
            )

    def _call_config(self) -> ProviderCallConfig:
        if self._config.call is not None:
            return self._config.call
        provider_cfg = PROVIDER_REGISTRY.get(self._provider.name)
        if provider_cfg is None:
            raise BusinessError(
                code="NO_MODEL_CONFIG",
                message=f"No default model configured for provider {self._provider.name!r}",
            )
        return provider_cfg.default_call

    def _current_turn_id(self, conversation_id: str) -> int:
        return max((m.turn_id for m in self._store.list_messages(conversation_id)), default=0)

    def _next_turn_id(self, conversation_id: str) -> int:
        return self._current_turn_id(conversation_id) + 1

    def _rate_limit(self, user_id: str) -> Dict[str, int]:
        status = self._quota.check_quota(user_id)
        return {"remaining": status.remaining, "limit": status.limit}

    @staticmethod
    def _apply_terminal(progress: _TurnProgress, result: ToolResult) -> None:
        if result.name != TERMINAL_TOOL or not result.success or not isinstance(result.data, dict):
            return
        progress.is_complete = True
        entity_id = result.data.get(TERMINAL_ENTITY_KEY)
        progress.entity_id = str(entity_id) if entity_id is not None else None

    @staticmethod
    def _result_content(result: ToolResult) -> str:
        return json.dumps(result.to_payload(), ensure_ascii=False, default=str)

    @staticmethod
    def _new_record(
        conversation_id: str,
        role: str,
        content: str,
        turn_id: int,
        tool_calls: Optional[List[ToolCall]] = None,
        tool_call_id: Optional[str] = None,
    ) -> MessageRecord:
        return MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conversation_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            turn_id=turn_id,
            created_at=datetime.now(timezone.utc),
            tool_calls=tool_calls,
            tool_call_id=tool_call_id,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
