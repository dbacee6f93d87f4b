"""Event Agent 顶层包。

活动策划对话 Agent 的编排核心：多 Provider 流式调用与重试、
流式增量归一化、工具调用累积与确认门控、SSE 事件传输，
以及消费事件流的客户端。
"""

from event_agent.agents.orchestrator import AgentConfig, AgentOrchestrator, ConfirmationOutcome, TurnStream
from event_agent.api.service import build_app, build_orchestrator

__all__ = [
    "AgentConfig",
    "AgentOrchestrator",
    "ConfirmationOutcome",
    "TurnStream",
    "build_app",
    "build_orchestrator",
]
