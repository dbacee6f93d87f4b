"""对外 API 服务模块。

把存储、Provider、工具执行器和配额服务装配成一个可直接运行的 FastAPI 应用。
工具处理函数由调用方提供（它们负责读写活动/供应商/赞助商记录）。
"""

from typing import Dict, Optional

from fastapi import FastAPI

from event_agent.agents.orchestrator import AgentConfig, AgentOrchestrator
from event_agent.api.server import create_app
from event_agent.config.settings import settings
from event_agent.domain.conversation import ConversationStore
from event_agent.domain.quota import QuotaService
from event_agent.infrastructure.logging.logger import logger
from event_agent.infrastructure.quota.daily_quota import DailyQuotaTracker
from event_agent.infrastructure.storage.json_store import JsonConversationStore
from event_agent.providers import create_provider
from event_agent.providers.base import AIProvider
from event_agent.tools.catalog import default_tool_defs
from event_agent.tools.executor import ToolExecutor, ToolHandler


def build_orchestrator(
    handlers: Dict[str, ToolHandler],
    store: Optional[ConversationStore] = None,
    provider: Optional[AIProvider] = None,
    quota: Optional[QuotaService] = None,
    config: Optional[AgentConfig] = None,
) -> AgentOrchestrator:
    """按配置装配编排器；未传入的协作方使用默认实现。

    Raises:
        ProviderUnavailable: 未传入 provider 且没有任何 Provider 配置了 API key。
    """

    store = store or JsonConversationStore(root=settings.storage_root)
    provider = provider or create_provider()
    quota = quota or DailyQuotaTracker()
    executor = ToolExecutor(handlers, default_tool_defs())
    missing = [tool.name for tool in executor.tool_defs if tool.name not in handlers]
    if missing:
        logger.warning("Tools without handlers", extra={"extra": {"tools": missing}})
    logger.info("Built orchestrator", extra={"extra": {"provider": provider.name}})
    return AgentOrchestrator(store=store, provider=provider, tool_executor=executor, quota=quota, config=config)


def build_app(
    handlers: Dict[str, ToolHandler],
    store: Optional[ConversationStore] = None,
    provider: Optional[AIProvider] = None,
    quota: Optional[QuotaService] = None,
) -> FastAPI:
    store = store or JsonConversationStore(root=settings.storage_root)
    orchestrator = build_orchestrator(handlers, store=store, provider=provider, quota=quota)
    return create_app(orchestrator, store)
