"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 的基础 URL 与默认调用参数 (registry)。
- 流式调用与重试的公共实现 (http_base)。
- 各厂商的具体实现 (openai_client、anthropic_client)。

Provider 类型是一个封闭集合，工厂在创建时一次性根据配置解析，不做动态插件加载。
"""

from dataclasses import dataclass
from typing import Optional

from event_agent.config.settings import settings
from event_agent.domain.exceptions import ProviderUnavailable
from event_agent.providers.anthropic_client import AnthropicClient
from event_agent.providers.base import AIProvider
from event_agent.providers.openai_client import GroqClient, OpenAIClient
from event_agent.providers.registry import PROVIDER_PRIORITY, PROVIDER_REGISTRY, ProviderType


@dataclass
class ProviderCredentials:
    openai: Optional[str] = None
    anthropic: Optional[str] = None
    groq: Optional[str] = None

    @classmethod
    def from_settings(cls, cfg=None) -> "ProviderCredentials":
        cfg = cfg or settings
        return cls(
            openai=getattr(cfg, "openai_api_key", None),
            anthropic=getattr(cfg, "anthropic_api_key", None),
            groq=getattr(cfg, "groq_api_key", None),
        )

    def get(self, provider_type: str) -> Optional[str]:
        return getattr(self, provider_type, None)


_CLIENTS = {
    "openai": OpenAIClient,
    "anthropic": AnthropicClient,
    "groq": GroqClient,
}


def is_provider_available(provider_type: str, credentials: Optional[ProviderCredentials] = None) -> bool:
    """Provider 是否已配置凭据。"""

    creds = credentials or ProviderCredentials.from_settings(settings)
    return provider_type in PROVIDER_REGISTRY and bool(creds.get(provider_type))


def get_default_provider(credentials: Optional[ProviderCredentials] = None) -> Optional[ProviderType]:
    """按 openai > anthropic > groq 的顺序返回第一个有凭据的 Provider。"""

    creds = credentials or ProviderCredentials.from_settings(settings)
    for name in PROVIDER_PRIORITY:
        if creds.get(name):
            return name  # type: ignore[return-value]
    return None


def create_provider(
    name: Optional[str] = None,
    credentials: Optional[ProviderCredentials] = None,
    **client_kwargs,
) -> AIProvider:
    """根据名称创建 Provider 实例。

    未指定名称时先取配置中的 default_provider，再按凭据自动选择。
    """

    creds = credentials or ProviderCredentials.from_settings(settings)
    provider_name = (name or getattr(settings, "default_provider", None) or get_default_provider(creds) or "").lower()
    if not provider_name:
        raise ProviderUnavailable(code="NO_PROVIDER", message="No AI provider credentials configured")
    client_cls = _CLIENTS.get(provider_name)
    if client_cls is None:
        raise ProviderUnavailable(code="UNKNOWN_PROVIDER", message=f"Unknown provider type: {provider_name}")
    api_key = creds.get(provider_name)
    if not api_key:
        raise ProviderUnavailable(
            code="MISSING_API_KEY",
            message=f"{provider_name.upper()}_API_KEY not set",
        )
    client_kwargs.setdefault("cfg", settings)
    return client_cls(api_key, **client_kwargs)


__all__ = [
    "AIProvider",
    "ProviderCredentials",
    "create_provider",
    "get_default_provider",
    "is_provider_available",
]
