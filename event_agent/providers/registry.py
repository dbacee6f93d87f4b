"""Provider 与默认模型配置。

本模块集中保存每个 Provider 的基础 URL 与默认调用参数，
上层只关心 Provider 类型，具体用哪个底层模型由这里配置，便于后续升级或切换。"""

from dataclasses import dataclass
from typing import Literal, Mapping

from event_agent.domain.models import ProviderCallConfig


ProviderType = Literal["openai", "anthropic", "groq"]

# 凭据齐全时的默认选择顺序
PROVIDER_PRIORITY = ("openai", "anthropic", "groq")


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: ProviderType
    base_url: str
    default_call: ProviderCallConfig


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    default_call=ProviderCallConfig(model="gpt-4o-mini", temperature=0.7, max_tokens=1500, tool_choice="auto"),
)

ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    base_url="https://api.anthropic.com/v1",
    default_call=ProviderCallConfig(
        model="claude-3-haiku-20240307",
        temperature=0.7,
        max_tokens=1500,
        tool_choice="auto",
    ),
)

# Groq 提供 OpenAI 兼容的 chat/completions 接口
GROQ_CONFIG = ProviderConfig(
    name="groq",
    base_url="https://api.groq.com/openai/v1",
    default_call=ProviderCallConfig(model="mixtral-8x7b-32768", temperature=0.7, max_tokens=1500, tool_choice="auto"),
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "anthropic": ANTHROPIC_CONFIG,
    "groq": GROQ_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
