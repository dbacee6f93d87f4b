"""Anthropic Provider 适配器（Messages API）。

与 OpenAI 兼容接口的主要差异：
- system 提示单独放在请求体的 system 字段。
- assistant 的工具调用是 tool_use 内容块，input 为对象而非 JSON 字符串。
- 工具结果作为 user 消息中的 tool_result 内容块回传，连续的结果合并到同一条 user 消息。
- 流式事件以 type 区分，流中的 error 事件视为瞬时错误。
"""

from typing import Any, Dict, List, Sequence

from event_agent.domain.exceptions import TransientProviderError
from event_agent.domain.models import (
    AssistantMessage,
    ChatMessage,
    ProviderCallConfig,
    StreamChunk,
    SystemMessage,
    ToolResultMessage,
)
from event_agent.providers.http_base import StreamingHttpProvider
from event_agent.providers.registry import ANTHROPIC_CONFIG
from event_agent.streaming.normalizer import normalize_anthropic_event
from event_agent.tools.definitions import ToolDef


ANTHROPIC_VERSION = "2023-06-01"
TOOL_CHOICES = {"auto": {"type": "auto"}, "required": {"type": "any"}, "none": {"type": "none"}}


class AnthropicClient(StreamingHttpProvider):
    name = "anthropic"
    default_base_url = ANTHROPIC_CONFIG.base_url

    def _endpoint(self) -> str:
        return f"{self._base_url}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        messages: Sequence[ChatMessage],
        tools: List[ToolDef],
        config: ProviderCallConfig,
    ) -> Dict[str, Any]:
        system_parts = [m.content for m in messages if isinstance(m, SystemMessage) and m.content]
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": self._convert_messages(messages),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": True,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if tools:
            payload["tools"] = [
                {"name": tool.name, "description": tool.description, "input_schema": tool.json_schema()}
                for tool in tools
            ]
            payload["tool_choice"] = TOOL_CHOICES.get(config.tool_choice, {"type": "auto"})
        return payload

    def _normalize(self, payload: Dict[str, Any]) -> List[StreamChunk]:
        return normalize_anthropic_event(payload)

    def _inspect_payload(self, payload: Dict[str, Any]) -> None:
        if payload.get("type") == "error":
            error = payload.get("error") or {}
            raise TransientProviderError(
                code=str(error.get("type") or "STREAM_ERROR"),
                message=str(error.get("message") or "anthropic stream error"),
                http_status=502,
                provider=self.name,
            )

    @staticmethod
    def _convert_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if isinstance(message, SystemMessage):
                continue
            if isinstance(message, ToolResultMessage):
                block = {"type": "tool_result", "tool_use_id": message.tool_call_id, "content": message.content}
                last = converted[-1] if converted else None
                if last and last["role"] == "user" and isinstance(last["content"], list):
                    last["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
                continue
            if isinstance(message, AssistantMessage) and message.tool_calls:
                blocks: List[Dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls:
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
                converted.append({"role": "assistant", "content": blocks})
                continue
            converted.append({"role": message.role, "content": message.content})
        return converted
