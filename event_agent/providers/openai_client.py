"""OpenAI Provider 适配器（Groq 复用同一套兼容接口）。

- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本模块负责把统一的消息联合类型 / ToolDef 转换为 chat/completions 请求体：
tool 角色消息回显 tool_call_id，assistant 消息回显 tool_calls，
工具定义转为 function-calling schema。
"""

import json
from typing import Any, Dict, List, Sequence

from event_agent.domain.models import (
    AssistantMessage,
    ChatMessage,
    ProviderCallConfig,
    StreamChunk,
    ToolResultMessage,
)
from event_agent.providers.http_base import StreamingHttpProvider
from event_agent.providers.registry import GROQ_CONFIG, OPENAI_CONFIG
from event_agent.streaming.normalizer import normalize_openai_chunk
from event_agent.tools.definitions import ToolDef


class OpenAIClient(StreamingHttpProvider):
    """OpenAI 提供方客户端实现。"""

    name = "openai"
    default_base_url = OPENAI_CONFIG.base_url

    def _endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        messages: Sequence[ChatMessage],
        tools: List[ToolDef],
        config: ProviderCallConfig,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": [self._message_to_payload(m) for m in messages],
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "stream": True,
        }
        # 工具列表为空时不发送 tools / tool_choice
        if tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in tools]
            payload["tool_choice"] = config.tool_choice
        return payload

    def _normalize(self, payload: Dict[str, Any]) -> List[StreamChunk]:
        return normalize_openai_chunk(payload)

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        if isinstance(message, ToolResultMessage):
            return {"role": "tool", "content": message.content, "tool_call_id": message.tool_call_id}
        if isinstance(message, AssistantMessage) and message.tool_calls:
            return {
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": call.raw_arguments or json.dumps(call.arguments, ensure_ascii=False),
                        },
                    }
                    for call in message.tool_calls
                ],
            }
        return {"role": message.role, "content": message.content}

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 function tool 描述。"""

        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.json_schema(),
            },
        }


class GroqClient(OpenAIClient):
    """Groq 的 OpenAI 兼容接口，只有名称与基础 URL 不同。"""

    name = "groq"
    default_base_url = GROQ_CONFIG.base_url
