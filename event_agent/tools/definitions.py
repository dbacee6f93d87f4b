"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在编排器中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional


ToolCategory = Literal["events", "vendors", "sponsors", "profile"]


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供 LLM 调用的工具定义。

    requires_confirmation 为 True 的工具有外部副作用（例如创建记录），
    编排器在执行前必须等待用户显式确认。
    """

    name: str
    description: str
    params: Dict[str, ToolParam]
    requires_confirmation: bool = False
    category: ToolCategory = "events"

    def json_schema(self) -> Dict[str, Any]:
        """转换为 JSON Schema 形式的参数描述（各厂商通用）。"""

        properties: Dict[str, Any] = {}
        required = []
        for name, param in self.params.items():
            schema = param.schema or {"type": "string"}
            if param.description:
                schema = {**schema, "description": param.description}
            properties[name] = schema
            if param.required:
                required.append(name)
        return {"type": "object", "properties": properties, "required": required}


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    raw_arguments 保存流式参数片段按到达顺序拼接后的原始字符串。
    """

    id: str
    name: str
    arguments: Dict[str, Any]
    raw_arguments: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ToolCall":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            arguments=dict(data.get("arguments") or {}),
        )


@dataclass
class ToolResult:
    """工具执行结果。每个被执行的 ToolCall 恰好产生一次。"""

    tool_call_id: str
    name: str
    success: bool
    summary: str
    data: Optional[Any] = None
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "toolCallId": self.tool_call_id,
            "name": self.name,
            "success": self.success,
            "summary": self.summary,
        }
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ToolResult":
        return cls(
            tool_call_id=str(data.get("toolCallId") or data.get("id") or ""),
            name=str(data.get("name") or ""),
            success=bool(data.get("success")),
            summary=str(data.get("summary") or ""),
            data=data.get("data"),
            error=data.get("error"),
        )
