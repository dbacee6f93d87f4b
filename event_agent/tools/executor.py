"""工具执行器。

每个工具名对应一个处理函数（由外部协作方提供，例如事件/供应商的记录读写）。
处理函数接收参数字典，返回 ToolResult 或 (summary, data) 形式的结果；
抛出的异常被转换为 success=False 的 ToolResult，不会中断当前轮次。
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from event_agent.infrastructure.logging.logger import logger
from .definitions import ToolCall, ToolDef, ToolResult


HandlerResult = Union[ToolResult, Tuple[str, Any]]
ToolHandler = Callable[[Dict[str, Any]], HandlerResult]


class ToolExecutor:
    def __init__(self, handlers: Dict[str, ToolHandler], tool_defs: List[ToolDef]):
        self._handlers = handlers
        self._defs = {tool.name: tool for tool in tool_defs}

    @property
    def tool_defs(self) -> List[ToolDef]:
        return list(self._defs.values())

    def get_tool(self, name: str) -> Optional[ToolDef]:
        return self._defs.get(name)

    def requires_confirmation(self, name: str) -> bool:
        """目录中没有定义的工具：有处理函数时按需要确认处理，否则直接执行（得到失败结果）。"""

        tool = self._defs.get(name)
        if tool is None:
            return name in self._handlers
        return tool.requires_confirmation

    def execute(self, call: ToolCall) -> ToolResult:
        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                success=False,
                error=f"Unknown tool: {call.name}",
                summary=f"Failed to execute unknown tool: {call.name}",
            )
        try:
            outcome = handler(call.arguments)
        except Exception as exc:
            logger.warning(
                "Tool handler raised",
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "error": str(exc)}},
            )
            return ToolResult(
                tool_call_id=call.id,
                name=call.name,
                success=False,
                error=str(exc) or exc.__class__.__name__,
                summary=f"Error executing {call.name}: {exc}",
            )
        if isinstance(outcome, ToolResult):
            outcome.tool_call_id = call.id
            outcome.name = call.name
            return outcome
        summary, data = outcome
        return ToolResult(tool_call_id=call.id, name=call.name, success=True, summary=summary, data=data)
