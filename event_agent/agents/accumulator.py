"""工具调用片段的按 index 累积。

流式响应里同一个工具调用的参数会被拆成多个片段，只有第一个片段带 id 与名称，
后续片段仅通过 index 关联。这里按 index 拼接参数字符串，在流结束时统一解析。
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Tuple

from event_agent.domain.exceptions import MalformedToolArguments
from event_agent.domain.models import ToolCallDeltaChunk, ToolCallStartChunk
from event_agent.infrastructure.logging.logger import logger
from event_agent.tools.definitions import ToolCall


@dataclass
class _PartialCall:
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    def __init__(self) -> None:
        self._partials: Dict[int, _PartialCall] = {}

    def __len__(self) -> int:
        return len(self._partials)

    def add_start(self, chunk: ToolCallStartChunk) -> None:
        partial = self._partials.setdefault(chunk.index, _PartialCall(index=chunk.index))
        partial.id = chunk.id or partial.id
        partial.name = chunk.name or partial.name
        partial.arguments += chunk.arguments or ""

    def add_delta(self, chunk: ToolCallDeltaChunk) -> None:
        # delta 先于 start 到达时先建占位，finalize 时缺 id/name 的调用会被丢弃
        partial = self._partials.setdefault(chunk.index, _PartialCall(index=chunk.index))
        partial.arguments += chunk.arguments

    def finalize(self) -> Tuple[List[ToolCall], List[MalformedToolArguments]]:
        """按 index 升序返回 (合法调用, 被丢弃的调用)。

        参数为空字符串视为空对象；无法解析为 JSON 对象、或缺少 id/name 的调用被丢弃，
        丢弃原因以 MalformedToolArguments 的形式返回并记录日志，不会抛出。
        """

        calls: List[ToolCall] = []
        malformed: List[MalformedToolArguments] = []
        for index in sorted(self._partials):
            partial = self._partials[index]
            try:
                calls.append(self._build(partial))
            except MalformedToolArguments as exc:
                logger.warning(
                    "Dropped malformed tool call",
                    extra={
                        "extra": {
                            "index": index,
                            "tool_call_id": partial.id,
                            "tool_name": partial.name,
                            "reason": exc.message,
                        }
                    },
                )
                malformed.append(exc)
        return calls, malformed

    @staticmethod
    def _build(partial: _PartialCall) -> ToolCall:
        if not partial.id or not partial.name:
            raise MalformedToolArguments(
                "Tool call fragment never received an id and name",
                index=partial.index,
                raw_arguments=partial.arguments,
            )
        raw = partial.arguments
        if not raw.strip():
            arguments: object = {}
        else:
            try:
                arguments = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise MalformedToolArguments(
                    f"Invalid JSON arguments for {partial.name}: {exc.msg}",
                    index=partial.index,
                    raw_arguments=raw,
                    tool_call_id=partial.id,
                ) from exc
        if not isinstance(arguments, dict):
            raise MalformedToolArguments(
                f"Arguments for {partial.name} must be a JSON object",
                index=partial.index,
                raw_arguments=raw,
                tool_call_id=partial.id,
            )
        return ToolCall(id=partial.id, name=partial.name, arguments=arguments, raw_arguments=raw)
