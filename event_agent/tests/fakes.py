"""测试共用的假 Provider / 配额 / 工具处理函数。"""

from datetime import datetime, timezone

from event_agent.domain.models import DoneChunk, TextChunk, ToolCallDeltaChunk, ToolCallStartChunk
from event_agent.domain.quota import QuotaStatus


class ScriptedProvider:
    """按轮次回放预先录好的增量；某一轮可以是异常。"""

    name = "openai"

    def __init__(self, *rounds):
        self._rounds = list(rounds)
        self.calls = []

    def create_streaming_chat(self, messages, tools, config):
        self.calls.append(list(messages))
        current = self._rounds.pop(0)
        if isinstance(current, Exception):
            raise current
        for chunk in current:
            yield chunk


class FakeQuota:
    def __init__(self, remaining=5, limit=5):
        self.remaining = remaining
        self.limit = limit
        self.increments = []

    def check_quota(self, user_id):
        if self.remaining <= 0:
            return QuotaStatus(
                allowed=False,
                remaining=0,
                limit=self.limit,
                retry_after=datetime(2030, 1, 2, tzinfo=timezone.utc),
            )
        return QuotaStatus(allowed=True, remaining=self.remaining, limit=self.limit)

    def increment_usage(self, user_id):
        self.increments.append(user_id)
        self.remaining -= 1


def event_handlers(log):
    def search_vendors(args):
        log.append(("searchVendors", args))
        return "Found 1 vendor", {"vendors": [{"id": "v1", "name": "Tasty Catering"}]}

    def create_event(args):
        log.append(("createEvent", args))
        return "Created event", {"eventId": "evt_1"}

    return {"searchVendors": search_vendors, "createEvent": create_event}


def search_round():
    return [
        TextChunk(content="Let me look "),
        TextChunk(content="that up."),
        ToolCallStartChunk(index=0, id="call_s", name="searchVendors", arguments='{"category":'),
        ToolCallDeltaChunk(index=0, arguments=' "catering"}'),
        DoneChunk(finish_reason="tool_calls"),
    ]


def create_round():
    return [
        TextChunk(content="I'll create it."),
        ToolCallStartChunk(index=0, id="call_c", name="createEvent", arguments=""),
        ToolCallDeltaChunk(index=0, arguments='{"title": "DevConf", "eventType": "conference", '),
        ToolCallDeltaChunk(index=0, arguments='"startDate": "2030-05-01", "expectedAttendees": 200}'),
        DoneChunk(finish_reason="tool_calls"),
    ]
