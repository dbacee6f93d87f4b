"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或编排层做统一捕获与用户提示。

分类：
- ProviderError 及其子类：LLM Provider 调用失败（认证、限流、网络、重试耗尽）。
- QuotaExceeded：每日配额用尽，本轮对话不会开始。
- MalformedToolArguments：工具参数在流结束时仍无法解析，直接丢弃。
- UnknownToolCall / AlreadyResolved：确认执行时传入了过期或已消费的标识。
- ConversationBusy：同一会话已有正在进行的写入方。
"""

from datetime import datetime
from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、tool_call_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ProviderError(BusinessError):
    """LLM Provider 调用相关错误的基类。"""


class NetworkError(ProviderError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(ProviderError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class AuthenticationFailed(ProviderError):
    """401/403：配置错误，不重试。"""

    def __init__(self, message: str = "AI service authentication failed. Please check configuration.", **extra):
        super().__init__(code="AUTHENTICATION_FAILED", message=message, http_status=401, **extra)


class RateLimited(ProviderError):
    """Provider 侧 429 限流，由适配器按陡峭退避重试。"""


class TransientProviderError(ProviderError):
    """普通瞬时错误（网络 / 5xx / 流中断）。"""


class RetriesExhausted(ProviderError):
    """重试次数用尽。last_error 保存最后一次失败。"""

    def __init__(self, message: str, last_error: Optional[BusinessError] = None, **extra):
        super().__init__(code="RETRIES_EXHAUSTED", message=message, http_status=502, **extra)
        self.last_error = last_error


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ProviderUnavailable(ValidationError):
    """请求的 Provider 未配置凭据或尚不支持。"""


class QuotaExceeded(BusinessError):
    """每日配额用尽。retry_after 为下次重置时间（UTC）。"""

    def __init__(self, message: str, retry_after: Optional[datetime] = None, limit: int = 0, **extra):
        super().__init__(code="QUOTA_EXCEEDED", message=message, http_status=429, **extra)
        self.retry_after = retry_after
        self.limit = limit


class MalformedToolArguments(BusinessError):
    """流结束时工具参数仍不是合法 JSON 对象。"""

    def __init__(self, message: str, index: int, raw_arguments: str = "", **extra):
        super().__init__(code="MALFORMED_TOOL_ARGUMENTS", message=message, http_status=422, **extra)
        self.index = index
        self.raw_arguments = raw_arguments


class UnknownToolCall(BusinessError):
    def __init__(self, tool_call_id: str, **extra):
        super().__init__(
            code="UNKNOWN_TOOL_CALL",
            message=f"No pending confirmation for tool call {tool_call_id!r}",
            http_status=404,
            **extra,
        )
        self.tool_call_id = tool_call_id


class AlreadyResolved(BusinessError):
    def __init__(self, tool_call_id: str, **extra):
        super().__init__(
            code="ALREADY_RESOLVED",
            message=f"Tool call {tool_call_id!r} has already been resolved",
            http_status=409,
            **extra,
        )
        self.tool_call_id = tool_call_id


class ConversationBusy(BusinessError):
    def __init__(self, conversation_id: str, **extra):
        super().__init__(
            code="CONVERSATION_BUSY",
            message=f"Conversation {conversation_id!r} already has a turn in progress",
            http_status=409,
            **extra,
        )
        self.conversation_id = conversation_id
