"""每日配额协议。

编排器只把配额当作前置检查：调用 Provider 前 check_quota，
第一次 Provider 调用成功后 increment_usage，不直接修改计数。
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass
class QuotaStatus:
    allowed: bool
    remaining: int
    limit: int
    retry_after: Optional[datetime] = None
    reason: Optional[str] = None


class QuotaService(Protocol):
    def check_quota(self, user_id: str) -> QuotaStatus:
        ...

    def increment_usage(self, user_id: str) -> None:
        ...
