"""
Rememberly Backend — Usage Quota Enforcer
===========================================

What:  Pure decision function: may the guest perform this create?
How:   check_quota(counters, operation) returns Allowed or Denied(reason).
       No I/O, no side effects, no clock.
Who:   Called by GuestStore before every create, which honors the result by
       calling raise_for_denied() before mutating anything.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from rememberly.exceptions import QuotaExceededError
from rememberly.schemas.records import UsageCounters


class QuotaOperation(str, Enum):
    CREATE_NOTE = "create_note"
    CREATE_REMINDER = "create_reminder"


class QuotaDecision(BaseModel):
    allowed: bool
    resource: str
    limit: int
    reason: Optional[str] = None

    @classmethod
    def allow(cls, resource: str, limit: int) -> "QuotaDecision":
        return cls(allowed=True, resource=resource, limit=limit)

    @classmethod
    def deny(cls, resource: str, limit: int, reason: str) -> "QuotaDecision":
        return cls(allowed=False, resource=resource, limit=limit, reason=reason)

    def raise_for_denied(self) -> None:
        if not self.allowed:
            raise QuotaExceededError(
                resource=self.resource,
                limit=self.limit,
                context={"reason": self.reason},
            )


def check_quota(counters: UsageCounters, operation: QuotaOperation) -> QuotaDecision:
    """
    Decide whether one more record of the operation's kind fits the quota.

    A create is allowed only while the current count is strictly below the
    limit, so `count <= limit` holds after every successful create.
    """
    if operation == QuotaOperation.CREATE_NOTE:
        used, limit, resource = counters.notes, counters.max_notes, "note"
    elif operation == QuotaOperation.CREATE_REMINDER:
        used, limit, resource = counters.reminders, counters.max_reminders, "reminder"
    else:
        raise ValueError(f"Unknown quota operation: {operation!r}")

    if used >= limit:
        return QuotaDecision.deny(
            resource,
            limit,
            reason=f"{used} of {limit} guest {resource}s used",
        )
    return QuotaDecision.allow(resource, limit)
