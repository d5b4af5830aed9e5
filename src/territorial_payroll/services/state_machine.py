"""Pay period lifecycle rules.

    draft -> calculated -> approved -> committed
                ^    |
                +----+  (re-run payroll)

There is no way back from approved; committed is final. Tax sync has its
own small lifecycle on the committed period:

    pending -> syncing -> synced | failed
"""

from __future__ import annotations

from enum import Enum

from territorial_payroll.errors import ValidationError


class PayPeriodStatus(str, Enum):
    DRAFT = "draft"
    CALCULATED = "calculated"
    APPROVED = "approved"
    COMMITTED = "committed"


class TaxSyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class InvalidTransitionError(ValidationError):
    """A pay period was asked to move to a status it cannot reach."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = str(getattr(from_status, "value", from_status))
        self.to_status = str(getattr(to_status, "value", to_status))
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Pay period cannot move from {self.from_status} to {self.to_status}{detail}"
        )


class PeriodLockedError(ValidationError):
    """The period's status no longer allows the requested change."""

    def __init__(self, status: str, action: str):
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} while pay period is {status}")


_S = PayPeriodStatus


class PayPeriodStateMachine:
    """Which statuses allow which operations. Stateless; all classmethods."""

    TRANSITIONS: frozenset[tuple[PayPeriodStatus, PayPeriodStatus]] = frozenset(
        {
            (_S.DRAFT, _S.CALCULATED),
            (_S.CALCULATED, _S.CALCULATED),
            (_S.CALCULATED, _S.APPROVED),
            (_S.APPROVED, _S.COMMITTED),
        }
    )

    # Running payroll and editing items share the same window
    EDITABLE = frozenset({_S.DRAFT, _S.CALCULATED})
    DELETABLE = frozenset({_S.DRAFT, _S.CALCULATED, _S.APPROVED})
    SYNC_RETRIABLE = frozenset({TaxSyncStatus.PENDING, TaxSyncStatus.FAILED})

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        try:
            return (_S(from_status), _S(to_status)) in cls.TRANSITIONS
        except ValueError:
            return False

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def next_statuses(cls, status: str) -> list[PayPeriodStatus]:
        return sorted(
            (to for frm, to in cls.TRANSITIONS if frm == status),
            key=list(_S).index,
        )

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return status in cls.EDITABLE

    @classmethod
    def can_edit(cls, status: str) -> bool:
        return status in cls.EDITABLE

    @classmethod
    def require_editable(cls, status: str, action: str) -> None:
        if not cls.can_edit(status):
            raise PeriodLockedError(status, action)

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE

    @classmethod
    def can_retry_sync(cls, status: str, sync_status: str) -> bool:
        """Committed periods whose sync has not succeeded and is not in flight."""
        return status == _S.COMMITTED and sync_status in cls.SYNC_RETRIABLE
