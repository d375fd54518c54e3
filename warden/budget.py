"""
Budget governor: a synchronous gate in front of every paid model call.

The governor never reserves or decrements budget. It reads the spend total
and the ceiling fresh on each check; the ledger is updated by the caller
after the call completes.

    governor = BudgetGovernor(config.get_budget_limits, ledger.total_all_time)
    governor.check_budget_or_throw()   # raises BudgetExceeded at/over max
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .identity import BudgetLimits

log = logging.getLogger("warden.budget")


class BudgetExceeded(RuntimeError):
    """Spend total has reached the configured ceiling."""

    def __init__(self, total: float, limit: float):
        self.total = float(total)
        self.limit = float(limit)
        super().__init__(f"Budget exceeded: ${self.total:.2f} spent of ${self.limit:.2f} limit")


@dataclass(frozen=True)
class BudgetStatus:
    total: float
    max: Optional[float]
    warning: Optional[float]

    @property
    def configured(self) -> bool:
        return self.max is not None

    @property
    def remaining(self) -> Optional[float]:
        if self.max is None:
            return None
        return max(0.0, self.max - self.total)

    @property
    def warning_reached(self) -> bool:
        return self.warning is not None and self.total >= self.warning

    @property
    def exceeded(self) -> bool:
        return self.max is not None and self.total >= self.max

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "max": self.max,
            "warning": self.warning,
            "remaining": self.remaining,
            "warning_reached": self.warning_reached,
            "exceeded": self.exceeded,
        }


class BudgetGovernor:
    def __init__(
        self,
        limits_source: Callable[[], Optional[BudgetLimits]],
        spend_source: Callable[[], float],
    ):
        self._limits_source = limits_source
        self._spend_source = spend_source

    def status(self) -> BudgetStatus:
        limits = self._limits_source()
        total = float(self._spend_source() or 0.0)
        if limits is None:
            return BudgetStatus(total=total, max=None, warning=None)
        status = BudgetStatus(total=total, max=float(limits.max), warning=float(limits.warning))
        if status.warning_reached and not status.exceeded:
            log.warning("Budget warning: $%.2f spent of $%.2f limit", status.total, status.max)
        return status

    def check_budget_or_throw(self) -> BudgetStatus:
        """Fail open when no limits are configured; fail closed at or over max."""
        status = self.status()
        if status.exceeded:
            log.error("Budget exceeded: $%.2f spent of $%.2f limit", status.total, status.max)
            raise BudgetExceeded(status.total, status.max)
        return status

    def call_with_budget(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        self.check_budget_or_throw()
        return fn(*args, **kwargs)
