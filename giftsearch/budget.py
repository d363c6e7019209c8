"""Monthly spend tracking for the metered upstream."""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from .backends import KeyValueStore

logger = logging.getLogger(__name__)

Money = Decimal

BUDGET_KEY = "giftsearch:budget"


def _current_period() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


def to_money(value: str | float | int | Decimal) -> Money:
    # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion.
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class BudgetState:
    monthly_limit: Money
    spent: Money
    period: str


@dataclass(frozen=True)
class Reservation:
    """Cost held for one upstream call until it is kept or released."""

    period: str
    amount: Money


class BudgetGate:
    """Decides whether another chargeable upstream call fits in the budget.

    Exceeding the budget is a policy signal, not an error. ``spent`` only grows
    within a period; a new calendar month (or an explicit :meth:`reset`) zeroes
    it. With a ``store`` the period and spend survive restarts.
    """

    def __init__(
        self,
        monthly_limit: str | float | Decimal,
        cost_per_call: str | float | Decimal,
        spent: str | float | Decimal = 0,
        period_fn: Callable[[], str] = _current_period,
        store: Optional[KeyValueStore] = None,
        key: str = BUDGET_KEY,
    ) -> None:
        self.cost_per_call = to_money(cost_per_call)
        self._period_fn = period_fn
        self._state = BudgetState(
            monthly_limit=to_money(monthly_limit),
            spent=to_money(spent),
            period=period_fn(),
        )
        self._store = store
        self.key = key
        self._lock = threading.Lock()

    @property
    def spent(self) -> Money:
        with self._lock:
            self._rollover()
            return self._state.spent

    @property
    def monthly_limit(self) -> Money:
        return self._state.monthly_limit

    def _rollover(self) -> None:
        period = self._period_fn()
        if period != self._state.period:
            logger.info(
                "budget period rollover %s -> %s (spent %s of %s)",
                self._state.period,
                period,
                self._state.spent,
                self._state.monthly_limit,
            )
            self._state.period = period
            self._state.spent = Money(0)

    def _fits(self) -> bool:
        return self._state.spent + self.cost_per_call <= self._state.monthly_limit

    def can_spend(self) -> bool:
        with self._lock:
            self._rollover()
            return self._fits()

    def charge(self) -> None:
        """Add one call's cost. Callers check :meth:`can_spend` first."""

        with self._lock:
            self._rollover()
            self._state.spent += self.cost_per_call
            logger.debug("budget charged %s spent=%s", self.cost_per_call, self._state.spent)
        self.save()

    def reserve(self) -> Optional[Reservation]:
        """Atomically check and charge one call; ``None`` when it does not fit.

        The cost counts as spent immediately so concurrent callers cannot pass
        the same check. Hand the reservation to :meth:`release` if the call
        turns out not to be billable.
        """

        with self._lock:
            self._rollover()
            if not self._fits():
                return None
            self._state.spent += self.cost_per_call
            reservation = Reservation(period=self._state.period, amount=self.cost_per_call)
        self.save()
        return reservation

    def try_charge(self) -> bool:
        """Atomic check-and-charge; returns False without charging if over budget."""

        return self.reserve() is not None

    def release(self, reservation: Reservation) -> None:
        """Refund a reservation, unless its period has already rolled over."""

        with self._lock:
            self._rollover()
            if reservation.period != self._state.period:
                return
            self._state.spent = max(self._state.spent - reservation.amount, Money(0))
            logger.debug("budget released %s spent=%s", reservation.amount, self._state.spent)
        self.save()

    def reset(self) -> None:
        with self._lock:
            logger.info("budget reset (spent %s)", self._state.spent)
            self._state.spent = Money(0)
            self._state.period = self._period_fn()
        self.save()

    def remaining(self) -> Money:
        with self._lock:
            self._rollover()
            return max(self._state.monthly_limit - self._state.spent, Money(0))

    def load(self) -> bool:
        """Restore spend for the current period; stale or corrupt data is ignored."""

        if self._store is None:
            return False
        raw = self._store.load(self.key)
        if not raw:
            return False
        try:
            payload = json.loads(raw)
            period = str(payload["period"])
            spent = to_money(payload["spent"])
        except (ValueError, TypeError, KeyError, InvalidOperation) as exc:
            logger.warning("Ignoring corrupt budget data under %s: %s", self.key, exc)
            return False

        with self._lock:
            self._rollover()
            if period != self._state.period:
                logger.info("Stored budget for %s is from a past period; starting fresh", period)
                return False
            self._state.spent = spent
        logger.info("Restored budget spend %s for %s", spent, period)
        return True

    def save(self) -> None:
        if self._store is None:
            return
        with self._lock:
            payload = {"period": self._state.period, "spent": str(self._state.spent)}
        self._store.save(self.key, json.dumps(payload).encode("utf-8"))

    def snapshot(self) -> dict:
        with self._lock:
            self._rollover()
            return {
                "period": self._state.period,
                "monthly_limit": str(self._state.monthly_limit),
                "spent": str(self._state.spent),
                "cost_per_call": str(self.cost_per_call),
                "can_spend": self._fits(),
            }
