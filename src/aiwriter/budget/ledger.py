"""Rolling daily token allowance.

The ledger is pure accounting over a KeyValueStore: it never raises on
overspend, callers gate requests with check_budget before dispatch. New
requests are gated on daily_limit; the bonus is headroom that only a retry
inside an already-admitted generation may draw on. The
stored day key is compared with the clock on every access and usage is
reset lazily when the day has changed.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import date, datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from aiwriter.config import BudgetConfig
from aiwriter.models import BudgetState
from aiwriter.utils.storage import KeyValueStore

logger = logging.getLogger(__name__)

TOKENS_USED_KEY = "tokens_used"
LAST_USAGE_DATE_KEY = "last_usage_date"

# Rough chars-per-token ratio for uploaded content
CHARS_PER_TOKEN = 4


class Clock(Protocol):
    def today(self) -> date: ...


class SystemClock:
    """Calendar day in a fixed zone, rolling over at day_boundary_hour."""

    def __init__(self, timezone: str = "UTC", day_boundary_hour: int = 0) -> None:
        self.zone = ZoneInfo(timezone)
        self.day_boundary_hour = day_boundary_hour

    def today(self) -> date:
        now = datetime.now(self.zone) - timedelta(hours=self.day_boundary_hour)
        return now.date()


class BudgetLedger:
    """Daily token ledger shared by every generation in the process."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        daily_limit: int = 5000,
        bonus: int = 500,
        estimated_cost: int = 2038,
    ) -> None:
        self._store = store
        self._clock = clock
        self.daily_limit = daily_limit
        self.bonus = bonus
        self.estimated_cost = estimated_cost
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls, store: KeyValueStore, config: BudgetConfig, clock: Clock | None = None
    ) -> BudgetLedger:
        return cls(
            store,
            clock or SystemClock(config.timezone, config.day_boundary_hour),
            daily_limit=config.daily_limit,
            bonus=config.bonus,
            estimated_cost=config.estimated_cost,
        )

    @property
    def effective_limit(self) -> int:
        return self.daily_limit + self.bonus

    def _used(self) -> int:
        raw = self._store.get(TOKENS_USED_KEY)
        try:
            return max(0, int(raw)) if raw is not None else 0
        except ValueError:
            return 0

    def _reset_if_stale(self) -> date:
        today = self._clock.today()
        key = today.isoformat()
        if self._store.get(LAST_USAGE_DATE_KEY) != key:
            self._store.put(TOKENS_USED_KEY, "0")
            self._store.put(LAST_USAGE_DATE_KEY, key)
            logger.info("budget_day_reset", extra={"date": key})
        return today

    def estimate_cost(self, prompt_chars: int = 0) -> int:
        """Conservative pre-flight cost: configured base plus uploaded-content tokens."""
        return self.estimated_cost + math.ceil(prompt_chars / CHARS_PER_TOKEN)

    def check_budget(self, estimated_cost: int, in_flight: bool = False) -> bool:
        """Whether estimated_cost fits today's allowance.

        New requests must fit daily_limit. A call made on behalf of a
        generation already under way (its retry) may also use the bonus.
        """
        limit = self.effective_limit if in_flight else self.daily_limit
        with self._lock:
            self._reset_if_stale()
            return self._used() + estimated_cost <= limit

    def consume(self, actual_cost: int) -> None:
        with self._lock:
            self._reset_if_stale()
            used = self._used() + max(0, actual_cost)
            self._store.put(TOKENS_USED_KEY, str(used))
        logger.info(
            "budget_consumed",
            extra={"tokens": actual_cost, "tokens_used_today": used},
        )

    def remaining(self) -> int:
        with self._lock:
            self._reset_if_stale()
            return max(0, self.daily_limit - self._used())

    def snapshot(self) -> BudgetState:
        with self._lock:
            today = self._reset_if_stale()
            return BudgetState(
                date=today,
                tokens_used_today=self._used(),
                daily_limit=self.daily_limit,
                bonus=self.bonus,
            )
