"""
Alert Deduplicator

Ensures each budget threshold crossing produces at most one notification
within a rolling window (24 hours by default).

DESIGN DECISION: Only the highest threshold reached is ever alerted.
A budget jumping from 70% to 115% alerts once, for 110, and lower
thresholds are not backfilled. Records older than the window are pruned
on every access, so a budget sitting at 85% for two days alerts for 80
once per window.

The sent-alert list is bookkeeping, not business truth: if the stored
JSON cannot be read it is discarded and treated as empty.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Optional, Union

import structlog
from pydantic import TypeAdapter, ValidationError

from fintrack_core.clock import Clock, SystemClock
from fintrack_core.config import get_settings
from fintrack_core.exceptions import ConfigurationError
from fintrack_core.models.budget import BudgetEvaluation
from fintrack_core.models.cache import SentAlert
from fintrack_core.services.storage.interface import KeyValueStorage


logger = structlog.get_logger(__name__)

_sent_alerts_adapter = TypeAdapter(list[SentAlert])


class AlertDeduplicator:
    """Remembers which thresholds were alerted recently, per budget."""

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Optional[Clock] = None,
        thresholds: Optional[Iterable[int]] = None,
        window: Optional[timedelta] = None,
        storage_key: Optional[str] = None,
    ):
        settings = get_settings().alerts
        self._storage = storage
        self._clock = clock or SystemClock()
        self._thresholds = tuple(sorted(thresholds or settings.thresholds_list))
        self._window = window or timedelta(hours=settings.window_hours)
        self._storage_key = storage_key or settings.storage_key

    @property
    def thresholds(self) -> tuple[int, ...]:
        return self._thresholds

    def get_reached_thresholds(self, percentage: Union[Decimal, float]) -> list[int]:
        return [t for t in self._thresholds if percentage >= t]

    def get_highest_reached_threshold(self, percentage: Union[Decimal, float]) -> Optional[int]:
        """Highest threshold at or below percentage, or None below the first."""
        reached = self.get_reached_thresholds(percentage)
        return reached[-1] if reached else None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _decode(self, raw: str) -> list[SentAlert]:
        try:
            return _sent_alerts_adapter.validate_json(raw)
        except ValidationError as e:
            raise ConfigurationError(
                self._storage_key,
                f"Malformed sent-alert list: {e.error_count()} errors",
            )

    async def _load(self) -> list[SentAlert]:
        """Sent alerts still inside the window; expired ones are pruned from storage."""
        raw = await self._storage.get_item(self._storage_key)
        if raw is None:
            return []

        try:
            alerts = self._decode(raw)
        except ConfigurationError as e:
            logger.warning("sent_alerts_discarded", storage_key=e.storage_key, error=str(e))
            await self._storage.remove_item(self._storage_key)
            return []

        recent = [a for a in alerts if self._is_recent(a)]
        if len(recent) != len(alerts):
            await self._save(recent)
        return recent

    async def _save(self, alerts: list[SentAlert]) -> None:
        await self._storage.set_item(
            self._storage_key,
            _sent_alerts_adapter.dump_json(alerts).decode(),
        )

    def _is_recent(self, alert: SentAlert) -> bool:
        age = self._clock.timestamp() - alert.timestamp
        return age < self._window.total_seconds()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def has_alert_been_sent(self, budget_id: str, threshold: int) -> bool:
        alerts = await self._load()
        return any(a.budget_id == budget_id and a.threshold == threshold for a in alerts)

    async def record_alert(self, budget_id: str, threshold: int) -> None:
        alerts = await self._load()
        alerts.append(SentAlert(
            budget_id=budget_id,
            threshold=threshold,
            timestamp=self._clock.timestamp(),
        ))
        await self._save(alerts)
        logger.debug("alert_recorded", budget_id=budget_id, threshold=threshold)

    async def sent_alerts(self) -> list[SentAlert]:
        return await self._load()

    async def clear_budget_alerts(self, budget_id: str) -> None:
        """Forget every alert sent for one budget (after it was edited or deleted)."""
        alerts = await self._load()
        await self._save([a for a in alerts if a.budget_id != budget_id])

    async def clear_all_budget_alerts(self) -> None:
        await self._storage.remove_item(self._storage_key)

    async def should_alert(self, evaluation: BudgetEvaluation) -> Optional[int]:
        """
        Threshold to alert for, or None.

        Returns the highest threshold the evaluation has reached, unless
        that threshold was already alerted for this budget in the window.
        """
        threshold = self.get_highest_reached_threshold(evaluation.usage_percentage)
        if threshold is None:
            return None
        if await self.has_alert_been_sent(evaluation.budget.id, threshold):
            return None
        return threshold
