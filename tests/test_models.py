"""
Tests for FinTrack Core models

Test strategy:
1. Unit tests for model validators and helpers
2. Audit builders produce the event types and details we query on
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from fintrack_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from fintrack_core.models.budget import (
    BudgetDraft,
    BudgetFilters,
    BudgetRule,
    BudgetUpdate,
    LimitCheckResult,
    PeriodType,
)
from fintrack_core.models.cache import CacheEntry, CacheSyncEvent, Period, SyncEventType


class TestBudgetModels:
    """Tests for budget rule and draft models."""

    def test_rule_defaults(self, make_rule):
        """Test a new rule gets an id, is active and has no limit type by default."""
        rule = BudgetRule(
            category_id="food",
            amount=Decimal("500000"),
            period_type=PeriodType.MONTHLY,
            period_start=date(2025, 1, 1),
            period_end=date(2025, 1, 31),
        )
        assert rule.id
        assert rule.is_active
        assert rule.limit_type is None
        assert not rule.is_wallet_specific
        assert rule.id != make_rule().id

    def test_rule_rejects_reversed_period(self, make_rule):
        """Test that a period ending before it starts is rejected."""
        with pytest.raises(ValidationError):
            make_rule(period_start=date(2025, 2, 1), period_end=date(2025, 1, 1))

    def test_single_day_period_allowed(self, make_rule):
        rule = make_rule(period_start=date(2025, 1, 5), period_end=date(2025, 1, 5))
        assert rule.overlaps(date(2025, 1, 5), date(2025, 1, 5))

    def test_overlaps_is_inclusive(self, make_rule):
        """Test sharing a single boundary day counts as overlap."""
        rule = make_rule()
        assert rule.overlaps(date(2025, 1, 31), date(2025, 2, 28))
        assert rule.overlaps(date(2024, 12, 1), date(2025, 1, 1))
        assert not rule.overlaps(date(2025, 2, 1), date(2025, 2, 28))

    def test_draft_requires_positive_amount(self):
        """Test that zero and negative budget amounts are rejected."""
        for amount in ("0", "-1"):
            with pytest.raises(ValidationError):
                BudgetDraft(
                    category_id="food",
                    amount=Decimal(amount),
                    period_type=PeriodType.MONTHLY,
                    period_start=date(2025, 1, 1),
                    period_end=date(2025, 1, 31),
                )

    def test_update_changes_only_set_fields(self):
        """Test changes() omits fields the caller left out, even when None."""
        update = BudgetUpdate(amount=Decimal("10"), wallet_id=None)
        assert update.changes() == {"amount": Decimal("10"), "wallet_id": None}
        assert BudgetUpdate().changes() == {}


class TestBudgetFilters:
    """Tests for filter matching and cache parameters."""

    def test_to_params_drops_unset(self):
        filters = BudgetFilters(is_active=True, period_type=PeriodType.WEEKLY)
        assert filters.to_params() == {"is_active": True, "period_type": "weekly"}
        assert BudgetFilters().to_params() == {}

    def test_matches_fields(self, make_rule):
        rule = make_rule(wallet_id="w1")
        assert BudgetFilters().matches(rule)
        assert BudgetFilters(category_id="food", wallet_id="w1", is_active=True).matches(rule)
        assert not BudgetFilters(category_id="transport").matches(rule)
        assert not BudgetFilters(is_active=False).matches(rule)
        assert not BudgetFilters(period_type=PeriodType.YEARLY).matches(rule)

    def test_matches_year_and_month(self, make_rule):
        """Test year/month filters keep rules lying entirely within them."""
        january = make_rule()
        spanning = make_rule(period_start=date(2024, 12, 15), period_end=date(2025, 1, 14))

        assert BudgetFilters(year=2025).matches(january)
        assert BudgetFilters(year=2025, month=1).matches(january)
        assert not BudgetFilters(year=2025, month=2).matches(january)
        assert not BudgetFilters(year=2025).matches(spanning)


class TestBookkeepingModels:
    """Tests for cache entries, sync events and periods."""

    def test_cache_entry_expiry(self):
        """Test an entry expires only once its age exceeds the TTL."""
        entry = CacheEntry(data=[1], timestamp=1000.0, ttl=60)
        assert entry.age(1030.0) == 30.0
        assert not entry.is_expired(1060.0)
        assert entry.is_expired(1060.5)

    def test_cache_entry_requires_positive_ttl(self):
        with pytest.raises(ValidationError):
            CacheEntry(data=None, timestamp=0, ttl=0)

    def test_sync_event_payload_rules(self):
        """Test invalidate needs a pattern and set/refresh need a key."""
        with pytest.raises(ValidationError):
            CacheSyncEvent(type=SyncEventType.CACHE_INVALIDATE)
        with pytest.raises(ValidationError):
            CacheSyncEvent(type=SyncEventType.CACHE_SET)
        with pytest.raises(ValidationError):
            CacheSyncEvent.model_validate({"type": "CACHE_EXPLODE"})

        event = CacheSyncEvent.model_validate({"type": "CACHE_CLEAR"})
        assert event.type == SyncEventType.CACHE_CLEAR
        assert not event.is_regex

    def test_period_bounds(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            Period(start=start, end=datetime(2024, 12, 31, tzinfo=timezone.utc))
        assert Period(start=start, end=start).contains(start)

    def test_limit_result_warning_flag(self):
        assert LimitCheckResult(allowed=True, message="careful").is_warning
        assert not LimitCheckResult(allowed=False, message="no").is_warning
        assert not LimitCheckResult(allowed=True).is_warning


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            entity_type="budget",
            entity_id="b1",
            description="Budget deleted",
        )
        assert event.event_id is not None
        assert event.timestamp.tzinfo is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test AuditEvent conversion to log dict."""
        correlation_id = uuid4()
        event = AuditEventBuilder.budget_updated("b1", ["amount"], correlation_id)
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "budget_updated"
        assert log_dict["correlation_id"] == str(correlation_id)
        assert log_dict["details"] == {"changed_fields": ["amount"]}
        assert "Budget updated: amount" == log_dict["description"]

    def test_audit_builder_budget_created(self):
        event = AuditEventBuilder.budget_created("b1", "food", Decimal("1000000"))
        assert event.event_type == AuditEventType.BUDGET_CREATED
        assert event.entity_id == "b1"
        assert event.details["amount"] == "1000000"
        assert event.is_user_action

    def test_audit_builder_limit_rejected(self):
        """Test money amounts are stored as exact strings."""
        event = AuditEventBuilder.limit_rejected(
            "b1", Decimal("950000"), Decimal("1000000"), Decimal("100000.50")
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.details == {
            "spent_amount": "950000",
            "budget_amount": "1000000",
            "attempted_amount": "100000.50",
        }

    def test_audit_builder_dispatch_failed(self):
        event = AuditEventBuilder.alert_dispatch_failed("b1", 90, "push service down")
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "push service down"
        assert event.details == {"threshold": 90}

    def test_audit_builder_refresh_failed_truncates_key(self):
        event = AuditEventBuilder.cache_refresh_failed("k" * 300, "timeout")
        assert event.event_type == AuditEventType.CACHE_REFRESH_FAILED
        assert len(event.entity_id) == 200
