"""
Unit Tests for the Loyalty Service

Tests cover:
1. Earn flow and account creation
2. Tier multipliers and tier progression
3. Lazy expiry of point lots
4. Balance reconciliation against transactions
5. Typed failures, storage outages and all-or-nothing writes
6. Signup bonus for accounts created before signup
"""

import pytest

from loyalty.errors import (
    AccountNotFoundError,
    InvalidAmountError,
    InvalidMetadataError,
    StorageUnavailableError,
)
from loyalty.models import Account, TransactionSource, TransactionType
from loyalty.storage import InMemoryStorage, StorageError


USER_ID = "user-1001"


class RejectingStorage(InMemoryStorage):
    def __init__(self):
        super().__init__()
        self.reject_writes = False

    def put_many(self, records):
        if self.reject_writes:
            raise StorageError("write rejected")
        super().put_many(records)


class TestEarnFlow:
    """Tests for the earn flow."""

    def test_first_earn_creates_account(self, service):
        """Test that the first earn opens the account."""
        assert service.get_account(USER_ID) is None

        transaction = service.earn(USER_ID, 100, "signup", "Welcome bonus")

        # Verify transaction
        assert transaction.type == TransactionType.EARNED
        assert transaction.source == TransactionSource.SIGNUP
        assert transaction.amount == 100
        assert transaction.expiry_date is not None

        # Verify account
        account = service.get_account(USER_ID)
        assert account.total_points == 100
        assert account.available_points == 100
        assert account.lifetime_earned == 100
        assert account.current_tier == "bronze"
        assert len(account.expiring_lots) == 1

    def test_open_account_grants_signup_bonus_once(self, service):
        """Test that opening an account twice grants the bonus once."""
        first = service.open_account(USER_ID)
        second = service.open_account(USER_ID)

        assert first.available_points == 100
        assert second.available_points == 100
        assert service.list_transactions(USER_ID).total_count == 1

    def test_expiry_date_uses_configured_horizon(self, service, clock):
        transaction = service.earn(USER_ID, 10, "daily_login", "Daily login")

        assert (transaction.expiry_date - clock.now).days == 365

    def test_zero_amount_rejected(self, service):
        with pytest.raises(InvalidAmountError):
            service.earn(USER_ID, 0, "purchase", "Nothing")

        assert service.get_account(USER_ID) is None

    def test_negative_amount_rejected(self, service):
        with pytest.raises(InvalidAmountError):
            service.earn(USER_ID, -50, "review", "Negative")

    def test_amount_over_cap_rejected(self, make_service):
        service = make_service(max_points_per_transaction=1000)

        with pytest.raises(InvalidAmountError):
            service.earn(USER_ID, 1001, "purchase", "Too large", {"order_id": "o-1"})

    def test_redemption_source_cannot_earn(self, service):
        with pytest.raises(InvalidMetadataError):
            service.earn(USER_ID, 10, "redemption", "Sneaky")

    def test_unknown_source_rejected(self, service):
        with pytest.raises(InvalidMetadataError):
            service.earn(USER_ID, 10, "lottery", "Unknown")


class TestEarnMetadata:
    """Tests for typed earn payloads."""

    def test_purchase_metadata_sets_reference(self, service):
        transaction = service.earn(USER_ID, 40, "purchase", "Order 42", {"order_id": "42", "order_total": "40.00"})

        assert transaction.reference_id == "42"
        assert transaction.metadata.kind == "purchase"
        assert transaction.metadata.order_id == "42"

    def test_unexpected_keys_rejected(self, service):
        """Test that payloads cannot grow unknown keys."""
        with pytest.raises(InvalidMetadataError):
            service.earn(USER_ID, 40, "purchase", "Order 42", {"order_id": "42", "coupon": "X"})

    def test_signup_takes_no_metadata(self, service):
        with pytest.raises(InvalidMetadataError):
            service.earn(USER_ID, 100, "signup", "Welcome", {"order_id": "1"})

    def test_mismatched_kind_rejected(self, service):
        with pytest.raises(InvalidMetadataError):
            service.earn(USER_ID, 50, "review", "Review", {"kind": "purchase", "product_id": "p1"})


class TestTierMultiplier:
    """Tests for purchase multipliers and tier progression."""

    def test_multiplier_applies_to_purchases(self, service):
        """Test Silver members earn 1.2x on purchases, floored."""
        service.earn(USER_ID, 1000, "signup", "Seed")

        transaction = service.earn(USER_ID, 101, "purchase", "Order", {"order_id": "o-1"})

        # 101 * 1.2 = 121.2 → 121
        assert transaction.amount == 121
        assert service.get_account(USER_ID).total_points == 1121

    def test_multiplier_skips_other_sources(self, service):
        service.earn(USER_ID, 1000, "signup", "Seed")

        transaction = service.earn(USER_ID, 50, "review", "Review", {"product_id": "p-1"})

        assert transaction.amount == 50

    def test_multiplier_disabled(self, make_service):
        service = make_service(tier_bonus_enabled=False)
        service.earn(USER_ID, 5000, "signup", "Seed")

        transaction = service.earn(USER_ID, 100, "purchase", "Order", {"order_id": "o-1"})

        assert transaction.amount == 100

    def test_tier_progress_follows_earn(self, service):
        """Test the tier never decreases and tracks total points after an earn."""
        service.earn(USER_ID, 900, "signup", "Seed")
        before = service.tier_progress(USER_ID)

        service.earn(USER_ID, 200, "review", "Review", {"product_id": "p-1"})
        after = service.tier_progress(USER_ID)

        assert before.current.id == "bronze"
        assert after.current.id == "silver"
        assert after.next.id == "gold"
        assert service.get_account(USER_ID).next_tier_points == 5000

    def test_tier_progress_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            service.tier_progress("nobody")


class TestExpiry:
    """Tests for lazy expiry through the service."""

    def test_expiring_points_window(self, service, clock):
        """Test a lot shows as expiring near its date and is gone once swept."""
        service.earn(USER_ID, 100, "signup", "Welcome")

        clock.advance(days=340)
        assert service.expiring_points(USER_ID, 30) == 100

        clock.advance(days=60)
        assert service.expiring_points(USER_ID, 30) == 0

        account = service.get_account(USER_ID)
        assert account.available_points == 0
        assert account.expired_points == 100
        assert account.total_points == 100

    def test_sweep_records_expired_transaction(self, service, clock):
        service.earn(USER_ID, 100, "signup", "Welcome")
        clock.advance(days=366)

        history = service.list_transactions(USER_ID)

        expired = [t for t in history.transactions if t.type == TransactionType.EXPIRED]
        assert len(expired) == 1
        assert expired[0].amount == -100
        assert expired[0].metadata.lots_expired == 1

    def test_sweep_runs_before_earn(self, service, clock):
        """Test old lots are swept before a new earn is applied."""
        service.earn(USER_ID, 100, "signup", "Welcome")
        clock.advance(days=400)

        service.earn(USER_ID, 20, "daily_login", "Login")

        account = service.get_account(USER_ID)
        assert account.available_points == 20
        assert account.total_points == 120
        assert account.is_balanced()

    def test_negative_days_rejected(self, service):
        service.earn(USER_ID, 100, "signup", "Welcome")

        with pytest.raises(InvalidAmountError):
            service.expiring_points(USER_ID, -1)


class TestBalanceCalculation:
    """Tests for balance reconciliation."""

    def test_scenario_signup_purchase_redeem(self, service):
        """Test signup, a purchase into Silver, then a 500 point redemption."""
        service.earn(USER_ID, 100, "signup", "Welcome")
        account = service.get_account(USER_ID)
        assert account.available_points == 100
        assert account.current_tier == "bronze"

        service.earn(USER_ID, 1000, "purchase", "Order", {"order_id": "o-1"})
        account = service.get_account(USER_ID)
        assert account.total_points == 1100
        assert account.current_tier == "silver"

        service.redeem(USER_ID, "discount_5")
        account = service.get_account(USER_ID)
        assert account.available_points == 600
        assert account.used_points == 500
        assert account.total_points == 1100
        assert account.is_balanced()

    def test_transactions_reconcile_with_balance(self, service, clock):
        """Test that transaction amounts always sum to the available balance."""
        service.earn(USER_ID, 400, "signup", "Welcome")
        service.earn(USER_ID, 600, "purchase", "Order", {"order_id": "o-1"})
        service.redeem(USER_ID, "free_shipping")
        clock.advance(days=200)
        service.earn(USER_ID, 50, "review", "Review", {"product_id": "p-1"})
        clock.advance(days=200)

        history = service.list_transactions(USER_ID)

        assert sum(t.amount for t in history.transactions) == history.available_points
        assert service.get_account(USER_ID).is_balanced()

    def test_ledger_history_pagination(self, service):
        for i in range(5):
            service.earn(USER_ID, 10, "daily_login", f"Login {i}")

        history = service.list_transactions(USER_ID, limit=2, offset=1)

        assert history.total_count == 5
        assert len(history.transactions) == 2
        assert history.available_points == 50

    def test_account_round_trip(self, service):
        """Test serialising and reloading an account keeps its balances."""
        service.earn(USER_ID, 1200, "signup", "Welcome")
        account = service.get_account(USER_ID)

        reloaded = Account.model_validate_json(account.model_dump_json())

        assert reloaded.total_points == account.total_points
        assert reloaded.available_points == account.available_points
        assert reloaded.current_tier == account.current_tier
        assert reloaded.expiring_lots == account.expiring_lots


class TestStorageFailures:
    def test_store_outage_is_retryable(self, service):
        """Test an unavailable store surfaces as a retryable typed failure."""
        service.storage.available = False

        with pytest.raises(StorageUnavailableError) as exc_info:
            service.earn(USER_ID, 100, "signup", "Welcome")

        assert exc_info.value.retryable is True
        assert exc_info.value.kind == "storage_unavailable"

    def test_business_errors_not_retryable(self, service):
        with pytest.raises(InvalidAmountError) as exc_info:
            service.earn(USER_ID, 0, "signup", "Welcome")

        assert exc_info.value.retryable is False

    def test_failed_write_leaves_no_partial_records(self, make_service):
        """Test that a rejected write stores neither the transaction nor the balance."""
        storage = RejectingStorage()
        service = make_service(storage=storage)
        service.earn(USER_ID, 100, "signup", "Welcome")
        storage.reject_writes = True

        with pytest.raises(StorageUnavailableError):
            service.earn(USER_ID, 50, "daily_login", "Login")

        storage.reject_writes = False
        account = service.get_account(USER_ID)
        history = service.list_transactions(USER_ID)
        assert account.available_points == 100
        assert history.total_count == 1
        assert sum(t.amount for t in history.transactions) == account.available_points


class TestSignupBonus:
    """Tests for the signup bonus on accounts created before signup."""

    def test_open_after_earn_grants_missing_bonus(self, service):
        service.earn(USER_ID, 50, "daily_login", "Login")

        account = service.open_account(USER_ID)

        assert account.available_points == 150
        assert account.signup_bonus_granted
        sources = [t.source for t in service.list_transactions(USER_ID).transactions]
        assert sorted(s.value for s in sources) == ["daily_login", "signup"]

    def test_missing_bonus_granted_once(self, service):
        service.earn(USER_ID, 50, "daily_login", "Login")
        service.open_account(USER_ID)
        service.open_account(USER_ID)

        assert service.get_account(USER_ID).available_points == 150
        assert service.list_transactions(USER_ID).total_count == 2

    def test_earn_alone_does_not_grant_bonus(self, service):
        service.earn(USER_ID, 50, "daily_login", "Login")

        account = service.get_account(USER_ID)
        assert account.available_points == 50
        assert not account.signup_bonus_granted


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
