import copy
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Iterator, Optional, Protocol
from uuid import UUID

from .models import Account, Redemption, Referral, ReferralCode, RewardItem, Transaction


class StorageError(Exception):
    """Raised by a store when it cannot serve a read or write."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[dict[str, Any]]: ...

    def put(self, key: str, value: dict[str, Any]) -> None: ...

    def list_by_prefix(self, prefix: str) -> list[dict[str, Any]]: ...

    def put_many(self, records: dict[str, dict[str, Any]]) -> None: ...


def _seed_rewards() -> list[RewardItem]:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [
        RewardItem(
            id="discount_5", name="$5 Off Purchase",
            description="Get $5 off your next purchase of $25 or more",
            points_cost=500, category="discount", type="fixed_discount",
            value=Decimal("5"), currency="USD", validity_days=30, minimum_purchase=Decimal("25"),
            terms=["Valid for 30 days", "Minimum purchase $25", "Cannot be combined with other offers"],
            created_at=created,
        ),
        RewardItem(
            id="discount_10_percent", name="10% Off Purchase",
            description="Get 10% off your entire purchase",
            points_cost=750, category="discount", type="percentage_discount",
            value=Decimal("10"), validity_days=30, minimum_purchase=Decimal("50"),
            terms=["Valid for 30 days", "Minimum purchase $50", "Maximum discount $20"],
            created_at=created,
        ),
        RewardItem(
            id="free_shipping", name="Free Shipping",
            description="Free shipping on your next order",
            points_cost=300, category="service", type="free_shipping",
            validity_days=60, terms=["Valid for 60 days", "No minimum purchase required"],
            created_at=created,
        ),
        RewardItem(
            id="gift_card_25", name="$25 Gift Card",
            description="Digital gift card worth $25",
            points_cost=2500, category="digital", type="gift_card",
            value=Decimal("25"), currency="USD",
            is_limited=True, total_quantity=100, remaining_quantity=85, validity_days=365,
            terms=["Valid for 1 year", "Non-transferable", "Cannot be exchanged for cash"],
            created_at=created,
        ),
    ]


DEFAULT_REWARDS = tuple(_seed_rewards())


class InMemoryStorage:
    """Process-local store. Values are copied in and out like a remote store would."""

    def __init__(self, seed_catalog: bool = True):
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = Lock()
        self.available = True
        if seed_catalog:
            for reward in DEFAULT_REWARDS:
                self.put(f"reward:{reward.id}", reward.model_dump(mode="json"))

    def _check(self) -> None:
        if not self.available:
            raise StorageError("in-memory store marked unavailable")

    def get(self, key: str) -> Optional[dict[str, Any]]:
        self._check()
        with self._lock:
            value = self._records.get(key)
            return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        self._check()
        with self._lock:
            self._records[key] = copy.deepcopy(value)

    def put_many(self, records: dict[str, dict[str, Any]]) -> None:
        self._check()
        with self._lock:
            self._records.update(copy.deepcopy(records))

    def list_by_prefix(self, prefix: str) -> list[dict[str, Any]]:
        self._check()
        with self._lock:
            return [copy.deepcopy(v) for k, v in self._records.items() if k.startswith(prefix)]


class WriteBuffer:
    """Holds writes until ``flush`` hands them to the store in one ``put_many`` call.

    Reads go straight to the underlying store.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.pending: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> Optional[dict[str, Any]]:
        if key in self.pending:
            return copy.deepcopy(self.pending[key])
        return self.store.get(key)

    def put(self, key: str, value: dict[str, Any]) -> None:
        self.pending[key] = copy.deepcopy(value)

    def put_many(self, records: dict[str, dict[str, Any]]) -> None:
        self.pending.update(copy.deepcopy(records))

    def list_by_prefix(self, prefix: str) -> list[dict[str, Any]]:
        return self.store.list_by_prefix(prefix)

    def flush(self) -> None:
        if self.pending:
            self.store.put_many(self.pending)
        self.pending = {}


class LoyaltyRepository:
    """Typed record access over a ``KeyValueStore``; owns the key layout."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @contextmanager
    def batch(self) -> Iterator["LoyaltyRepository"]:
        """Write every record put through the yielded repository together, or none of them."""
        buffer = WriteBuffer(self.store)
        yield LoyaltyRepository(buffer)
        buffer.flush()

    def _load(self, model, key: str):
        data = self.store.get(key)
        return model.model_validate(data) if data is not None else None

    # Accounts

    def get_account(self, user_id: str) -> Optional[Account]:
        return self._load(Account, f"account:{user_id}")

    def put_account(self, account: Account) -> None:
        self.store.put(f"account:{account.user_id}", account.model_dump(mode="json"))

    # Transactions

    def add_transaction(self, transaction: Transaction) -> None:
        key = f"transaction:{transaction.user_id}:{transaction.id}"
        self.store.put(key, transaction.model_dump(mode="json"))

    def list_transactions(self, user_id: str) -> list[Transaction]:
        records = self.store.list_by_prefix(f"transaction:{user_id}:")
        return [Transaction.model_validate(r) for r in records]

    # Rewards

    def get_reward(self, reward_id: str) -> Optional[RewardItem]:
        return self._load(RewardItem, f"reward:{reward_id}")

    def put_reward(self, reward: RewardItem) -> None:
        self.store.put(f"reward:{reward.id}", reward.model_dump(mode="json"))

    def list_rewards(self) -> list[RewardItem]:
        return [RewardItem.model_validate(r) for r in self.store.list_by_prefix("reward:")]

    # Redemptions

    def get_redemption(self, redemption_id: UUID) -> Optional[Redemption]:
        return self._load(Redemption, f"redemption:{redemption_id}")

    def put_redemption(self, redemption: Redemption) -> None:
        self.store.put(f"redemption:{redemption.id}", redemption.model_dump(mode="json"))
        self.store.put(f"redemption-code:{redemption.redemption_code}", {"redemption_id": str(redemption.id)})

    def redemption_code_exists(self, code: str) -> bool:
        return self.store.get(f"redemption-code:{code}") is not None

    def list_redemptions(self, user_id: str) -> list[Redemption]:
        records = self.store.list_by_prefix("redemption:")
        return [Redemption.model_validate(r) for r in records if r.get("user_id") == user_id]

    # Referral codes

    def get_referral_code(self, code: str) -> Optional[ReferralCode]:
        return self._load(ReferralCode, f"referral-code:{code}")

    def get_referral_code_for_user(self, user_id: str) -> Optional[ReferralCode]:
        owner = self.store.get(f"referral-code-owner:{user_id}")
        return self.get_referral_code(owner["code"]) if owner else None

    def put_referral_code(self, referral_code: ReferralCode) -> None:
        self.store.put(f"referral-code:{referral_code.code}", referral_code.model_dump(mode="json"))
        self.store.put(f"referral-code-owner:{referral_code.user_id}", {"code": referral_code.code})

    def referral_code_exists(self, code: str) -> bool:
        return self.store.get(f"referral-code:{code}") is not None

    # Referrals

    def get_referral(self, referral_id: UUID) -> Optional[Referral]:
        return self._load(Referral, f"referral:{referral_id}")

    def get_referral_for_referee(self, referee_id: str) -> Optional[Referral]:
        index = self.store.get(f"referee:{referee_id}")
        return self.get_referral(index["referral_id"]) if index else None

    def put_referral(self, referral: Referral) -> None:
        self.store.put(f"referral:{referral.id}", referral.model_dump(mode="json"))
        self.store.put(f"referee:{referral.referee_id}", {"referral_id": str(referral.id)})

    def list_referrals(self, referrer_id: str) -> list[Referral]:
        records = self.store.list_by_prefix("referral:")
        return [Referral.model_validate(r) for r in records if r.get("referrer_id") == referrer_id]
