"""
Loyalty Points Ledger

This module provides:
- Per-user points accounts with tier-dependent earning multipliers
- Point lots that expire after a fixed horizon, swept lazily on access
- Reward redemptions against limited inventory: approved → redeemed
- Referral codes and exactly-once referral rewards
- Append-only transactions that balances reconcile against
"""

from .errors import (
    LoyaltyServiceError,
    InvalidAmountError,
    InvalidMetadataError,
    InsufficientPointsError,
    OutOfStockError,
    InvalidStateError,
    DuplicateReferralError,
    InvalidReferralError,
    AccountNotFoundError,
    RewardNotFoundError,
    RedemptionNotFoundError,
    ReferralCodeNotFoundError,
    CodeAllocationError,
    StorageUnavailableError,
)
from .models import (
    Account,
    Transaction,
    TransactionType,
    TransactionSource,
    Tier,
    TierProgress,
    RewardItem,
    Redemption,
    RedemptionStatus,
    ReferralCode,
    Referral,
    ReferralStatus,
)
from .service import LoyaltyService
from .settings import LoyaltySettings
from .storage import InMemoryStorage, KeyValueStore
from .tiers import TierCalculator, TierTable

__all__ = [
    "LoyaltyService",
    "LoyaltySettings",
    "InMemoryStorage",
    "KeyValueStore",
    "TierCalculator",
    "TierTable",
    "Account",
    "Transaction",
    "TransactionType",
    "TransactionSource",
    "Tier",
    "TierProgress",
    "RewardItem",
    "Redemption",
    "RedemptionStatus",
    "ReferralCode",
    "Referral",
    "ReferralStatus",
    "LoyaltyServiceError",
    "InvalidAmountError",
    "InvalidMetadataError",
    "InsufficientPointsError",
    "OutOfStockError",
    "InvalidStateError",
    "DuplicateReferralError",
    "InvalidReferralError",
    "AccountNotFoundError",
    "RewardNotFoundError",
    "RedemptionNotFoundError",
    "ReferralCodeNotFoundError",
    "CodeAllocationError",
    "StorageUnavailableError",
]
