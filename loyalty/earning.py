from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from .errors import InvalidAmountError, InvalidMetadataError
from .expiry import ExpiryTracker
from .models import (
    METADATA_BY_SOURCE,
    Account,
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from .settings import LoyaltySettings
from .tiers import TierCalculator


def parse_metadata(source: TransactionSource, metadata: Union[BaseModel, dict, None]) -> Optional[BaseModel]:
    """Validate an earn payload against the shape registered for ``source``."""
    if metadata is None:
        return None
    model = METADATA_BY_SOURCE[source]
    if model is None:
        raise InvalidMetadataError(f"Source {source.value} does not take metadata")
    if isinstance(metadata, BaseModel):
        if not isinstance(metadata, model):
            raise InvalidMetadataError(f"Expected {model.__name__} for source {source.value}")
        return metadata
    try:
        return model.model_validate({"kind": source.value, **metadata})
    except ValidationError as e:
        raise InvalidMetadataError(f"Invalid metadata for source {source.value}: {e.errors()[0]['msg']}")


class EarningEngine:
    def __init__(self, settings: LoyaltySettings, calculator: TierCalculator, expiry: ExpiryTracker):
        self.settings = settings
        self.calculator = calculator
        self.expiry = expiry

    def new_account(self, user_id: str, now: datetime) -> Account:
        return Account(
            user_id=user_id,
            current_tier=self.calculator.table.lowest.id,
            next_tier_points=self.calculator.next_tier_points(0),
            created_at=now,
            last_updated=now,
        )

    def apply_multiplier(self, account: Account, amount: int, source: TransactionSource) -> int:
        if source != TransactionSource.PURCHASE or not self.settings.tier_bonus_enabled:
            return amount
        multiplier = self.calculator.table.get(account.current_tier).multiplier
        return int((Decimal(amount) * multiplier).to_integral_value(rounding=ROUND_FLOOR))

    def earn(
        self,
        account: Account,
        amount: int,
        source: TransactionSource,
        description: str,
        metadata: Union[BaseModel, dict, None] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Transaction, Account]:
        if amount <= 0:
            raise InvalidAmountError(f"Earn amount must be positive, got {amount}")
        if amount > self.settings.max_points_per_transaction:
            raise InvalidAmountError(
                f"Earn amount {amount} exceeds the per-transaction cap of {self.settings.max_points_per_transaction}"
            )
        payload = parse_metadata(source, metadata)
        now = now or datetime.now(timezone.utc)

        final_amount = self.apply_multiplier(account, amount, source)
        expiry_date = now + timedelta(days=self.settings.points_expiry_days)

        transaction = Transaction(
            id=uuid4(),
            user_id=account.user_id,
            type=TransactionType.EARNED,
            amount=final_amount,
            source=source,
            description=description,
            reference_id=payload.reference_id if payload is not None else None,
            metadata=payload,
            expiry_date=expiry_date,
            status=TransactionStatus.COMPLETED,
            created_at=now,
        )

        updated = account.model_copy(deep=True)
        updated.total_points += final_amount
        updated.available_points += final_amount
        updated.lifetime_earned += final_amount
        updated.current_tier = self.calculator.tier_for(updated.total_points).id
        updated.next_tier_points = self.calculator.next_tier_points(updated.total_points)
        updated.last_updated = now
        self.expiry.add_lot(updated, final_amount, expiry_date, transaction.id)

        return transaction, updated
