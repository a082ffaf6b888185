from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from .codes import CodeGenerator, unique_code
from .errors import (
    InsufficientPointsError,
    InvalidStateError,
    OutOfStockError,
    RewardNotFoundError,
)
from .expiry import ExpiryTracker
from .models import (
    Account,
    Redemption,
    RedemptionMetadata,
    RedemptionStatus,
    RewardItem,
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)


class RedemptionEngine:
    """Checks and applies reward redemptions.

    The engine works on records handed to it; the caller must hold the account
    lock (and the reward lock for limited rewards) across ``redeem`` and the
    write-back so the balance and stock checks cannot be raced.
    """

    def __init__(self, expiry: ExpiryTracker, generate_code: CodeGenerator, code_attempts: int = 10):
        self.expiry = expiry
        self.generate_code = generate_code
        self.code_attempts = code_attempts

    def redeem(
        self,
        account: Account,
        reward: RewardItem,
        code_exists: Callable[[str], bool],
        now: Optional[datetime] = None,
    ) -> tuple[Redemption, Transaction, Account, RewardItem]:
        now = now or datetime.now(timezone.utc)
        if not reward.is_active:
            raise RewardNotFoundError(f"Reward {reward.id} is not available")
        if account.available_points < reward.points_cost:
            raise InsufficientPointsError(
                f"Reward {reward.id} costs {reward.points_cost} points, {account.available_points} available"
            )
        if not reward.in_stock():
            raise OutOfStockError(f"Reward {reward.id} is out of stock")

        code = unique_code(self.generate_code, code_exists, self.code_attempts)
        redemption = Redemption(
            id=uuid4(),
            user_id=account.user_id,
            reward_id=reward.id,
            reward_name=reward.name,
            points_used=reward.points_cost,
            status=RedemptionStatus.APPROVED,
            redemption_code=code,
            expiry_date=now + timedelta(days=reward.validity_days),
            created_at=now,
            redeemed_at=now,
        )

        transaction = Transaction(
            id=uuid4(),
            user_id=account.user_id,
            type=TransactionType.REDEEMED,
            amount=-reward.points_cost,
            source=TransactionSource.REDEMPTION,
            description=f"Redeemed: {reward.name}",
            reference_id=str(redemption.id),
            metadata=RedemptionMetadata(reward_id=reward.id, redemption_code=code),
            status=TransactionStatus.COMPLETED,
            created_at=now,
        )

        updated = account.model_copy(deep=True)
        updated.available_points -= reward.points_cost
        updated.used_points += reward.points_cost
        updated.last_updated = now
        self.expiry.consume(updated, reward.points_cost)

        updated_reward = reward
        if reward.is_limited:
            updated_reward = reward.model_copy(update={"remaining_quantity": reward.remaining_quantity - 1})

        return redemption, transaction, updated, updated_reward

    def use(self, redemption: Redemption, order_id: Optional[str] = None, now: Optional[datetime] = None) -> Redemption:
        now = now or datetime.now(timezone.utc)
        if not redemption.can_use():
            raise InvalidStateError(f"Cannot use redemption in {redemption.status.value} state")
        if redemption.expiry_date <= now:
            raise InvalidStateError(f"Redemption {redemption.redemption_code} expired on {redemption.expiry_date:%Y-%m-%d}")

        return redemption.model_copy(update={
            "status": RedemptionStatus.REDEEMED,
            "used_at": now,
            "order_id": order_id,
        })

    def expire(self, redemption: Redemption) -> Redemption:
        return redemption.model_copy(update={"status": RedemptionStatus.EXPIRED})
