from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from .models import Account, ExpiryLot


class ExpiryTracker:
    """Point lots per account and the lazy sweep that retires them.

    A lot's ``remaining`` is what is still spendable from it; across an
    account's lots the remainders add up to ``available_points``.
    """

    def add_lot(
        self,
        account: Account,
        amount: int,
        expiry_date: datetime,
        transaction_id: Optional[UUID] = None,
    ) -> Account:
        account.expiring_lots.append(
            ExpiryLot(amount=amount, remaining=amount, expiry_date=expiry_date, transaction_id=transaction_id)
        )
        return account

    def expiring_within(self, account: Account, days: int, now: datetime) -> int:
        cutoff = now + timedelta(days=days)
        return sum(lot.remaining for lot in account.expiring_lots if lot.expiry_date <= cutoff)

    def sweep_expired(self, account: Account, now: datetime) -> tuple[int, Account]:
        expired = [lot for lot in account.expiring_lots if lot.expiry_date <= now]
        if not expired:
            return 0, account

        updated = account.model_copy(deep=True)
        updated.expiring_lots = [lot for lot in updated.expiring_lots if lot.expiry_date > now]
        # Never drive the balance negative; whatever is missing was already spent.
        removed = min(sum(lot.remaining for lot in expired), updated.available_points)
        updated.available_points -= removed
        updated.expired_points += removed
        updated.last_updated = now
        return removed, updated

    def consume(self, account: Account, points: int) -> Account:
        """Spend ``points`` from the lots that expire soonest."""
        outstanding = points
        kept = []
        for lot in sorted(account.expiring_lots, key=lambda l: l.expiry_date):
            if outstanding > 0:
                taken = min(lot.remaining, outstanding)
                lot.remaining -= taken
                outstanding -= taken
            if lot.remaining > 0:
                kept.append(lot)
        account.expiring_lots = kept
        return account
