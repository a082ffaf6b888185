from contextlib import contextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Iterator, Optional, Union
from uuid import UUID, uuid4

from loguru import logger
from pydantic import BaseModel

from .codes import CodeGenerator, random_code
from .earning import EarningEngine
from .errors import (
    AccountNotFoundError,
    InvalidAmountError,
    InvalidMetadataError,
    LoyaltyServiceError,
    RedemptionNotFoundError,
    RewardNotFoundError,
    StorageUnavailableError,
)
from .expiry import ExpiryTracker
from .locks import LockRegistry
from .models import (
    Account,
    ExpiryMetadata,
    Redemption,
    Referral,
    ReferralCode,
    ReferralMetadata,
    RewardItem,
    ShareContent,
    ShareMethod,
    SocialShareMetadata,
    Tier,
    TierProgress,
    Transaction,
    TransactionHistory,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from .redemption import RedemptionEngine
from .referrals import ReferralTracker
from .settings import LoyaltySettings, get_settings
from .storage import InMemoryStorage, KeyValueStore, LoyaltyRepository, StorageError
from .tiers import TierCalculator, TierTable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoyaltyService:
    """Entry point for the loyalty ledger.

    Every operation takes the exclusive section of the records it touches,
    loads them, sweeps expired lots from the account, delegates to the
    engine for the actual rule and writes the results back before the
    section is released.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        settings: Optional[LoyaltySettings] = None,
        tiers: Optional[TierTable] = None,
        clock: Optional[Callable[[], datetime]] = None,
        code_generator: Optional[CodeGenerator] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage if storage is not None else InMemoryStorage()
        self.repository = LoyaltyRepository(self.storage)
        self.clock = clock or _utcnow
        self.locks = LockRegistry(timeout=self.settings.lock_timeout_seconds)

        generate = code_generator or partial(random_code, self.settings.code_prefix, self.settings.code_length)
        self.calculator = TierCalculator(tiers)
        self.expiry = ExpiryTracker()
        self.earning = EarningEngine(self.settings, self.calculator, self.expiry)
        self.redemptions = RedemptionEngine(self.expiry, generate, self.settings.code_generation_attempts)
        self.referrals = ReferralTracker(self.repository, self.settings, generate, self._grant_referral_reward)

    @contextmanager
    def _section(self, *keys: str) -> Iterator[None]:
        try:
            with self.locks.hold(*keys):
                yield
        except StorageError as e:
            logger.error("Loyalty store unavailable", keys=list(keys), error=str(e))
            raise StorageUnavailableError(str(e))
        except LoyaltyServiceError as e:
            if e.retryable:
                logger.warning("Loyalty operation deferred", kind=e.kind, detail=e.message)
            else:
                logger.info("Loyalty operation rejected", kind=e.kind, detail=e.message)
            raise

    # Accounts

    def _load_account(self, user_id: str, now: datetime) -> Optional[Account]:
        account = self.repository.get_account(user_id)
        if account is None:
            return None

        removed, swept = self.expiry.sweep_expired(account, now)
        if swept is account:
            return account

        with self.repository.batch() as batch:
            if removed > 0:
                batch.add_transaction(Transaction(
                    id=uuid4(),
                    user_id=user_id,
                    type=TransactionType.EXPIRED,
                    amount=-removed,
                    source=TransactionSource.EXPIRY,
                    description=f"{removed} points expired",
                    metadata=ExpiryMetadata(lots_expired=len(account.expiring_lots) - len(swept.expiring_lots)),
                    status=TransactionStatus.COMPLETED,
                    created_at=now,
                ))
            batch.put_account(swept)
        if removed > 0:
            logger.info("Expired loyalty points", user_id=user_id, points=removed)
        return swept

    def _require_account(self, user_id: str, now: datetime) -> Account:
        account = self._load_account(user_id, now)
        if account is None:
            raise AccountNotFoundError(f"No loyalty account for user {user_id}")
        return account

    def get_account(self, user_id: str) -> Optional[Account]:
        with self._section(f"account:{user_id}"):
            return self._load_account(user_id, self.clock())

    def open_account(self, user_id: str) -> Account:
        """Open the account with its signup bonus.

        An account already created by an earlier earn or referral reward gets
        the bonus it missed; an account that already has it is returned as is.
        """
        with self._section(f"account:{user_id}"):
            now = self.clock()
            account = self._load_account(user_id, now)
            if account is not None and account.signup_bonus_granted:
                return account
            created = account is None
            if created:
                account = self.earning.new_account(user_id, now)

            with self.repository.batch() as batch:
                if self.settings.signup_bonus > 0:
                    transaction, account = self.earning.earn(
                        account, self.settings.signup_bonus, TransactionSource.SIGNUP,
                        "Welcome bonus for joining PingSpace!", now=now,
                    )
                    batch.add_transaction(transaction)
                account = account.model_copy(update={"signup_bonus_granted": True})
                batch.put_account(account)

            logger.info(
                "Created loyalty account" if created else "Granted missing signup bonus",
                user_id=user_id,
                signup_bonus=self.settings.signup_bonus,
            )
            return account

    # Earning

    def _earn_locked(
        self,
        user_id: str,
        amount: int,
        source: TransactionSource,
        description: str,
        metadata: Union[BaseModel, dict, None],
    ) -> Transaction:
        now = self.clock()
        account = self._load_account(user_id, now)
        if account is None:
            account = self.earning.new_account(user_id, now)
            logger.info("Created loyalty account", user_id=user_id, source=source.value)

        previous_tier = account.current_tier
        transaction, updated = self.earning.earn(account, amount, source, description, metadata, now=now)
        with self.repository.batch() as batch:
            batch.add_transaction(transaction)
            batch.put_account(updated)

        logger.info(
            "Points earned",
            user_id=user_id,
            source=source.value,
            requested=amount,
            credited=transaction.amount,
            available=updated.available_points,
        )
        if updated.current_tier != previous_tier:
            logger.info("Tier upgraded", user_id=user_id, old_tier=previous_tier, new_tier=updated.current_tier)
        return transaction

    def earn(
        self,
        user_id: str,
        amount: int,
        source: Union[TransactionSource, str],
        description: str,
        metadata: Union[BaseModel, dict, None] = None,
    ) -> Transaction:
        try:
            source = TransactionSource(source)
        except ValueError:
            raise InvalidMetadataError(f"Unknown earn source {source!r}")
        if source in (TransactionSource.REDEMPTION, TransactionSource.EXPIRY):
            raise InvalidMetadataError(f"Source {source.value} cannot be used to earn points")

        with self._section(f"account:{user_id}"):
            transaction = self._earn_locked(user_id, amount, source, description, metadata)

        # Settled outside the account section: paying the referrer takes another account's lock.
        if source == TransactionSource.PURCHASE and self.settings.referral_reward_policy == "on_first_purchase":
            self._settle_on_first_purchase(user_id)
        return transaction

    def _grant_referral_reward(self, user_id: str, amount: int, description: str, metadata: ReferralMetadata) -> Transaction:
        with self._section(f"account:{user_id}"):
            return self._earn_locked(user_id, amount, TransactionSource.REFERRAL, description, metadata)

    def list_transactions(self, user_id: str, limit: int = 50, offset: int = 0) -> TransactionHistory:
        with self._section(f"account:{user_id}"):
            account = self._require_account(user_id, self.clock())
            transactions = self.repository.list_transactions(user_id)

        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return TransactionHistory(
            user_id=user_id,
            transactions=transactions[offset:offset + limit],
            total_count=len(transactions),
            available_points=account.available_points,
        )

    # Tiers and expiry

    def tiers(self) -> list[Tier]:
        return self.calculator.table.as_list()

    def tier_progress(self, user_id: str) -> TierProgress:
        with self._section(f"account:{user_id}"):
            account = self._require_account(user_id, self.clock())
        return self.calculator.progress(account.total_points)

    def expiring_points(self, user_id: str, days: int = 30) -> int:
        if days < 0:
            raise InvalidAmountError(f"Days must not be negative, got {days}")
        with self._section(f"account:{user_id}"):
            now = self.clock()
            account = self._require_account(user_id, now)
            return self.expiry.expiring_within(account, days, now)

    # Redemptions

    def list_rewards(self) -> list[RewardItem]:
        with self._section():
            rewards = [r for r in self.repository.list_rewards() if r.is_active]
        return sorted(rewards, key=lambda r: (r.points_cost, r.id))

    def redeem(self, user_id: str, reward_id: str) -> Redemption:
        with self._section(f"account:{user_id}", f"reward:{reward_id}"):
            now = self.clock()
            account = self._require_account(user_id, now)
            reward = self.repository.get_reward(reward_id)
            if reward is None:
                raise RewardNotFoundError(f"Reward {reward_id} not found")

            redemption, transaction, updated, updated_reward = self.redemptions.redeem(
                account, reward, self.repository.redemption_code_exists, now=now,
            )
            with self.repository.batch() as batch:
                if reward.is_limited:
                    batch.put_reward(updated_reward)
                batch.put_redemption(redemption)
                batch.add_transaction(transaction)
                batch.put_account(updated)

        logger.info(
            "Points redeemed",
            user_id=user_id,
            reward_id=reward_id,
            points=redemption.points_used,
            redemption_id=str(redemption.id),
        )
        return redemption

    def use_redemption(self, redemption_id: Union[UUID, str], order_id: Optional[str] = None) -> Redemption:
        try:
            redemption_id = UUID(str(redemption_id))
        except ValueError:
            raise RedemptionNotFoundError(f"Redemption {redemption_id} not found")
        with self._section(f"redemption:{redemption_id}"):
            now = self.clock()
            redemption = self.repository.get_redemption(redemption_id)
            if redemption is None:
                raise RedemptionNotFoundError(f"Redemption {redemption_id} not found")

            if redemption.can_use() and redemption.expiry_date <= now:
                redemption = self.redemptions.expire(redemption)
                self.repository.put_redemption(redemption)
                logger.info("Redemption expired before use", redemption_id=str(redemption_id))

            used = self.redemptions.use(redemption, order_id, now=now)
            self.repository.put_redemption(used)

        logger.info("Redemption used", redemption_id=str(redemption_id), order_id=order_id)
        return used

    def list_redemptions(self, user_id: str) -> list[Redemption]:
        with self._section():
            redemptions = self.repository.list_redemptions(user_id)
        return sorted(redemptions, key=lambda r: r.created_at, reverse=True)

    # Referrals

    def generate_referral_code(self, user_id: str) -> ReferralCode:
        with self._section(f"referral-owner:{user_id}"):
            return self.referrals.generate_code(user_id, now=self.clock())

    def share_referral_code(self, user_id: str, method: Union[ShareMethod, str] = ShareMethod.COPY) -> ShareContent:
        try:
            method = ShareMethod(method)
        except ValueError:
            raise InvalidMetadataError(f"Unknown share method {method!r}")
        referral_code = self.generate_referral_code(user_id)
        content = self.referrals.share_content(referral_code, method)
        if content.points_awarded > 0:
            self.earn(
                user_id,
                content.points_awarded,
                TransactionSource.SOCIAL_SHARE,
                "Shared referral code",
                SocialShareMetadata(channel=method),
            )
        return content

    def complete_referral(self, code: str, referee_id: str) -> Referral:
        with self._section(f"referral-code:{code}", f"referee:{referee_id}"):
            return self.referrals.complete_referral(code, referee_id, now=self.clock())

    def _settle_on_first_purchase(self, referee_id: str) -> Optional[Referral]:
        with self._section(f"referee:{referee_id}"):
            pending = self.referrals.pending_for(referee_id)
            if pending is None:
                return None
            return self.referrals.settle(pending, now=self.clock(), first_purchase=True)

    def list_referrals(self, referrer_id: str) -> list[Referral]:
        with self._section():
            referrals = self.repository.list_referrals(referrer_id)
        return sorted(referrals, key=lambda r: r.signup_date, reverse=True)
