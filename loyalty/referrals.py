from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from loguru import logger

from .codes import CodeGenerator, unique_code
from .errors import DuplicateReferralError, InvalidReferralError, ReferralCodeNotFoundError
from .models import (
    Referral,
    ReferralCode,
    ReferralMetadata,
    ReferralStatus,
    ShareContent,
    ShareMethod,
    Transaction,
)
from .settings import LoyaltySettings
from .storage import LoyaltyRepository

# (user_id, amount, description, metadata) -> Transaction
RewardGranter = Callable[[str, int, str, ReferralMetadata], Transaction]


class ReferralTracker:
    """Referral codes and exactly-once referral rewards.

    The tracker expects its caller to hold the ``referral-code:{code}`` and
    ``referee:{referee_id}`` locks for ``complete_referral`` and ``settle``;
    rewards go out through ``grant`` which takes the account locks itself.
    """

    def __init__(
        self,
        repository: LoyaltyRepository,
        settings: LoyaltySettings,
        generate_code: CodeGenerator,
        grant: RewardGranter,
    ):
        self.repository = repository
        self.settings = settings
        self.new_code = generate_code
        self.grant = grant

    def generate_code(self, user_id: str, now: Optional[datetime] = None) -> ReferralCode:
        existing = self.repository.get_referral_code_for_user(user_id)
        if existing and existing.is_active:
            return existing

        now = now or datetime.now(timezone.utc)
        code = unique_code(self.new_code, self.repository.referral_code_exists, self.settings.code_generation_attempts)
        referral_code = ReferralCode(
            id=uuid4(),
            user_id=user_id,
            code=code,
            share_link=f"{self.settings.share_link_base}?ref={code}",
            created_at=now,
        )
        self.repository.put_referral_code(referral_code)
        logger.info("Issued referral code", user_id=user_id, code=code)
        return referral_code

    def share_content(self, referral_code: ReferralCode, method: ShareMethod) -> ShareContent:
        return ShareContent(
            title="Join PingSpace - Earn Points!",
            message=(
                "Hey! I'm using PingSpace for messaging, shopping, and payments. "
                f"Join with my referral code {referral_code.code} and we both earn points! {referral_code.share_link}"
            ),
            url=referral_code.share_link,
            method=method,
            points_awarded=self.settings.social_share_points,
        )

    def complete_referral(self, code: str, referee_id: str, now: Optional[datetime] = None) -> Referral:
        now = now or datetime.now(timezone.utc)
        referral_code = self.repository.get_referral_code(code)
        if referral_code is None or not referral_code.is_active:
            raise ReferralCodeNotFoundError(f"Referral code {code} not found")
        if referral_code.user_id == referee_id:
            raise InvalidReferralError("Users cannot refer themselves")

        previous = self.repository.get_referral_for_referee(referee_id)
        if previous is not None:
            logger.info("Referral already recorded", code=code, referee_id=referee_id, referral_id=str(previous.id))
            raise DuplicateReferralError(f"User {referee_id} was already referred with code {previous.referral_code}")
        if referral_code.is_exhausted():
            raise InvalidReferralError(f"Referral code {code} reached its usage limit")

        referral = Referral(
            id=uuid4(),
            referrer_id=referral_code.user_id,
            referee_id=referee_id,
            referral_code=code,
            status=ReferralStatus.PENDING,
            signup_date=now,
        )
        with self.repository.batch() as batch:
            batch.put_referral(referral)
            batch.put_referral_code(referral_code.model_copy(update={"usage_count": referral_code.usage_count + 1}))
        logger.info("Referral recorded", code=code, referee_id=referee_id, policy=self.settings.referral_reward_policy)

        if self.settings.referral_reward_policy == "on_signup":
            referral = self.settle(referral, now)
        return referral

    def pending_for(self, referee_id: str) -> Optional[Referral]:
        referral = self.repository.get_referral_for_referee(referee_id)
        if referral is None or referral.is_reward_claimed:
            return None
        return referral

    def settle(self, referral: Referral, now: Optional[datetime] = None, first_purchase: bool = False) -> Referral:
        """Complete a referral and pay out its rewards, at most once."""
        if referral.is_reward_claimed:
            return referral

        now = now or datetime.now(timezone.utc)
        reward_amount = self.settings.referral_referrer_points
        # Claim before paying: a failed grant can lose a reward but never double it.
        settled = referral.model_copy(update={
            "status": ReferralStatus.COMPLETED,
            "is_reward_claimed": True,
            "reward_claimed_at": now,
            "reward_amount": reward_amount,
            "first_purchase_date": now if first_purchase else referral.first_purchase_date,
        })
        self.repository.put_referral(settled)

        if reward_amount > 0:
            self.grant(
                settled.referrer_id,
                reward_amount,
                f"Referral bonus for inviting {settled.referee_id}",
                ReferralMetadata(
                    referral_id=settled.id,
                    referral_code=settled.referral_code,
                    referee_id=settled.referee_id,
                    role="referrer",
                ),
            )
        if self.settings.referral_referee_points > 0:
            self.grant(
                settled.referee_id,
                self.settings.referral_referee_points,
                f"Welcome bonus for joining with code {settled.referral_code}",
                ReferralMetadata(
                    referral_id=settled.id,
                    referral_code=settled.referral_code,
                    referee_id=settled.referee_id,
                    role="referee",
                ),
            )
        logger.info("Referral rewarded", referral_id=str(settled.id), referrer_id=settled.referrer_id, amount=reward_amount)
        return settled
