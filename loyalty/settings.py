from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoyaltySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOYALTY_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    points_expiry_days: int = Field(default=365, gt=0)
    tier_bonus_enabled: bool = True
    max_points_per_transaction: int = Field(default=10000, gt=0)

    # Fixed grants
    signup_bonus: int = Field(default=100, ge=0)
    social_share_points: int = 25

    # Referrals
    referral_referrer_points: int = Field(default=500, ge=0)
    referral_referee_points: int = Field(default=200, ge=0)
    # on_signup grants the referral reward immediately; on_first_purchase holds
    # the referral as pending until the referee's first purchase earn.
    referral_reward_policy: Literal["on_signup", "on_first_purchase"] = "on_signup"
    share_link_base: str = "https://pingspace.app/join"

    # Code issuance and locking
    code_prefix: str = "PING"
    code_length: int = Field(default=6, ge=4)
    code_generation_attempts: int = Field(default=10, gt=0)
    lock_timeout_seconds: float = Field(default=5.0, gt=0)


@lru_cache
def get_settings() -> LoyaltySettings:
    return LoyaltySettings()
