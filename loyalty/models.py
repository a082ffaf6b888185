from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, model_validator


class TransactionType(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class TransactionSource(str, Enum):
    SIGNUP = "signup"
    PURCHASE = "purchase"
    REFERRAL = "referral"
    SOCIAL_SHARE = "social_share"
    DAILY_LOGIN = "daily_login"
    REVIEW = "review"
    REDEMPTION = "redemption"
    EXPIRY = "expiry"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RedemptionStatus(str, Enum):
    APPROVED = "approved"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ShareMethod(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    SOCIAL = "social"
    COPY = "copy"


# Transaction payloads, one shape per source. Extra keys are rejected so the
# stored shape cannot drift.

class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PurchaseMetadata(_Payload):
    kind: Literal["purchase"] = "purchase"
    order_id: str
    order_total: Optional[Decimal] = None

    @property
    def reference_id(self) -> str:
        return self.order_id


class ReferralMetadata(_Payload):
    kind: Literal["referral"] = "referral"
    referral_id: UUID
    referral_code: str
    referee_id: str
    role: Literal["referrer", "referee"] = "referrer"

    @property
    def reference_id(self) -> str:
        return str(self.referral_id)


class SocialShareMetadata(_Payload):
    kind: Literal["social_share"] = "social_share"
    channel: ShareMethod

    @property
    def reference_id(self) -> Optional[str]:
        return None


class ReviewMetadata(_Payload):
    kind: Literal["review"] = "review"
    product_id: str

    @property
    def reference_id(self) -> str:
        return self.product_id


class RedemptionMetadata(_Payload):
    kind: Literal["redemption"] = "redemption"
    reward_id: str
    redemption_code: str

    @property
    def reference_id(self) -> Optional[str]:
        return None


class ExpiryMetadata(_Payload):
    kind: Literal["expiry"] = "expiry"
    lots_expired: int

    @property
    def reference_id(self) -> Optional[str]:
        return None


TransactionMetadata = Annotated[
    Union[
        PurchaseMetadata,
        ReferralMetadata,
        SocialShareMetadata,
        ReviewMetadata,
        RedemptionMetadata,
        ExpiryMetadata,
    ],
    Field(discriminator="kind"),
]

METADATA_BY_SOURCE: dict[TransactionSource, Optional[type[BaseModel]]] = {
    TransactionSource.SIGNUP: None,
    TransactionSource.DAILY_LOGIN: None,
    TransactionSource.PURCHASE: PurchaseMetadata,
    TransactionSource.REFERRAL: ReferralMetadata,
    TransactionSource.SOCIAL_SHARE: SocialShareMetadata,
    TransactionSource.REVIEW: ReviewMetadata,
    TransactionSource.REDEMPTION: RedemptionMetadata,
    TransactionSource.EXPIRY: ExpiryMetadata,
}


class Tier(BaseModel):
    id: str
    name: str
    min_points: int = Field(..., ge=0)
    max_points: Optional[int] = None
    multiplier: Decimal = Field(default=Decimal("1.0"), ge=1)
    benefits: list[str] = Field(default_factory=list)
    color: Optional[str] = None
    icon: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def contains(self, points: int) -> bool:
        if points < self.min_points:
            return False
        return self.max_points is None or points <= self.max_points


class ExpiryLot(BaseModel):
    amount: int
    remaining: int
    expiry_date: datetime
    transaction_id: Optional[UUID] = None


class Account(BaseModel):
    user_id: str
    total_points: int = 0
    available_points: int = Field(default=0, ge=0)
    used_points: int = 0
    expired_points: int = 0
    lifetime_earned: int = 0
    current_tier: str
    next_tier_points: int = 0
    expiring_lots: list[ExpiryLot] = Field(default_factory=list)
    signup_bonus_granted: bool = False
    created_at: datetime
    last_updated: datetime

    model_config = ConfigDict(validate_assignment=True)

    def is_balanced(self) -> bool:
        return self.available_points == self.total_points - self.used_points - self.expired_points


class Transaction(BaseModel):
    id: UUID
    user_id: str
    type: TransactionType
    amount: int
    source: TransactionSource
    description: str
    reference_id: Optional[str] = None
    metadata: Optional[TransactionMetadata] = None
    expiry_date: Optional[datetime] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime

    model_config = ConfigDict(frozen=True)


class RewardItem(BaseModel):
    id: str
    name: str
    description: str = ""
    points_cost: int = Field(..., gt=0)
    category: str
    type: str
    value: Decimal = Decimal("0")
    currency: Optional[str] = None
    is_active: bool = True
    is_limited: bool = False
    total_quantity: Optional[int] = None
    remaining_quantity: Optional[int] = None
    validity_days: int = Field(..., gt=0)
    minimum_purchase: Optional[Decimal] = None
    terms: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _quantity_matches_limit(self) -> "RewardItem":
        if self.is_limited and self.remaining_quantity is None:
            raise ValueError("limited rewards must carry remaining_quantity")
        if not self.is_limited and self.remaining_quantity is not None:
            raise ValueError("remaining_quantity is only valid for limited rewards")
        return self

    def in_stock(self) -> bool:
        return not self.is_limited or (self.remaining_quantity or 0) > 0


class Redemption(BaseModel):
    id: UUID
    user_id: str
    reward_id: str
    reward_name: str
    points_used: int
    status: RedemptionStatus
    redemption_code: str
    expiry_date: datetime
    created_at: datetime
    redeemed_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    order_id: Optional[str] = None

    def can_use(self) -> bool:
        return self.status == RedemptionStatus.APPROVED


class ReferralCode(BaseModel):
    id: UUID
    user_id: str
    code: str
    share_link: str
    usage_count: int = 0
    is_active: bool = True
    created_at: datetime
    max_usage: Optional[int] = None
    description: str = "Personal referral code - Earn points for each friend who joins!"

    def is_exhausted(self) -> bool:
        return self.max_usage is not None and self.usage_count >= self.max_usage


class Referral(BaseModel):
    id: UUID
    referrer_id: str
    referee_id: str
    referral_code: str
    status: ReferralStatus
    signup_date: datetime
    first_purchase_date: Optional[datetime] = None
    is_reward_claimed: bool = False
    reward_claimed_at: Optional[datetime] = None
    reward_amount: Optional[int] = None


class TierProgress(BaseModel):
    current: Tier
    next: Optional[Tier] = None
    percent: float
    points_to_next: int


class ShareContent(BaseModel):
    title: str
    message: str
    url: str
    method: ShareMethod
    points_awarded: int


class TransactionHistory(BaseModel):
    user_id: str
    transactions: list[Transaction]
    total_count: int
    available_points: int


class EarnRequest(BaseModel):
    amount: int
    source: TransactionSource
    description: str
    metadata: Optional[dict] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 120,
            "source": "purchase",
            "description": "Order #1042",
            "metadata": {"kind": "purchase", "order_id": "1042", "order_total": 120.00}
        }
    })


class RedeemRequest(BaseModel):
    reward_id: str


class UseRedemptionRequest(BaseModel):
    order_id: Optional[str] = None


class ShareRequest(BaseModel):
    method: ShareMethod = ShareMethod.COPY


class CompleteReferralRequest(BaseModel):
    code: str
    referee_id: str
