from typing import Optional
from uuid import UUID
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import (
    LoyaltyServiceError,
    AccountNotFoundError,
    RewardNotFoundError,
    RedemptionNotFoundError,
    ReferralCodeNotFoundError,
    InvalidAmountError,
    InvalidMetadataError,
    InvalidReferralError,
    StorageUnavailableError,
)
from .models import (
    Account, Transaction, TransactionHistory, Tier, TierProgress, RewardItem,
    Redemption, ReferralCode, Referral, ShareContent,
    EarnRequest, RedeemRequest, UseRedemptionRequest, ShareRequest, CompleteReferralRequest,
)
from .service import LoyaltyService

app = FastAPI(
    title="Loyalty Ledger API",
    description="Points ledger with tier progression, expiring lots, reward redemptions and referral rewards",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

loyalty_service = LoyaltyService()


def error_status(error: LoyaltyServiceError) -> int:
    if isinstance(error, (AccountNotFoundError, RewardNotFoundError, RedemptionNotFoundError, ReferralCodeNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (InvalidAmountError, InvalidMetadataError, InvalidReferralError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, StorageUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_409_CONFLICT


@app.exception_handler(LoyaltyServiceError)
async def loyalty_error_handler(request: Request, exc: LoyaltyServiceError) -> JSONResponse:
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=error_status(exc),
        content={"detail": exc.message, "kind": exc.kind, "retryable": exc.retryable},
        headers=headers,
    )


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "loyalty-ledger"}


@app.get("/tiers", response_model=list[Tier], tags=["Catalog"])
def list_tiers() -> list[Tier]:
    return loyalty_service.tiers()


@app.get("/rewards", response_model=list[RewardItem], tags=["Catalog"])
def list_rewards() -> list[RewardItem]:
    return loyalty_service.list_rewards()


@app.post("/accounts/{user_id}", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def open_account(user_id: str) -> Account:
    return loyalty_service.open_account(user_id)


@app.get("/accounts/{user_id}", response_model=Account, tags=["Accounts"])
def get_account(user_id: str) -> Account:
    account = loyalty_service.get_account(user_id)
    if account is None:
        raise AccountNotFoundError(f"No loyalty account for user {user_id}")
    return account


@app.post("/accounts/{user_id}/earn", response_model=Transaction, status_code=status.HTTP_201_CREATED, tags=["Points"])
def earn_points(user_id: str, request: EarnRequest) -> Transaction:
    return loyalty_service.earn(user_id, request.amount, request.source, request.description, request.metadata)


@app.get("/accounts/{user_id}/transactions", response_model=TransactionHistory, tags=["Points"])
def list_transactions(user_id: str, limit: int = 50, offset: int = 0) -> TransactionHistory:
    return loyalty_service.list_transactions(user_id, limit, offset)


@app.get("/accounts/{user_id}/tier-progress", response_model=TierProgress, tags=["Points"])
def tier_progress(user_id: str) -> TierProgress:
    return loyalty_service.tier_progress(user_id)


@app.get("/accounts/{user_id}/expiring-points", tags=["Points"])
def expiring_points(user_id: str, days: int = 30) -> dict:
    return {"user_id": user_id, "days": days, "points": loyalty_service.expiring_points(user_id, days)}


@app.post("/accounts/{user_id}/redemptions", response_model=Redemption, status_code=status.HTTP_201_CREATED, tags=["Redemptions"])
def redeem(user_id: str, request: RedeemRequest) -> Redemption:
    return loyalty_service.redeem(user_id, request.reward_id)


@app.get("/accounts/{user_id}/redemptions", response_model=list[Redemption], tags=["Redemptions"])
def list_redemptions(user_id: str) -> list[Redemption]:
    return loyalty_service.list_redemptions(user_id)


@app.post("/redemptions/{redemption_id}/use", response_model=Redemption, tags=["Redemptions"])
def use_redemption(redemption_id: UUID, request: Optional[UseRedemptionRequest] = None) -> Redemption:
    order_id = request.order_id if request else None
    return loyalty_service.use_redemption(redemption_id, order_id)


@app.post("/accounts/{user_id}/referral-code", response_model=ReferralCode, tags=["Referrals"])
def generate_referral_code(user_id: str) -> ReferralCode:
    return loyalty_service.generate_referral_code(user_id)


@app.post("/accounts/{user_id}/referral-code/share", response_model=ShareContent, tags=["Referrals"])
def share_referral_code(user_id: str, request: ShareRequest) -> ShareContent:
    return loyalty_service.share_referral_code(user_id, request.method)


@app.get("/accounts/{user_id}/referrals", response_model=list[Referral], tags=["Referrals"])
def list_referrals(user_id: str) -> list[Referral]:
    return loyalty_service.list_referrals(user_id)


@app.post("/referrals", response_model=Referral, status_code=status.HTTP_201_CREATED, tags=["Referrals"])
def complete_referral(request: CompleteReferralRequest) -> Referral:
    return loyalty_service.complete_referral(request.code, request.referee_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
