class LoyaltyServiceError(Exception):
    kind = "loyalty_error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.replace("_", " "))
        self.message = message or self.kind.replace("_", " ")


class InvalidAmountError(LoyaltyServiceError):
    kind = "invalid_amount"


class InvalidMetadataError(LoyaltyServiceError):
    kind = "invalid_metadata"


class InsufficientPointsError(LoyaltyServiceError):
    kind = "insufficient_points"


class OutOfStockError(LoyaltyServiceError):
    kind = "out_of_stock"


class InvalidStateError(LoyaltyServiceError):
    kind = "invalid_state"


class DuplicateReferralError(LoyaltyServiceError):
    kind = "duplicate_referral"


class InvalidReferralError(LoyaltyServiceError):
    kind = "invalid_referral"


class AccountNotFoundError(LoyaltyServiceError):
    kind = "account_not_found"


class RewardNotFoundError(LoyaltyServiceError):
    kind = "reward_not_found"


class RedemptionNotFoundError(LoyaltyServiceError):
    kind = "redemption_not_found"


class ReferralCodeNotFoundError(LoyaltyServiceError):
    kind = "referral_code_not_found"


class CodeAllocationError(LoyaltyServiceError):
    kind = "code_allocation_failed"


class StorageUnavailableError(LoyaltyServiceError):
    """The store could not be reached or a record lock could not be taken in time.

    The only kind callers should retry; every other failure is final for the call.
    """

    kind = "storage_unavailable"
    retryable = True
