from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from rewards import RewardType


class EntryType(str, Enum):
    EARN = "EARN"
    WITHDRAWAL = "WITHDRAWAL"
    ADJUSTMENT = "ADJUSTMENT"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    REFUND = "REFUND"


class BalanceSource(str, Enum):
    ACTIVITY = "ACTIVITY"
    REFERRAL = "REFERRAL"


class WithdrawalStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    REJECTED = "Rejected"


class PostStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Category(str, Enum):
    POLITICS = "Politics"
    SPORTS = "Sports"
    ENTERTAINMENT = "Entertainment"
    BUSINESS = "Business"
    TECH = "Tech"


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    STORAGE_FAILURE = "STORAGE_FAILURE"


class PayoutMethod(str, Enum):
    MOBILE = "Mobile"
    BANK = "Bank"


class MobileStrategy(str, Enum):
    REGISTERED = "Registered"
    SAVED = "Saved"
    NEW = "New"


# --- Stored entities ---


class Beneficiary(BaseModel):
    id: str
    name: str
    number: str
    provider: str

    model_config = ConfigDict(frozen=True)


class UserProfile(BaseModel):
    id: UUID
    username: str
    email: str
    phone_number: str
    activity_points: Decimal = Decimal("0.00")
    referral_earnings: Decimal = Decimal("0.00")
    referral_code: str
    referral_count: int = 0
    referred_by: Optional[UUID] = None
    invite_code_used: Optional[str] = None
    is_admin: bool = False
    last_reward_date: Optional[date] = None
    read_article_ids: list[str] = Field(default_factory=list)
    commented_article_ids: list[str] = Field(default_factory=list)
    saved_beneficiaries: list[Beneficiary] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class User(UserProfile):
    password_hash: str
    version: int = 0

    def balance_of(self, source: BalanceSource) -> Decimal:
        if source == BalanceSource.ACTIVITY:
            return self.activity_points
        return self.referral_earnings

    def with_balance(self, source: BalanceSource, amount: Decimal) -> "User":
        field_name = "activity_points" if source == BalanceSource.ACTIVITY else "referral_earnings"
        return self.model_copy(update={field_name: amount})

    def to_profile(self) -> UserProfile:
        return UserProfile.model_validate(self.model_dump(exclude={"password_hash", "version"}))


class LedgerEntry(BaseModel):
    id: UUID
    user_id: UUID
    entry_type: EntryType
    amount: Decimal
    balance: BalanceSource = BalanceSource.ACTIVITY
    balance_after: Decimal
    reference_id: Optional[str] = None
    description: str
    created_at: datetime
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Withdrawal(BaseModel):
    id: UUID
    user_id: UUID
    username: str
    amount: Decimal
    source: BalanceSource
    details: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def can_resolve(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class Post(BaseModel):
    id: UUID
    title: str
    category: Category
    content: str
    author_id: UUID
    author_name: str
    status: PostStatus = PostStatus.PENDING
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Comment(BaseModel):
    id: UUID
    post_id: UUID
    user_id: UUID
    username: str
    text: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InviteCode(BaseModel):
    """Single-use E-Pin required to open an account."""

    id: UUID
    code: str
    created_by: str
    created_at: datetime
    used: bool = False
    used_by: Optional[UUID] = None
    used_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- Requests ---


class GrantRewardRequest(BaseModel):
    user_id: UUID
    reward_type: RewardType
    reference_id: Optional[str] = None


class AdjustFundsRequest(BaseModel):
    amount: Decimal = Field(..., description="Signed amount; negative deducts")
    reason: str = ""


class PayoutInstruction(BaseModel):
    method: PayoutMethod
    mobile_strategy: MobileStrategy = MobileStrategy.REGISTERED
    provider: str = "Airtel"
    beneficiary_id: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    save_beneficiary: bool = False
    bank_details: Optional[str] = None


class SubmitWithdrawalRequest(BaseModel):
    user_id: UUID
    amount: Decimal
    source: BalanceSource = BalanceSource.ACTIVITY
    payout: PayoutInstruction

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 1000,
            "source": "ACTIVITY",
            "payout": {"method": "Mobile", "mobile_strategy": "Registered", "provider": "Airtel"},
        }
    })


class ResolveWithdrawalRequest(BaseModel):
    decision: WithdrawalStatus


class RegisterUserRequest(BaseModel):
    username: str
    email: str
    phone_number: str
    password: str
    referral_code: Optional[str] = None
    invite_code: Optional[str] = Field(None, description="E-Pin bought from the platform")


class LoginRequest(BaseModel):
    identifier: str = Field(..., description="Email address or phone number")
    password: str


class ResetPasswordRequest(BaseModel):
    new_password: str


class SubmitPostRequest(BaseModel):
    author_id: UUID
    title: str
    category: Category
    content: str


class ModeratePostsRequest(BaseModel):
    post_ids: list[UUID]
    decision: PostStatus


class SubmitCommentRequest(BaseModel):
    user_id: UUID
    text: str


class CreateInviteCodeRequest(BaseModel):
    code: Optional[str] = Field(None, description="Leave empty to generate one")


class SetAdminRequest(BaseModel):
    is_admin: bool = True


# --- Responses ---


class OperationResult(BaseModel):
    success: bool
    error: Optional[ErrorKind] = None
    message: str = ""


class RewardResponse(OperationResult):
    reward_type: RewardType
    amount: Decimal = Decimal("0.00")
    ledger_entry: Optional[LedgerEntry] = None


class EntryResponse(OperationResult):
    ledger_entry: Optional[LedgerEntry] = None


class WithdrawalResponse(OperationResult):
    withdrawal: Optional[Withdrawal] = None
    ledger_entry: Optional[LedgerEntry] = None


class RegistrationResponse(OperationResult):
    user: Optional[UserProfile] = None
    referral_bonus_awarded: bool = False


class LoginResponse(OperationResult):
    user: Optional[UserProfile] = None


class PostResponse(OperationResult):
    post: Optional[Post] = None


class CommentResponse(OperationResult):
    comment: Optional[Comment] = None
    reward: Optional[RewardResponse] = None


class InviteCodeResponse(OperationResult):
    invite_code: Optional[InviteCode] = None


class ModerationSummary(BaseModel):
    decision: PostStatus
    requested: int
    processed: int
    results: list[PostResponse]


class UserBalance(BaseModel):
    user_id: UUID
    activity_points: Decimal
    referral_earnings: Decimal
    ledger_activity_total: Decimal
    ledger_referral_total: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None
    reconciled: bool

    model_config = ConfigDict(from_attributes=True)


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    activity_points: Decimal
    referral_earnings: Decimal


class PlatformStats(BaseModel):
    users: int
    total_paid: Decimal
    pending_withdrawals: int


class TransactionFeed(BaseModel):
    entries: list[LedgerEntry]
    total_count: int
