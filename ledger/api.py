from datetime import datetime
from typing import Callable, Optional
from uuid import UUID
from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from rewards import RewardType

from .accounts import AccountService
from .comments import CommentService
from .errors import NotFoundError
from .logging_config import setup_logging
from .models import (
    AdjustFundsRequest,
    Comment,
    CommentResponse,
    CreateInviteCodeRequest,
    EntryResponse,
    EntryType,
    ErrorKind,
    GrantRewardRequest,
    InviteCode,
    InviteCodeResponse,
    LedgerHistoryResponse,
    LoginRequest,
    LoginResponse,
    ModeratePostsRequest,
    ModerationSummary,
    OperationResult,
    PlatformStats,
    Post,
    PostResponse,
    PostStatus,
    RegisterUserRequest,
    RegistrationResponse,
    ResetPasswordRequest,
    ResolveWithdrawalRequest,
    RewardResponse,
    SetAdminRequest,
    SubmitCommentRequest,
    SubmitPostRequest,
    SubmitWithdrawalRequest,
    TransactionFeed,
    User,
    UserBalance,
    UserProfile,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .invites import InviteService
from .moderation import ModerationService
from .security import hash_password
from .service import LedgerService
from .settings import Settings, settings as default_settings
from .storage import InMemoryStorage, seed_demo_data
from .withdrawals import WithdrawalService

# COMMENT pays through posting a comment, POST_APPROVED through moderation
SELF_SERVICE_REWARDS = (RewardType.DAILY, RewardType.READ)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_CLAIMED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_RESOLVED: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.VALIDATION_FAILURE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STORAGE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def raise_for_result(result: OperationResult) -> None:
    if result.success:
        return
    error = result.error or ErrorKind.VALIDATION_FAILURE
    raise HTTPException(
        status_code=ERROR_STATUS.get(error, status.HTTP_400_BAD_REQUEST),
        detail={"error": error.value, "message": result.message},
    )


def not_found(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": ErrorKind.NOT_FOUND.value, "message": message},
    )


def create_app(
    storage: Optional[InMemoryStorage] = None,
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or default_settings
    storage = storage or InMemoryStorage()
    if settings.seed_demo_data and not storage.users:
        seed_demo_data(storage, hash_password(settings.demo_password))

    ledger_service = LedgerService(storage=storage, settings=settings, clock=clock)
    withdrawal_service = WithdrawalService(ledger_service)
    account_service = AccountService(ledger_service, withdrawal_service)
    moderation_service = ModerationService(ledger_service)
    comment_service = CommentService(ledger_service)
    invite_service = InviteService(ledger_service)

    app = FastAPI(
        title="Reader Rewards Ledger API",
        description="Rewards, referral bonuses and withdrawals for a news-reading platform",
        version="1.0.0",
        root_path=root_path,
    )
    app.state.ledger_service = ledger_service
    app.state.withdrawal_service = withdrawal_service
    app.state.account_service = account_service
    app.state.moderation_service = moderation_service
    app.state.comment_service = comment_service
    app.state.invite_service = invite_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.allowed_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_admin(x_admin_id: Optional[UUID] = Header(default=None)) -> User:
        admin = storage.load_user(x_admin_id) if x_admin_id else None
        if admin is None or not admin.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
        return admin

    # --- System ---

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/stats", response_model=PlatformStats, tags=["System"])
    def platform_stats() -> PlatformStats:
        return account_service.platform_stats()

    # --- Rewards ---

    @app.get("/rewards/rules", tags=["Rewards"])
    def list_reward_rules() -> list[dict]:
        return [rule.to_dict() for rule in ledger_service.guard.list_rules()]

    @app.post("/rewards", response_model=RewardResponse, status_code=status.HTTP_201_CREATED, tags=["Rewards"])
    def grant_reward(request: GrantRewardRequest) -> RewardResponse:
        if request.reward_type not in SELF_SERVICE_REWARDS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": ErrorKind.VALIDATION_FAILURE.value,
                    "message": f"{request.reward_type.value} rewards are earned through their own action",
                },
            )
        result = ledger_service.grant_reward(request.user_id, request.reward_type, request.reference_id)
        raise_for_result(result)
        return result

    # --- Users ---

    @app.post("/users", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def register_user(request: RegisterUserRequest) -> RegistrationResponse:
        result = account_service.register_user(request)
        raise_for_result(result)
        return result

    @app.post("/auth/login", response_model=LoginResponse, tags=["Users"])
    def login(request: LoginRequest) -> LoginResponse:
        result = account_service.authenticate(request.identifier, request.password)
        if not result.success:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.message)
        return result

    @app.get("/users", response_model=list[UserProfile], tags=["Admin"])
    def list_users(admin: User = Depends(require_admin)) -> list[UserProfile]:
        return account_service.list_users()

    @app.get("/users/{user_id}", response_model=UserProfile, tags=["Users"])
    def get_user(user_id: UUID) -> UserProfile:
        try:
            return ledger_service.get_user(user_id).to_profile()
        except NotFoundError as e:
            raise not_found(str(e))

    @app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
    def get_user_balance(user_id: UUID) -> UserBalance:
        try:
            return ledger_service.get_balance(user_id)
        except NotFoundError as e:
            raise not_found(str(e))

    @app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
    def get_user_ledger(user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        try:
            return ledger_service.get_ledger_history(user_id, limit, offset)
        except NotFoundError as e:
            raise not_found(str(e))

    @app.post("/users/{user_id}/adjustments", response_model=EntryResponse, tags=["Admin"])
    def adjust_funds(
        user_id: UUID, request: AdjustFundsRequest, admin: User = Depends(require_admin)
    ) -> EntryResponse:
        result = ledger_service.adjust_funds(user_id, request.amount, request.reason, performed_by=admin.email)
        raise_for_result(result)
        return result

    @app.post("/users/{user_id}/password", response_model=OperationResult, tags=["Admin"])
    def reset_password(
        user_id: UUID, request: ResetPasswordRequest, admin: User = Depends(require_admin)
    ) -> OperationResult:
        result = account_service.reset_password(user_id, request.new_password)
        raise_for_result(result)
        return result

    @app.delete("/users/{user_id}", response_model=OperationResult, tags=["Admin"])
    def delete_user(user_id: UUID, admin: User = Depends(require_admin)) -> OperationResult:
        result = account_service.delete_user(user_id)
        raise_for_result(result)
        return result

    @app.post("/users/{user_id}/admin", response_model=OperationResult, tags=["Admin"])
    def set_admin(user_id: UUID, request: SetAdminRequest, admin: User = Depends(require_admin)) -> OperationResult:
        result = account_service.set_admin(user_id, request.is_admin, performed_by=admin.email)
        raise_for_result(result)
        return result

    @app.get("/transactions", response_model=TransactionFeed, tags=["Admin"])
    def list_transactions(
        limit: int = 100, offset: int = 0, entry_type: Optional[EntryType] = None,
        admin: User = Depends(require_admin),
    ) -> TransactionFeed:
        return ledger_service.list_transactions(limit, offset, entry_type)

    # --- Invite codes ---

    @app.post("/invite-codes", response_model=InviteCodeResponse, status_code=status.HTTP_201_CREATED, tags=["Admin"])
    def create_invite_code(
        request: CreateInviteCodeRequest, admin: User = Depends(require_admin)
    ) -> InviteCodeResponse:
        result = invite_service.create_invite_code(request.code, created_by=admin.email)
        raise_for_result(result)
        return result

    @app.get("/invite-codes", response_model=list[InviteCode], tags=["Admin"])
    def list_invite_codes(used: Optional[bool] = None, admin: User = Depends(require_admin)) -> list[InviteCode]:
        return invite_service.list_invite_codes(used)

    # --- Withdrawals ---

    @app.post("/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
    def submit_withdrawal(request: SubmitWithdrawalRequest) -> WithdrawalResponse:
        result = withdrawal_service.submit_withdrawal(request)
        raise_for_result(result)
        return result

    @app.get("/withdrawals", response_model=list[Withdrawal], tags=["Withdrawals"])
    def list_withdrawals(
        user_id: Optional[UUID] = None, status: Optional[WithdrawalStatus] = None
    ) -> list[Withdrawal]:
        return withdrawal_service.list_withdrawals(user_id=user_id, status=status)

    @app.get("/withdrawals/{withdrawal_id}", response_model=Withdrawal, tags=["Withdrawals"])
    def get_withdrawal(withdrawal_id: UUID) -> Withdrawal:
        try:
            return withdrawal_service.get_withdrawal(withdrawal_id)
        except NotFoundError as e:
            raise not_found(str(e))

    @app.post("/withdrawals/{withdrawal_id}/resolve", response_model=WithdrawalResponse, tags=["Admin"])
    def resolve_withdrawal(
        withdrawal_id: UUID, request: ResolveWithdrawalRequest, admin: User = Depends(require_admin)
    ) -> WithdrawalResponse:
        result = withdrawal_service.resolve_withdrawal(withdrawal_id, request.decision, performed_by=admin.email)
        raise_for_result(result)
        return result

    # --- Posts ---

    @app.post("/posts", response_model=PostResponse, status_code=status.HTTP_201_CREATED, tags=["Posts"])
    def submit_post(request: SubmitPostRequest) -> PostResponse:
        result = moderation_service.submit_post(request)
        raise_for_result(result)
        return result

    @app.get("/posts", response_model=list[Post], tags=["Posts"])
    def list_posts(status: Optional[PostStatus] = None) -> list[Post]:
        return moderation_service.list_posts(status)

    @app.post("/posts/{post_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED, tags=["Posts"])
    def submit_comment(post_id: UUID, request: SubmitCommentRequest) -> CommentResponse:
        result = comment_service.submit_comment(post_id, request)
        raise_for_result(result)
        return result

    @app.get("/posts/{post_id}/comments", response_model=list[Comment], tags=["Posts"])
    def list_comments(post_id: UUID) -> list[Comment]:
        return comment_service.list_comments(post_id)

    @app.post("/posts/{post_id}/approve", response_model=PostResponse, tags=["Admin"])
    def approve_post(post_id: UUID, admin: User = Depends(require_admin)) -> PostResponse:
        result = moderation_service.approve_post(post_id)
        raise_for_result(result)
        return result

    @app.post("/posts/{post_id}/reject", response_model=PostResponse, tags=["Admin"])
    def reject_post(post_id: UUID, admin: User = Depends(require_admin)) -> PostResponse:
        result = moderation_service.reject_post(post_id)
        raise_for_result(result)
        return result

    @app.post("/posts/moderate", response_model=ModerationSummary, tags=["Admin"])
    def moderate_posts(request: ModeratePostsRequest, admin: User = Depends(require_admin)) -> ModerationSummary:
        try:
            return moderation_service.moderate_posts(request.post_ids, request.decision)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
