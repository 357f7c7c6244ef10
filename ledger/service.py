from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Union
from uuid import UUID, uuid4

from rewards import RewardEligibilityGuard, RewardType, create_default_rules

from .errors import (
    LedgerServiceError,
    NotFoundError,
    StorageError,
    ValidationFailureError,
    error_for_kind,
)
from .logging_config import get_logger
from .models import (
    BalanceSource,
    EntryResponse,
    EntryType,
    ErrorKind,
    LedgerEntry,
    LedgerHistoryResponse,
    OperationResult,
    Post,
    RewardResponse,
    TransactionFeed,
    User,
    UserBalance,
)
from .settings import Settings, settings as default_settings
from .storage import InMemoryStorage

CENT = Decimal("0.01")

# Rewards whose reference_id names a post
POST_REWARDS = (RewardType.READ, RewardType.COMMENT, RewardType.POST_APPROVED)


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Parse an amount of kwacha, refusing anything finer than ngwee."""
    try:
        amount = Decimal(str(value))
        money = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationFailureError(f"Invalid amount: {value!r}")
    if money != amount:
        raise ValidationFailureError(f"Amounts may have at most two decimal places: {value}")
    return money


def parse_post_id(reference_id: Optional[str]) -> Optional[UUID]:
    if not reference_id:
        return None
    try:
        return UUID(str(reference_id))
    except ValueError:
        return None


class LedgerService:
    """Owns every mutation of a user's activity and referral balances.

    Each mutation runs under the user's row lock, reloads the user, and
    commits the updated user together with its ledger entry as one unit.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        guard: Optional[RewardEligibilityGuard] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or default_settings
        self.storage = storage or InMemoryStorage()
        self.guard = guard or RewardEligibilityGuard(create_default_rules(
            daily_amount=self.settings.daily_reward_amount,
            read_amount=self.settings.read_reward_amount,
            comment_amount=self.settings.comment_reward_amount,
            post_approved_amount=self.settings.post_approved_reward_amount,
        ))
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger(__name__)

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return self.now().date()

    # --- Rewards ---

    def grant_reward(
        self, user_id: UUID, reward_type: RewardType, reference_id: Optional[str] = None
    ) -> RewardResponse:
        reward_type = RewardType(reward_type)
        try:
            entry = self._grant_reward(user_id, reward_type, reference_id)
        except LedgerServiceError as e:
            return RewardResponse(
                reward_type=reward_type,
                **self.describe_failure(e, "reward", user_id=str(user_id), reward_type=reward_type.value),
            )

        self.logger.info(
            "reward_granted", user_id=str(user_id), reward_type=reward_type.value,
            amount=str(entry.amount), reference_id=reference_id,
        )
        return RewardResponse(
            success=True,
            reward_type=reward_type,
            amount=entry.amount,
            ledger_entry=entry,
            message=f"Earned {self.settings.format_amount(entry.amount)}",
        )

    def _grant_reward(self, user_id: UUID, reward_type: RewardType, reference_id: Optional[str]) -> LedgerEntry:
        post_id = parse_post_id(reference_id) if reward_type in POST_REWARDS else None
        # Only approval changes the post; lock order is post, then user.
        moves_post = reward_type == RewardType.POST_APPROVED and post_id is not None
        lock_keys = [post_id, user_id] if moves_post else [user_id]
        with self.storage.locked(*lock_keys):
            user = self.require_user(user_id)
            post = self.storage.load_post(post_id) if post_id else None
            context = {
                "user": user.model_dump(),
                "reference_id": reference_id,
                "today": self.today(),
                "post": post.model_dump() if post else None,
            }

            decision = self.guard.evaluate(reward_type, context)
            if not decision.allowed:
                raise error_for_kind(ErrorKind(decision.reason.value), decision.message)
            decision.apply(context)

            description = f"{reward_type.value} Reward"
            if reference_id:
                description += f" (ID: {reference_id})"
            updated, entry = self.apply_entry(
                User(**context["user"]), EntryType.EARN, decision.amount, BalanceSource.ACTIVITY,
                description, reference_id=reference_id, metadata={"reward_type": reward_type.value},
            )

            with self.storage.transaction() as unit:
                unit.save_user(updated)
                if moves_post:
                    unit.save_post(Post(**context["post"]))
                unit.add_entry(entry)
        return entry

    # --- Direct adjustments ---

    def adjust_funds(
        self, user_id: UUID, amount: Union[Decimal, int, float, str], reason: str = "",
        performed_by: Optional[str] = None,
    ) -> EntryResponse:
        """Admin-only change of the activity balance by a signed amount.

        No floor is applied: an administrator may push a balance below zero.
        """
        reason = (reason or "").strip() or "Manual Admin Adjustment"
        try:
            amount = to_money(amount)
            if amount == 0:
                raise ValidationFailureError("Adjustment amount must be non-zero")
            with self.storage.locked(user_id):
                user = self.require_user(user_id)
                updated, entry = self.apply_entry(
                    user, EntryType.ADJUSTMENT, amount, BalanceSource.ACTIVITY, reason,
                    metadata={"performed_by": performed_by} if performed_by else None,
                )
                with self.storage.transaction() as unit:
                    unit.save_user(updated)
                    unit.add_entry(entry)
        except LedgerServiceError as e:
            return EntryResponse(**self.describe_failure(e, "adjustment", user_id=str(user_id)))

        self.logger.info(
            "funds_adjusted", user_id=str(user_id), amount=str(amount),
            reason=reason, performed_by=performed_by,
        )
        return EntryResponse(
            success=True, ledger_entry=entry,
            message=f"Adjusted activity balance by {self.settings.format_amount(amount)}",
        )

    def award_referral_bonus(
        self, referrer_id: UUID, new_user_display_name: str, referred_user_id: Optional[UUID] = None
    ) -> EntryResponse:
        bonus = self.settings.referral_bonus_amount
        try:
            with self.storage.locked(referrer_id):
                referrer = self.require_user(referrer_id)
                updated, entry = self.apply_entry(
                    referrer, EntryType.REFERRAL_BONUS, bonus, BalanceSource.REFERRAL,
                    f"Referral Bonus for inviting {new_user_display_name}",
                    reference_id=str(referred_user_id) if referred_user_id else None,
                )
                updated = updated.model_copy(update={"referral_count": referrer.referral_count + 1})
                with self.storage.transaction() as unit:
                    unit.save_user(updated)
                    unit.add_entry(entry)
        except LedgerServiceError as e:
            return EntryResponse(**self.describe_failure(e, "referral_bonus", referrer_id=str(referrer_id)))

        self.logger.info("referral_bonus_awarded", referrer_id=str(referrer_id), amount=str(bonus))
        return EntryResponse(
            success=True, ledger_entry=entry,
            message=f"Referral bonus of {self.settings.format_amount(bonus)} awarded",
        )

    # --- Building blocks shared with withdrawals ---

    def apply_entry(
        self,
        user: User,
        entry_type: EntryType,
        amount: Decimal,
        source: BalanceSource,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> tuple[User, LedgerEntry]:
        """Return the user with ``amount`` applied to ``source`` and the matching entry.

        Nothing is persisted; the caller commits both in one unit of work.
        """
        new_balance = user.balance_of(source) + amount
        entry = LedgerEntry(
            id=uuid4(),
            user_id=user.id,
            entry_type=entry_type,
            amount=amount,
            balance=source,
            balance_after=new_balance,
            reference_id=reference_id,
            description=description,
            created_at=self.now(),
            metadata=metadata or {},
        )
        return user.with_balance(source, new_balance), entry

    def require_user(self, user_id: UUID) -> User:
        user = self.storage.load_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def describe_failure(self, error: LedgerServiceError, operation: str, **context) -> dict:
        if isinstance(error, StorageError):
            self.logger.error("storage_commit_failed", operation=operation, error=str(error), **context)
            return {"success": False, "error": error.kind, "message": "Database error"}
        self.logger.info(f"{operation}_rejected", error=error.kind.value, reason=str(error), **context)
        return {"success": False, "error": error.kind, "message": str(error)}

    def failure(self, error: LedgerServiceError, operation: str, **context) -> OperationResult:
        return OperationResult(**self.describe_failure(error, operation, **context))

    # --- Queries ---

    def get_user(self, user_id: UUID) -> User:
        return self.require_user(user_id)

    def get_balance(self, user_id: UUID) -> UserBalance:
        user = self.require_user(user_id)
        entries = self.storage.entries_for(user_id)

        activity_total = sum(
            (e.amount for e in entries if e.balance == BalanceSource.ACTIVITY), Decimal("0.00")
        )
        referral_total = sum(
            (e.amount for e in entries if e.balance == BalanceSource.REFERRAL), Decimal("0.00")
        )
        last_entry = max(entries, key=lambda e: e.created_at) if entries else None

        return UserBalance(
            user_id=user_id,
            activity_points=user.activity_points,
            referral_earnings=user.referral_earnings,
            ledger_activity_total=activity_total,
            ledger_referral_total=referral_total,
            total_entries=len(entries),
            last_transaction_at=last_entry.created_at if last_entry else None,
            reconciled=(activity_total == user.activity_points and referral_total == user.referral_earnings),
        )

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        user = self.require_user(user_id)
        all_entries = self.storage.entries_for(user_id)
        all_entries.sort(key=lambda e: e.created_at, reverse=True)
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            user_id=user_id,
            entries=paginated,
            total_count=len(all_entries),
            activity_points=user.activity_points,
            referral_earnings=user.referral_earnings,
        )

    def list_transactions(
        self, limit: int = 100, offset: int = 0, entry_type: Optional[EntryType] = None
    ) -> TransactionFeed:
        """Platform-wide ledger feed for administrators, newest first."""
        entries = [
            e for e in self.storage.list_entries()
            if entry_type is None or e.entry_type == entry_type
        ]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return TransactionFeed(entries=entries[offset:offset + limit], total_count=len(entries))
