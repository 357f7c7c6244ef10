"""User accounts: sign-up with referral codes, login and admin maintenance."""

import secrets
from typing import Optional
from uuid import UUID, uuid4

from .errors import LedgerServiceError, ValidationFailureError
from .logging_config import get_logger
from .models import (
    LoginResponse,
    OperationResult,
    PlatformStats,
    RegisterUserRequest,
    RegistrationResponse,
    User,
    UserProfile,
    WithdrawalStatus,
)
from .security import hash_password, verify_password
from .service import LedgerService
from .withdrawals import WithdrawalService

# No 0, O, I, l or 1
REFERRAL_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"

INVALID_INVITE_MESSAGE = "Invalid or already used E-Pin. Please purchase a valid PIN."


def generate_referral_code(length: int = 8) -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


class AccountService:
    def __init__(self, ledger: LedgerService, withdrawals: Optional[WithdrawalService] = None):
        self.ledger = ledger
        self.withdrawals = withdrawals or WithdrawalService(ledger)
        self.storage = ledger.storage
        self.settings = ledger.settings
        self.logger = get_logger(__name__)

    def register_user(self, request: RegisterUserRequest) -> RegistrationResponse:
        """Create an account and pay the referrer when a valid code is given.

        The referral bonus is credited only after the new user row exists;
        a failed bonus does not undo the sign-up.
        """
        try:
            user = self._create_user(request)
        except LedgerServiceError as e:
            return RegistrationResponse(**self.ledger.describe_failure(e, "registration", email=request.email))

        bonus_awarded = False
        if user.referred_by is not None:
            bonus = self.ledger.award_referral_bonus(user.referred_by, user.username, referred_user_id=user.id)
            bonus_awarded = bonus.success

        self.logger.info(
            "user_registered", user_id=str(user.id), referred_by=str(user.referred_by),
            invite_code=user.invite_code_used,
        )
        return RegistrationResponse(
            success=True, user=user.to_profile(), referral_bonus_awarded=bonus_awarded,
            message="Account created",
        )

    def _create_user(self, request: RegisterUserRequest) -> User:
        username = request.username.strip()
        email = request.email.strip().lower()
        phone_number = request.phone_number.strip()
        if not username or not email or not phone_number:
            raise ValidationFailureError("Username, email and phone number are required.")
        if len(request.password) < self.settings.min_password_length:
            raise ValidationFailureError(
                f"Password must be at least {self.settings.min_password_length} characters long."
            )
        if email in {e.lower() for e in self.settings.admin_emails}:
            raise ValidationFailureError("This email address is reserved.")
        if self.storage.find_user(username=username, email=email, phone_number=phone_number):
            raise ValidationFailureError(
                "An account with these details (Email, Phone, or Username) already exists."
            )

        invite_code = (request.invite_code or "").strip().upper()
        invite = self.storage.find_invite_code(invite_code) if invite_code else None
        if (invite_code or self.settings.invite_code_required) and (invite is None or invite.used):
            raise ValidationFailureError(INVALID_INVITE_MESSAGE)

        referrer = None
        code = (request.referral_code or "").strip().upper()
        if code:
            referrer = self.storage.find_user(referral_code=code)
            if referrer is None:
                self.logger.warning("unknown_referral_code", code=code)

        user = User(
            id=uuid4(),
            username=username,
            email=email,
            phone_number=phone_number,
            password_hash=hash_password(request.password),
            referral_code=self._unique_referral_code(),
            referred_by=referrer.id if referrer else None,
            invite_code_used=invite.code if invite else None,
            created_at=self.ledger.now(),
        )
        with self.storage.locked(*([invite.id] if invite else [])):
            if invite is not None:
                invite = self.storage.load_invite_code(invite.id)
                if invite.used:
                    raise ValidationFailureError(INVALID_INVITE_MESSAGE)
                invite = invite.model_copy(update={"used": True, "used_by": user.id, "used_at": user.created_at})
            with self.storage.transaction() as unit:
                unit.save_user(user)
                if invite is not None:
                    unit.save_invite_code(invite)
        return user

    def _unique_referral_code(self) -> str:
        code = generate_referral_code(self.settings.referral_code_length)
        attempts = 0
        while self.storage.find_user(referral_code=code) and attempts < 10:
            code = generate_referral_code(self.settings.referral_code_length)
            attempts += 1
        return code

    def authenticate(self, identifier: str, password: str) -> LoginResponse:
        identifier = identifier.strip()
        user = self.storage.find_user(email=identifier.lower(), phone_number=identifier)
        if user is None or not verify_password(password, user.password_hash):
            self.logger.info("login_failed", identifier=identifier)
            return LoginResponse(success=False, message="Invalid credentials")
        return LoginResponse(success=True, user=user.to_profile(), message="Welcome back")

    # --- Admin maintenance ---

    def reset_password(self, user_id: UUID, new_password: str) -> OperationResult:
        try:
            if len(new_password) < self.settings.min_password_length:
                raise ValidationFailureError(
                    f"Password must be at least {self.settings.min_password_length} characters long."
                )
            with self.storage.locked(user_id):
                user = self.ledger.require_user(user_id)
                with self.storage.transaction() as unit:
                    unit.save_user(user.model_copy(update={"password_hash": hash_password(new_password)}))
        except LedgerServiceError as e:
            return self.ledger.failure(e, "password_reset", user_id=str(user_id))

        self.logger.info("password_reset", user_id=str(user_id))
        return OperationResult(success=True, message=f"Password for {user.username} has been reset.")

    def delete_user(self, user_id: UUID) -> OperationResult:
        """Hard-delete a user. Their ledger entries and withdrawals are kept."""
        try:
            with self.storage.locked(user_id):
                user = self.ledger.require_user(user_id)
                with self.storage.transaction() as unit:
                    unit.delete_user(user.id)
        except LedgerServiceError as e:
            return self.ledger.failure(e, "user_deletion", user_id=str(user_id))

        self.logger.warning("user_deleted", user_id=str(user_id))
        return OperationResult(success=True, message=f"User {user.username} deleted")

    def set_admin(self, user_id: UUID, is_admin: bool = True, performed_by: Optional[str] = None) -> OperationResult:
        try:
            with self.storage.locked(user_id):
                user = self.ledger.require_user(user_id)
                with self.storage.transaction() as unit:
                    unit.save_user(user.model_copy(update={"is_admin": is_admin}))
        except LedgerServiceError as e:
            return self.ledger.failure(e, "admin_change", user_id=str(user_id))

        self.logger.warning("admin_rights_changed", user_id=str(user_id), is_admin=is_admin, performed_by=performed_by)
        action = "granted" if is_admin else "revoked"
        return OperationResult(success=True, message=f"Admin rights {action} for {user.username}")

    # --- Queries ---

    def list_users(self) -> list[UserProfile]:
        users = sorted(self.storage.list_users(), key=lambda u: u.created_at)
        return [u.to_profile() for u in users]

    def platform_stats(self) -> PlatformStats:
        return PlatformStats(
            users=len(self.storage.users),
            total_paid=self.withdrawals.total_paid(),
            pending_withdrawals=len(self.withdrawals.list_withdrawals(status=WithdrawalStatus.PENDING)),
        )
