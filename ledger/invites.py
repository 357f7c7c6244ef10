"""E-Pins: single-use invite codes that gate registration."""

from typing import Optional
from uuid import uuid4

from .accounts import generate_referral_code
from .errors import LedgerServiceError, ValidationFailureError
from .logging_config import get_logger
from .models import InviteCode, InviteCodeResponse
from .service import LedgerService


class InviteService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = ledger.settings
        self.logger = get_logger(__name__)

    def create_invite_code(self, code: Optional[str] = None, created_by: str = "admin") -> InviteCodeResponse:
        code = (code or "").strip().upper() or generate_referral_code(self.settings.invite_code_length)
        try:
            if self.storage.find_invite_code(code) is not None:
                raise ValidationFailureError(f"Invite code {code} already exists")
            invite = InviteCode(id=uuid4(), code=code, created_by=created_by, created_at=self.ledger.now())
            with self.storage.transaction() as unit:
                unit.save_invite_code(invite)
        except LedgerServiceError as e:
            return InviteCodeResponse(**self.ledger.describe_failure(e, "invite_creation", code=code))

        self.logger.info("invite_code_created", code=code, created_by=created_by)
        return InviteCodeResponse(success=True, invite_code=invite, message=f"Invite code {code} created")

    def list_invite_codes(self, used: Optional[bool] = None) -> list[InviteCode]:
        codes = [c for c in self.storage.list_invite_codes() if used is None or c.used == used]
        codes.sort(key=lambda c: c.created_at, reverse=True)
        return codes
