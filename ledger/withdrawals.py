"""Withdrawal reconciliation.

Funds leave the chosen balance the moment a request is submitted. The
request then moves ``Pending -> Paid`` or ``Pending -> Rejected`` exactly
once; a rejection puts the amount back into the same balance through a
compensating ``REFUND`` entry.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    AlreadyResolvedError,
    InsufficientFundsError,
    LedgerServiceError,
    NotFoundError,
    ValidationFailureError,
)
from .logging_config import get_logger
from .models import (
    BalanceSource,
    Beneficiary,
    EntryType,
    LedgerEntry,
    MobileStrategy,
    PayoutInstruction,
    PayoutMethod,
    SubmitWithdrawalRequest,
    User,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .service import LedgerService, to_money

SOURCE_LABELS = {
    BalanceSource.ACTIVITY: "Activity",
    BalanceSource.REFERRAL: "Referral",
}


class WithdrawalService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = ledger.settings
        self.logger = get_logger(__name__)

    def minimum_for(self, source: BalanceSource) -> Decimal:
        if source == BalanceSource.ACTIVITY:
            return self.settings.activity_withdrawal_minimum
        return self.settings.referral_withdrawal_minimum

    # --- Submission ---

    def submit_withdrawal(self, request: SubmitWithdrawalRequest) -> WithdrawalResponse:
        try:
            withdrawal, entry = self._submit(request)
        except LedgerServiceError as e:
            return WithdrawalResponse(**self.ledger.describe_failure(
                e, "withdrawal", user_id=str(request.user_id), source=request.source.value,
            ))

        self.logger.info(
            "withdrawal_submitted", withdrawal_id=str(withdrawal.id), user_id=str(withdrawal.user_id),
            amount=str(withdrawal.amount), source=withdrawal.source.value,
        )
        return WithdrawalResponse(
            success=True, withdrawal=withdrawal, ledger_entry=entry,
            message="Withdrawal request submitted",
        )

    def _submit(self, request: SubmitWithdrawalRequest) -> tuple[Withdrawal, LedgerEntry]:
        source = request.source
        label = SOURCE_LABELS[source]
        amount = to_money(request.amount)
        minimum, maximum = self.minimum_for(source), self.settings.withdrawal_maximum
        if amount < minimum or amount > maximum:
            raise ValidationFailureError(
                f"Withdrawal must be between {self.settings.format_amount(minimum)} and "
                f"{self.settings.format_amount(maximum)} for {label} balance."
            )

        with self.storage.locked(request.user_id):
            user = self.ledger.require_user(request.user_id)
            if user.balance_of(source) < amount:
                raise InsufficientFundsError(f"Insufficient funds in {label} wallet.")

            details, user = self.resolve_payout_details(user, request.payout)
            withdrawal_id = uuid4()
            updated, entry = self.ledger.apply_entry(
                user, EntryType.WITHDRAWAL, -amount, source,
                f"Withdrawal ({source.value}): {details}", reference_id=str(withdrawal_id),
            )
            withdrawal = Withdrawal(
                id=withdrawal_id,
                user_id=user.id,
                username=user.username,
                amount=amount,
                source=source,
                details=details,
                status=WithdrawalStatus.PENDING,
                created_at=entry.created_at,
            )

            with self.storage.transaction() as unit:
                unit.save_user(updated)
                unit.save_withdrawal(withdrawal)
                unit.add_entry(entry)
        return withdrawal, entry

    def resolve_payout_details(self, user: User, payout: PayoutInstruction) -> tuple[str, User]:
        """Turn a payout instruction into the details text admins pay against.

        Returns the (possibly updated) user: a new mobile number can be kept
        as a saved beneficiary.
        """
        if payout.method == PayoutMethod.BANK:
            bank_details = (payout.bank_details or "").strip()
            if not bank_details:
                raise ValidationFailureError("Please provide bank details.")
            return f"Bank Transfer: {bank_details}", user

        if payout.mobile_strategy == MobileStrategy.REGISTERED:
            name, number, provider = user.username, user.phone_number, payout.provider
        elif payout.mobile_strategy == MobileStrategy.SAVED:
            beneficiary = next((b for b in user.saved_beneficiaries if b.id == payout.beneficiary_id), None)
            if beneficiary is None:
                raise ValidationFailureError("Please select a valid saved beneficiary.")
            name, number, provider = beneficiary.name, beneficiary.number, beneficiary.provider
        else:
            name = (payout.account_name or "").strip()
            number = (payout.account_number or "").strip()
            provider = payout.provider
            if not name or not number:
                raise ValidationFailureError("Please enter account name and number.")
            if payout.save_beneficiary:
                beneficiary = Beneficiary(id=uuid4().hex[:9], name=name, number=number, provider=provider)
                user = user.model_copy(update={"saved_beneficiaries": [*user.saved_beneficiaries, beneficiary]})

        return f"{provider} Mobile Money - {name} ({number})", user

    # --- Resolution ---

    def resolve_withdrawal(
        self, withdrawal_id: UUID, decision: WithdrawalStatus, performed_by: Optional[str] = None
    ) -> WithdrawalResponse:
        decision = WithdrawalStatus(decision)
        try:
            withdrawal, entry = self._resolve(withdrawal_id, decision, performed_by)
        except LedgerServiceError as e:
            return WithdrawalResponse(**self.ledger.describe_failure(
                e, "withdrawal_resolution", withdrawal_id=str(withdrawal_id), decision=decision.value,
            ))

        self.logger.info(
            "withdrawal_resolved", withdrawal_id=str(withdrawal_id), status=decision.value,
            refunded=str(entry.amount) if entry else None, performed_by=performed_by,
        )
        if decision == WithdrawalStatus.REJECTED:
            message = f"Withdrawal rejected. {self.settings.format_amount(withdrawal.amount)} has been refunded."
        else:
            message = "Withdrawal marked as paid."
        return WithdrawalResponse(success=True, withdrawal=withdrawal, ledger_entry=entry, message=message)

    def _resolve(
        self, withdrawal_id: UUID, decision: WithdrawalStatus, performed_by: Optional[str]
    ) -> tuple[Withdrawal, Optional[LedgerEntry]]:
        if decision == WithdrawalStatus.PENDING:
            raise ValidationFailureError("Decision must be Paid or Rejected")

        with self.storage.locked(withdrawal_id):
            withdrawal = self.get_withdrawal(withdrawal_id)
            if not withdrawal.can_resolve():
                raise AlreadyResolvedError(
                    f"This request has already been processed as {withdrawal.status.value}."
                )

            now = self.ledger.now()
            resolved = withdrawal.model_copy(update={
                "status": decision,
                "details": f"{withdrawal.details} [{decision.value.upper()} @ {now.isoformat(timespec='seconds')}]",
                "resolved_at": now,
                "resolved_by": performed_by,
            })

            with self.storage.locked(withdrawal.user_id):
                updated, entry = None, None
                if decision == WithdrawalStatus.REJECTED:
                    user = self.storage.load_user(withdrawal.user_id)
                    if user is None:
                        raise NotFoundError("Withdrawal owner no longer exists")
                    updated, entry = self.ledger.apply_entry(
                        user, EntryType.REFUND, withdrawal.amount, withdrawal.source,
                        f"Refund for rejected withdrawal {withdrawal.id}", reference_id=str(withdrawal.id),
                    )

                with self.storage.transaction() as unit:
                    unit.save_withdrawal(resolved)
                    if updated is not None:
                        unit.save_user(updated)
                        unit.add_entry(entry)
        return resolved, entry

    # --- Queries ---

    def get_withdrawal(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = self.storage.load_withdrawal(withdrawal_id)
        if withdrawal is None:
            raise NotFoundError("Withdrawal not found")
        return withdrawal

    def list_withdrawals(
        self, user_id: Optional[UUID] = None, status: Optional[WithdrawalStatus] = None
    ) -> list[Withdrawal]:
        withdrawals = [
            w for w in self.storage.list_withdrawals()
            if (user_id is None or w.user_id == user_id) and (status is None or w.status == status)
        ]
        withdrawals.sort(key=lambda w: w.created_at, reverse=True)
        return withdrawals

    def total_paid(self) -> Decimal:
        return sum(
            (w.amount for w in self.list_withdrawals(status=WithdrawalStatus.PAID)), Decimal("0.00")
        )
