"""
Rewards Ledger for a News-Reading Platform

This module provides:
- Two balances per user: activity points and referral earnings
- Immutable ledger entries for every balance change
- Reward grants guarded against double claims
- Withdrawals: optimistic deduction, then Paid or Rejected (refunded) exactly once
- Per-user serialized, all-or-nothing commits
"""

from .models import (
    BalanceSource,
    EntryType,
    ErrorKind,
    LedgerEntry,
    User,
    UserBalance,
    Withdrawal,
    WithdrawalStatus,
)
from .service import LedgerService
from .withdrawals import WithdrawalService

__all__ = [
    "BalanceSource",
    "EntryType",
    "ErrorKind",
    "LedgerEntry",
    "User",
    "UserBalance",
    "Withdrawal",
    "WithdrawalStatus",
    "LedgerService",
    "WithdrawalService",
]
