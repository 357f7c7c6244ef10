"""
Reward Eligibility Package

Decides whether a reward may be granted for a user snapshot and which
state change marks it as claimed:
- DAILY: once per calendar day
- READ / COMMENT: once per published article
- POST_APPROVED: only on the Pending -> Approved transition
"""

from .rule_engine import (
    RewardEligibilityGuard,
    RewardRule,
    Condition,
    Claim,
    ConditionOperator,
    ClaimType,
    DenialReason,
    EligibilityDecision,
    RewardType,
    create_default_rules,
)

__all__ = [
    "RewardEligibilityGuard",
    "RewardRule",
    "Condition",
    "Claim",
    "ConditionOperator",
    "ClaimType",
    "DenialReason",
    "EligibilityDecision",
    "RewardType",
    "create_default_rules",
]
