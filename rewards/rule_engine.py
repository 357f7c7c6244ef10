from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class RewardType(str, Enum):
    DAILY = "DAILY"
    READ = "READ"
    COMMENT = "COMMENT"
    POST_APPROVED = "POST_APPROVED"


class DenialReason(str, Enum):
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    IS_SET = "is_set"


class ClaimType(str, Enum):
    SET_FIELD = "set_field"
    APPEND_UNIQUE = "append_unique"


def get_field_value(context: dict, field_path: str) -> Any:
    value = context
    for part in field_path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        else:
            return None
    return value


def _parent_and_key(context: dict, field_path: str) -> tuple[dict, str]:
    *parents, key = field_path.split(".")
    target = context
    for part in parents:
        target = target[part]
    return target, key


@dataclass
class Condition:
    """A single predicate over the evaluation context.

    The right-hand side is either a literal ``value`` or another context
    path named by ``value_field``. A failing condition denies the reward
    with ``denial`` and ``message``.
    """

    field: str
    operator: ConditionOperator
    denial: DenialReason
    message: str
    value: Any = None
    value_field: Optional[str] = None

    def evaluate(self, context: dict) -> bool:
        field_value = get_field_value(context, self.field)
        compare_value = get_field_value(context, self.value_field) if self.value_field else self.value
        return self._apply_operator(field_value, compare_value)

    def _apply_operator(self, field_value: Any, compare_value: Any) -> bool:
        op = self.operator
        if op == ConditionOperator.EQUALS: return field_value == compare_value
        if op == ConditionOperator.NOT_EQUALS: return field_value != compare_value
        if op == ConditionOperator.IN: return field_value in compare_value if compare_value else False
        if op == ConditionOperator.NOT_IN: return field_value not in compare_value if compare_value else True
        if op == ConditionOperator.IS_SET: return field_value is not None and field_value != ""
        return False

    def to_dict(self) -> dict:
        data = {"field": self.field, "operator": self.operator.value, "denial": self.denial.value}
        if self.value_field:
            data["value_field"] = self.value_field
        elif self.value is not None:
            data["value"] = self.value
        return data


@dataclass
class Claim:
    """Marks a reward as claimed by writing into the context."""

    type: ClaimType
    field: str
    value: Any = None
    value_field: Optional[str] = None

    def apply(self, context: dict) -> None:
        value = get_field_value(context, self.value_field) if self.value_field else self.value
        target, key = _parent_and_key(context, self.field)
        if self.type == ClaimType.SET_FIELD:
            target[key] = value
        elif self.type == ClaimType.APPEND_UNIQUE:
            existing = list(target.get(key) or [])
            if value not in existing:
                existing.append(value)
            target[key] = existing

    def to_dict(self) -> dict:
        return {"type": self.type.value, "field": self.field, "value_field": self.value_field}


@dataclass
class RewardRule:
    reward_type: RewardType
    amount: Decimal
    conditions: list[Condition]
    claims: list[Claim] = field(default_factory=list)
    description: str = ""
    is_active: bool = True

    def first_failure(self, context: dict) -> Optional[Condition]:
        for condition in self.conditions:
            if not condition.evaluate(context):
                return condition
        return None

    def to_dict(self) -> dict:
        return {
            "reward_type": self.reward_type.value, "amount": str(self.amount),
            "description": self.description, "is_active": self.is_active,
            "conditions": [c.to_dict() for c in self.conditions],
            "claims": [c.to_dict() for c in self.claims],
        }


@dataclass
class EligibilityDecision:
    reward_type: RewardType
    allowed: bool
    amount: Decimal
    message: str = ""
    reason: Optional[DenialReason] = None
    claims: list[Claim] = field(default_factory=list)

    def apply(self, context: dict) -> None:
        if not self.allowed:
            raise ValueError(f"Cannot apply a denied {self.reward_type.value} decision")
        for claim in self.claims:
            claim.apply(context)


class RewardEligibilityGuard:
    """Decides whether a reward may be granted for a context snapshot.

    The context is a plain dict with ``user`` (a dumped user record),
    ``reference_id``, ``today`` and, when relevant, ``post``. Evaluation
    never mutates it; call ``EligibilityDecision.apply`` to mark the claim.
    """

    def __init__(self, rules: Optional[list[RewardRule]] = None):
        self.rules: dict[RewardType, RewardRule] = {}
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: RewardRule) -> None:
        self.rules[rule.reward_type] = rule

    def get_rule(self, reward_type: RewardType) -> Optional[RewardRule]:
        return self.rules.get(reward_type)

    def list_rules(self) -> list[RewardRule]:
        return list(self.rules.values())

    def evaluate(self, reward_type: RewardType, context: dict) -> EligibilityDecision:
        rule = self.get_rule(reward_type)
        if rule is None or not rule.is_active:
            return EligibilityDecision(
                reward_type=reward_type, allowed=False, amount=Decimal("0.00"),
                reason=DenialReason.VALIDATION_FAILURE,
                message=f"No active reward rule for {reward_type.value}",
            )

        failed = rule.first_failure(context)
        if failed is not None:
            return EligibilityDecision(
                reward_type=reward_type, allowed=False, amount=rule.amount,
                reason=failed.denial, message=failed.message,
            )

        return EligibilityDecision(
            reward_type=reward_type, allowed=True, amount=rule.amount,
            claims=list(rule.claims),
        )


def _published_article_conditions() -> list[Condition]:
    # Readers only ever see approved posts.
    return [
        Condition(field="reference_id", operator=ConditionOperator.IS_SET,
                  denial=DenialReason.VALIDATION_FAILURE, message="An article id is required"),
        Condition(field="post.id", operator=ConditionOperator.IS_SET,
                  denial=DenialReason.NOT_FOUND, message="Article not found"),
        Condition(field="post.status", operator=ConditionOperator.EQUALS, value="Approved",
                  denial=DenialReason.NOT_FOUND, message="Article is not published"),
    ]


def create_default_rules(
    daily_amount: Decimal = Decimal("5.00"),
    read_amount: Decimal = Decimal("0.20"),
    comment_amount: Decimal = Decimal("0.20"),
    post_approved_amount: Decimal = Decimal("10.00"),
) -> list[RewardRule]:
    return [
        RewardRule(
            reward_type=RewardType.DAILY, amount=daily_amount,
            description="Daily login bonus, once per calendar day",
            conditions=[
                Condition(field="user.last_reward_date", operator=ConditionOperator.NOT_EQUALS,
                          value_field="today", denial=DenialReason.ALREADY_CLAIMED,
                          message="Already claimed today"),
            ],
            claims=[Claim(type=ClaimType.SET_FIELD, field="user.last_reward_date", value_field="today")],
        ),
        RewardRule(
            reward_type=RewardType.READ, amount=read_amount,
            description="Reading a published article, once per article",
            conditions=[
                *_published_article_conditions(),
                Condition(field="reference_id", operator=ConditionOperator.NOT_IN,
                          value_field="user.read_article_ids", denial=DenialReason.ALREADY_CLAIMED,
                          message="Already rewarded for this article"),
            ],
            claims=[Claim(type=ClaimType.APPEND_UNIQUE, field="user.read_article_ids", value_field="reference_id")],
        ),
        RewardRule(
            reward_type=RewardType.COMMENT, amount=comment_amount,
            description="Commenting on a published article, once per article",
            conditions=[
                *_published_article_conditions(),
                Condition(field="reference_id", operator=ConditionOperator.NOT_IN,
                          value_field="user.commented_article_ids", denial=DenialReason.ALREADY_CLAIMED,
                          message="Already rewarded for commenting on this article"),
            ],
            claims=[Claim(type=ClaimType.APPEND_UNIQUE, field="user.commented_article_ids", value_field="reference_id")],
        ),
        RewardRule(
            reward_type=RewardType.POST_APPROVED, amount=post_approved_amount,
            description="Submitted article approved by an administrator",
            conditions=[
                Condition(field="reference_id", operator=ConditionOperator.IS_SET,
                          denial=DenialReason.VALIDATION_FAILURE, message="A post id is required"),
                Condition(field="post.id", operator=ConditionOperator.IS_SET,
                          denial=DenialReason.NOT_FOUND, message="Post not found"),
                Condition(field="post.author_id", operator=ConditionOperator.EQUALS,
                          value_field="user.id", denial=DenialReason.VALIDATION_FAILURE,
                          message="Post was not submitted by this user"),
                # Only the Pending -> Approved transition pays out.
                Condition(field="post.status", operator=ConditionOperator.EQUALS, value="Pending",
                          denial=DenialReason.ALREADY_CLAIMED, message="Post has already been moderated"),
            ],
            claims=[Claim(type=ClaimType.SET_FIELD, field="post.status", value="Approved")],
        ),
    ]
