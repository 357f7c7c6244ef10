from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.accounts import AccountService
from ledger.comments import CommentService
from ledger.invites import InviteService
from ledger.models import Category, Post, PostStatus, User
from ledger.moderation import ModerationService
from ledger.service import LedgerService
from ledger.settings import Settings
from ledger.storage import InMemoryStorage
from ledger.withdrawals import WithdrawalService


class FrozenClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def ledger(storage, clock):
    return LedgerService(storage=storage, settings=Settings(_env_file=None), clock=clock)


@pytest.fixture
def withdrawals(ledger):
    return WithdrawalService(ledger)


@pytest.fixture
def accounts(ledger, withdrawals):
    return AccountService(ledger, withdrawals)


@pytest.fixture
def moderation(ledger):
    return ModerationService(ledger)


@pytest.fixture
def make_user(storage, clock):
    counter = {"n": 0}

    def _make_user(**overrides) -> User:
        counter["n"] += 1
        n = counter["n"]
        data = {
            "id": uuid4(),
            "username": f"reader{n}",
            "email": f"reader{n}@example.com",
            "phone_number": f"09700000{n:02d}",
            "referral_code": f"CODE{n:04d}",
            "password_hash": "unused",
            "created_at": clock(),
            "activity_points": Decimal("0.00"),
            "referral_earnings": Decimal("0.00"),
        }
        data.update(overrides)
        user = User(**data)
        with storage.transaction() as unit:
            unit.save_user(user)
        return storage.load_user(user.id)

    return _make_user


@pytest.fixture
def comments(ledger):
    return CommentService(ledger)


@pytest.fixture
def invites(ledger):
    return InviteService(ledger)


@pytest.fixture
def new_invite(invites):
    def _new_invite() -> str:
        return invites.create_invite_code().invite_code.code

    return _new_invite


@pytest.fixture
def make_post(storage, clock):
    """Store an article directly; approved unless told otherwise."""

    def _make_post(author=None, status=PostStatus.APPROVED, title="Copper prices climb") -> Post:
        post = Post(
            id=uuid4(),
            title=title,
            category=Category.BUSINESS,
            content="Prices rose again this week.",
            author_id=author.id if author else uuid4(),
            author_name=author.username if author else "Newsroom",
            status=status,
            created_at=clock(),
        )
        with storage.transaction() as unit:
            unit.save_post(post)
        return post

    return _make_post
