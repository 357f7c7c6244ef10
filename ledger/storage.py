"""In-process storage for users, ledger entries, withdrawals and posts.

Rows are kept as plain dicts and rehydrated into models on every read, so
callers always work on a private copy. Writes go through a unit of work
that is applied as one commit: either every staged row lands or none do.
"""

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterator, Optional
from uuid import UUID, uuid4

from .errors import ConcurrentModificationError, StorageError
from .logging_config import get_logger
from .models import Comment, InviteCode, LedgerEntry, Post, User, Withdrawal

logger = get_logger(__name__)


@dataclass(frozen=True)
class UserChanged:
    user_id: UUID
    version: int
    deleted: bool = False


@dataclass
class UnitOfWork:
    users: list[User] = field(default_factory=list)
    ledger_entries: list[LedgerEntry] = field(default_factory=list)
    withdrawals: list[Withdrawal] = field(default_factory=list)
    posts: list[Post] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    invite_codes: list[InviteCode] = field(default_factory=list)
    deleted_users: list[UUID] = field(default_factory=list)

    def save_user(self, user: User) -> None:
        self.users.append(user)

    def add_entry(self, entry: LedgerEntry) -> None:
        self.ledger_entries.append(entry)

    def save_withdrawal(self, withdrawal: Withdrawal) -> None:
        self.withdrawals.append(withdrawal)

    def save_post(self, post: Post) -> None:
        self.posts.append(post)

    def save_comment(self, comment: Comment) -> None:
        self.comments.append(comment)

    def save_invite_code(self, invite: InviteCode) -> None:
        self.invite_codes.append(invite)

    def delete_user(self, user_id: UUID) -> None:
        self.deleted_users.append(user_id)


class InMemoryStorage:
    UNIQUE_USER_FIELDS = ("email", "phone_number", "referral_code")

    def __init__(self):
        self.users: dict[UUID, dict] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self.posts: dict[UUID, dict] = {}
        self.comments: dict[UUID, dict] = {}
        self.invite_codes: dict[UUID, dict] = {}
        self._commit_lock = threading.Lock()
        self._row_locks_guard = threading.Lock()
        self._row_locks: dict[UUID, threading.RLock] = {}
        self._listeners: list[Callable[[UserChanged], None]] = []

    # --- Locking ---

    def lock_for(self, key: UUID) -> threading.RLock:
        with self._row_locks_guard:
            lock = self._row_locks.get(key)
            if lock is None:
                lock = self._row_locks[key] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, *keys: UUID) -> Iterator[None]:
        """Hold the row locks for ``keys`` in the order given."""
        locks = [self.lock_for(key) for key in keys]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    # --- Reads ---

    def load_user(self, user_id: UUID) -> Optional[User]:
        data = self.users.get(user_id)
        return User(**copy.deepcopy(data)) if data else None

    def find_user(self, **filters) -> Optional[User]:
        """First user whose fields equal any of ``filters`` (logical or)."""
        for data in self.users.values():
            if any(data.get(name) == value for name, value in filters.items()):
                return User(**copy.deepcopy(data))
        return None

    def list_users(self) -> list[User]:
        return [User(**copy.deepcopy(data)) for data in self.users.values()]

    def load_withdrawal(self, withdrawal_id: UUID) -> Optional[Withdrawal]:
        data = self.withdrawals.get(withdrawal_id)
        return Withdrawal(**data) if data else None

    def list_withdrawals(self) -> list[Withdrawal]:
        return [Withdrawal(**data) for data in self.withdrawals.values()]

    def load_post(self, post_id: UUID) -> Optional[Post]:
        data = self.posts.get(post_id)
        return Post(**data) if data else None

    def list_posts(self) -> list[Post]:
        return [Post(**data) for data in self.posts.values()]

    def list_comments(self, post_id: Optional[UUID] = None) -> list[Comment]:
        return [
            Comment(**data) for data in self.comments.values()
            if post_id is None or data["post_id"] == post_id
        ]

    def load_invite_code(self, invite_id: UUID) -> Optional[InviteCode]:
        data = self.invite_codes.get(invite_id)
        return InviteCode(**data) if data else None

    def find_invite_code(self, code: str) -> Optional[InviteCode]:
        for data in self.invite_codes.values():
            if data["code"] == code:
                return InviteCode(**data)
        return None

    def list_invite_codes(self) -> list[InviteCode]:
        return [InviteCode(**data) for data in self.invite_codes.values()]

    def list_entries(self) -> list[LedgerEntry]:
        return [LedgerEntry(**copy.deepcopy(e)) for e in self.ledger_entries.values()]

    def entries_for(self, user_id: UUID) -> list[LedgerEntry]:
        return [
            LedgerEntry(**copy.deepcopy(e)) for e in self.ledger_entries.values()
            if e["user_id"] == user_id
        ]

    # --- Writes ---

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """Stage writes; they are committed only if the block completes."""
        unit = UnitOfWork()
        yield unit
        self.commit(unit)

    def commit(self, unit: UnitOfWork) -> None:
        with self._commit_lock:
            self._check_versions(unit)
            self._check_unique(unit)
            for entry in unit.ledger_entries:
                if entry.id in self.ledger_entries:
                    raise StorageError(f"Ledger entry {entry.id} already exists")

            changed = []
            for user in unit.users:
                stored = user.model_copy(update={"version": user.version + 1})
                self.users[user.id] = stored.model_dump()
                changed.append(UserChanged(user_id=user.id, version=stored.version))
            for entry in unit.ledger_entries:
                self.ledger_entries[entry.id] = entry.model_dump()
            for withdrawal in unit.withdrawals:
                self.withdrawals[withdrawal.id] = withdrawal.model_dump()
            for post in unit.posts:
                self.posts[post.id] = post.model_dump()
            for comment in unit.comments:
                self.comments[comment.id] = comment.model_dump()
            for invite in unit.invite_codes:
                self.invite_codes[invite.id] = invite.model_dump()
            for user_id in unit.deleted_users:
                removed = self.users.pop(user_id, None)
                if removed is not None:
                    changed.append(UserChanged(user_id=user_id, version=removed["version"], deleted=True))

        for event in changed:
            self._publish(event)

    def _check_versions(self, unit: UnitOfWork) -> None:
        for user in unit.users:
            stored = self.users.get(user.id)
            stored_version = stored["version"] if stored else 0
            if stored is None and user.version != 0:
                raise ConcurrentModificationError(f"User {user.id} was deleted")
            if stored_version != user.version:
                raise ConcurrentModificationError(
                    f"User {user.id} changed (expected version {user.version}, found {stored_version})"
                )

    def _check_unique(self, unit: UnitOfWork) -> None:
        for user in unit.users:
            for name in self.UNIQUE_USER_FIELDS:
                value = getattr(user, name)
                for other_id, other in self.users.items():
                    if other_id != user.id and other.get(name) == value:
                        raise StorageError(f"Duplicate value for users.{name}")
        for invite in unit.invite_codes:
            for other_id, other in self.invite_codes.items():
                if other_id != invite.id and other["code"] == invite.code:
                    raise StorageError("Duplicate value for invite_codes.code")

    # --- Change notifications ---

    def subscribe(self, listener: Callable[[UserChanged], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: UserChanged) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("user_change_listener_failed", user_id=str(event.user_id))


def seed_demo_data(storage: InMemoryStorage, password_hash: str) -> list[User]:
    """Create the platform administrator, a demo reader and one unused E-Pin.

    Public registration never grants admin rights: the first administrator
    comes from here and any others are promoted by an existing one.
    """
    now = datetime.now(timezone.utc)
    users = [
        User(
            id=UUID("550e8400-e29b-41d4-a716-446655440000"), username="Site Admin",
            email="admin@anp.com", phone_number="0970000000", referral_code="ADMIN001",
            is_admin=True, invite_code_used="SYSTEM_ROOT", password_hash=password_hash, created_at=now,
        ),
        User(
            id=UUID("660e8400-e29b-41d4-a716-446655440001"), username="Demo Reader",
            email="reader@example.com", phone_number="0971111111", referral_code="READ2024",
            password_hash=password_hash, created_at=now,
            activity_points=Decimal("0.00"), referral_earnings=Decimal("0.00"),
        ),
    ]
    invite_codes = [
        InviteCode(id=uuid4(), code="SYSTEM_ROOT", created_by="system", created_at=now, used=True),
        InviteCode(id=uuid4(), code="WELCOME1", created_by="system", created_at=now),
    ]
    with storage.transaction() as unit:
        for user in users:
            unit.save_user(user)
        for invite in invite_codes:
            unit.save_invite_code(invite)
    return users
