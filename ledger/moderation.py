"""Article submissions and their moderation.

Approval is paid through ``LedgerService.grant_reward`` so the status change
and the author's ``POST_APPROVED`` reward commit together, and only a
``Pending`` post can pay out.
"""

from typing import Optional
from uuid import UUID, uuid4

from rewards import RewardType

from .errors import AlreadyResolvedError, LedgerServiceError, NotFoundError, ValidationFailureError
from .logging_config import get_logger
from .models import (
    ModerationSummary,
    Post,
    PostResponse,
    PostStatus,
    SubmitPostRequest,
)
from .service import LedgerService


class ModerationService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage
        self.logger = get_logger(__name__)

    def submit_post(self, request: SubmitPostRequest) -> PostResponse:
        try:
            if not request.title.strip() or not request.content.strip():
                raise ValidationFailureError("Title and content are required.")
            author = self.ledger.require_user(request.author_id)
            post = Post(
                id=uuid4(),
                title=request.title.strip(),
                category=request.category,
                content=request.content,
                author_id=author.id,
                author_name=author.username,
                status=PostStatus.PENDING,
                created_at=self.ledger.now(),
            )
            with self.storage.transaction() as unit:
                unit.save_post(post)
        except LedgerServiceError as e:
            return PostResponse(**self.ledger.describe_failure(e, "post_submission", author_id=str(request.author_id)))

        self.logger.info("post_submitted", post_id=str(post.id), author_id=str(post.author_id))
        return PostResponse(success=True, post=post, message="Article submitted for review")

    def approve_post(self, post_id: UUID) -> PostResponse:
        post = self.storage.load_post(post_id)
        if post is None:
            return PostResponse(**self.ledger.describe_failure(
                NotFoundError("Post not found"), "post_approval", post_id=str(post_id),
            ))

        reward = self.ledger.grant_reward(post.author_id, RewardType.POST_APPROVED, str(post_id))
        if not reward.success:
            return PostResponse(success=False, error=reward.error, message=reward.message, post=post)
        return PostResponse(
            success=True, post=self.storage.load_post(post_id),
            message=f"Article approved. {reward.message}",
        )

    def reject_post(self, post_id: UUID) -> PostResponse:
        try:
            with self.storage.locked(post_id):
                post = self.storage.load_post(post_id)
                if post is None:
                    raise NotFoundError("Post not found")
                if post.status != PostStatus.PENDING:
                    raise AlreadyResolvedError(f"Post has already been moderated as {post.status.value}")
                post = post.model_copy(update={"status": PostStatus.REJECTED})
                with self.storage.transaction() as unit:
                    unit.save_post(post)
        except LedgerServiceError as e:
            return PostResponse(**self.ledger.describe_failure(e, "post_rejection", post_id=str(post_id)))

        self.logger.info("post_rejected", post_id=str(post_id))
        return PostResponse(success=True, post=post, message="Article rejected")

    def moderate_posts(self, post_ids: list[UUID], decision: PostStatus) -> ModerationSummary:
        """Approve or reject several posts, one at a time."""
        decision = PostStatus(decision)
        if decision == PostStatus.PENDING:
            raise ValueError("Decision must be Approved or Rejected")

        handler = self.approve_post if decision == PostStatus.APPROVED else self.reject_post
        results = [handler(post_id) for post_id in post_ids]
        processed = sum(1 for r in results if r.success)
        self.logger.info("posts_moderated", decision=decision.value, requested=len(post_ids), processed=processed)
        return ModerationSummary(decision=decision, requested=len(post_ids), processed=processed, results=results)

    def list_posts(self, status: Optional[PostStatus] = None) -> list[Post]:
        posts = [p for p in self.storage.list_posts() if status is None or p.status == status]
        posts.sort(key=lambda p: p.created_at, reverse=True)
        return posts
