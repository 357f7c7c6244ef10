"""Reader comments on published articles.

A comment is stored first; the ``COMMENT`` reward is then claimed for the
article. Only the first comment per reader and article pays, later ones
are kept without a reward.
"""

from uuid import UUID, uuid4

from rewards import RewardType

from .errors import LedgerServiceError, NotFoundError, ValidationFailureError
from .logging_config import get_logger
from .models import Comment, CommentResponse, ErrorKind, PostStatus, SubmitCommentRequest
from .service import LedgerService


class CommentService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = ledger.settings
        self.logger = get_logger(__name__)

    def submit_comment(self, post_id: UUID, request: SubmitCommentRequest) -> CommentResponse:
        try:
            text = request.text.strip()
            if not text:
                raise ValidationFailureError("Comment text is required.")
            user = self.ledger.require_user(request.user_id)
            post = self.storage.load_post(post_id)
            if post is None or post.status != PostStatus.APPROVED:
                raise NotFoundError("Article not found")

            comment = Comment(
                id=uuid4(),
                post_id=post.id,
                user_id=user.id,
                username=user.username,
                text=text,
                created_at=self.ledger.now(),
            )
            with self.storage.transaction() as unit:
                unit.save_comment(comment)
        except LedgerServiceError as e:
            return CommentResponse(**self.ledger.describe_failure(
                e, "comment", post_id=str(post_id), user_id=str(request.user_id),
            ))

        reward = self.ledger.grant_reward(user.id, RewardType.COMMENT, str(post.id))
        if reward.success:
            message = f"Comment posted! You earned {self.settings.format_amount(reward.amount)}."
        else:
            message = "Comment posted!"
            if reward.error != ErrorKind.ALREADY_CLAIMED:
                self.logger.warning("comment_reward_failed", comment_id=str(comment.id), error=reward.error.value)

        self.logger.info("comment_posted", comment_id=str(comment.id), post_id=str(post.id), rewarded=reward.success)
        return CommentResponse(success=True, comment=comment, reward=reward, message=message)

    def list_comments(self, post_id: UUID) -> list[Comment]:
        comments = self.storage.list_comments(post_id)
        comments.sort(key=lambda c: c.created_at)
        return comments
