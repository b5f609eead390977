"""
Aggregate Recomputation Service
===============================

Keeps Post.comment_count equal to the number of Comment rows for the post.

WHY A FULL RECOUNT (and not F('comment_count') + 1):
-----------------------------------------------------
- Idempotent: running it twice gives the same value
- A missed or duplicated event cannot introduce drift
- A crash between COUNT and UPDATE leaves the value stale, not wrong by a
  delta; replaying the recompute fixes it

CONSISTENCY MODEL:
------------------
Recomputes of the SAME post are not serialized. Two concurrent triggers may
both count and the last writer wins. Because each writer stores a full count,
the value converges as soon as a recompute reads after the last committed
comment write. A recompute that reads before a concurrent insert commits and
writes after that insert's own recompute leaves a transient undercount until
the next trigger. Accepted: best-effort, not linearizable.

Recomputes of DIFFERENT posts touch different rows and never interfere.
"""

import logging
from typing import Iterable, Optional

from django.db import transaction, DatabaseError
from django.db.models import Count, F

from . import accessors
from .exceptions import RecomputeError
from .models import Post

logger = logging.getLogger(__name__)


def recompute_comment_count(post_id: int) -> Optional[int]:
    """
    Count the post's comments and store the result on the post.

    ATOMICITY:
    COUNT + UPDATE run in transaction.atomic(). Inside a caller's
    transaction that is a savepoint, so a failure here rolls back only the
    savepoint - the comment write that triggered us survives.

    RETURNS:
    - The count written
    - None if the post no longer exists (deleted concurrently, or by the
      cascade that deleted its comments). Nothing left to update.

    RAISES:
    - RecomputeError if the read or the write failed. Nothing was written.
    """
    try:
        with transaction.atomic():
            count = accessors.count_comments(post_id)
            found = accessors.update_post_comment_count(post_id, count)
    except DatabaseError as exc:
        logger.error(f"Recompute of comment_count failed for post {post_id}: {exc}")
        raise RecomputeError(post_id) from exc

    if not found:
        logger.info(f"Post {post_id} no longer exists; comment_count not written")
        return None

    logger.debug(f"Post {post_id} comment_count = {count}")
    return count


class ReconciliationResult:
    """Outcome of a recompute-all run."""
    def __init__(self):
        self.updated: list[int] = []
        self.missing: list[int] = []
        self.failed: list[int] = []

    @property
    def total(self) -> int:
        return len(self.updated) + len(self.missing) + len(self.failed)

    def as_dict(self) -> dict:
        return {
            'total': self.total,
            'updated': self.updated,
            'missing': self.missing,
            'failed': self.failed,
        }

    def summary(self) -> str:
        text = f"Recomputed {len(self.updated)} posts"
        if self.missing:
            text += f", {len(self.missing)} missing (posts {self.missing})"
        text += f", {len(self.failed)} failed"
        if self.failed:
            text += f" (posts {self.failed})"
        return text + "."


def recompute_all_comment_counts(post_ids: Optional[Iterable[int]] = None) -> ReconciliationResult:
    """
    Reconciliation job: recompute every post (or the given ones) from scratch.

    This is the explicit recovery path for drift the hooks cannot repair
    themselves - e.g. a restart between the pre-delete capture and the
    post-delete drain, or a recompute that failed inside a hook.

    Processes post by post; one failure does not stop the run.
    """
    if post_ids is None:
        post_ids = list(Post.objects.order_by('id').values_list('id', flat=True))

    result = ReconciliationResult()
    for post_id in post_ids:
        try:
            count = recompute_comment_count(post_id)
        except RecomputeError:
            result.failed.append(post_id)
            continue

        if count is None:
            result.missing.append(post_id)
        else:
            result.updated.append(post_id)

    logger.info(
        f"Reconciled comment counts: {len(result.updated)} updated, "
        f"{len(result.missing)} missing, {len(result.failed)} failed"
    )
    return result


def find_drifted_posts():
    """
    Posts whose stored comment_count differs from the real number of comments.

    Single query:
    SELECT post.*, COUNT(comment.id) AS actual_comment_count
    FROM blog_post LEFT JOIN blog_comment ON ...
    GROUP BY post.id
    HAVING comment_count <> COUNT(comment.id)
    """
    return (
        Post.objects
        .annotate(actual_comment_count=Count('comments'))
        .exclude(comment_count=F('actual_comment_count'))
        .order_by('id')
    )
