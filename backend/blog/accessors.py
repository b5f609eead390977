"""
Backend Accessors
=================

The three narrow reads/writes the comment-count subsystem needs from the
database. Each is a single ORM call - transactional on its own, with no
atomicity assumed ACROSS calls (a count and the following write may
interleave with other writers; see counters.py).
"""

from typing import Iterable

from django.db import transaction

from .models import Post, Comment


def count_comments(post_id: int) -> int:
    """
    SELECT COUNT(*) FROM blog_comment WHERE post_id = %s

    Uses the (post, created_at) index.
    """
    return Comment.objects.filter(post_id=post_id).count()


def update_post_comment_count(post_id: int, comment_count: int) -> bool:
    """
    Write the aggregate onto the post.

    QuerySet.update() instead of save():
    - Touches only comment_count (no lost update of title/content)
    - Fires no post_save signal, so it can never re-enter the hooks

    Returns False when no row matched (post already deleted).
    """
    updated = Post.objects.filter(id=post_id).update(comment_count=comment_count)
    return updated > 0


def get_comments_by_ids(ids: Iterable[int]) -> list[dict]:
    """
    Fetch {id, post} for a batch of comments in ONE query.

    Ids with no row are absent from the result.

    Runs in a savepoint: it is called from pre_delete, inside the deleting
    transaction, and a failed read must not abort that transaction.
    """
    with transaction.atomic():
        rows = list(
            Comment.objects
            .filter(id__in=list(ids))
            .values_list('id', 'post_id')
        )
    return [{'id': comment_id, 'post': post_id} for comment_id, post_id in rows]
