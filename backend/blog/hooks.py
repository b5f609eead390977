"""
Event Router for comment lifecycle hooks
========================================

Three events on the comments collection, nothing else:

    create          -> recompute the comment's post
    before-delete   -> capture {comment -> post} for the batch
    after-delete    -> drain the batch into distinct posts, recompute each once

Comment edits and post mutations never reach this router.

ERROR POLICY:
-------------
The comment write that triggered a hook has already succeeded (or commits on
its own). A hook failure must never block it or roll it back, so every
handler logs and swallows at this boundary. Recovery is the reconciliation
job in counters.py.

The router holds no state of its own; the capture store is injected so the
shared-state contract is explicit and testable.
"""

import logging
from typing import Callable, Optional

from .capture import CaptureStore
from .counters import recompute_comment_count
from .exceptions import CommentCountError

logger = logging.getLogger(__name__)


def _normalize_keys(keys) -> list:
    """Accept a single id or an iterable of ids."""
    if keys is None:
        return []
    if isinstance(keys, (str, bytes, int)):
        return [keys]
    return list(keys)


def _post_id_from_payload(payload) -> Optional[int]:
    """
    The created row's post, under either field name.

    The value may be a bare id, a model instance, or a nested {id: ...} dict.
    """
    if not payload:
        return None
    post = payload.get('post_id') or payload.get('post')
    if post is None:
        return None
    if hasattr(post, 'pk'):
        return post.pk
    if isinstance(post, dict):
        return post.get('id')
    return post


class CommentCountRouter:
    """Dispatches comment lifecycle events to the capture store and recompute service."""

    def __init__(
        self,
        store: CaptureStore,
        recompute: Callable[[int], Optional[int]] = recompute_comment_count,
    ):
        self.store = store
        self.recompute = recompute

    def on_create(self, payload: dict) -> Optional[int]:
        """Recompute the new comment's post. Returns the post id recomputed, if any."""
        post_id = _post_id_from_payload(payload)
        if post_id is None:
            logger.info("Comment created without post_id or post in payload; skipping count update")
            return None

        if self._recompute_safely(post_id):
            return post_id
        return None

    def on_before_delete(self, keys):
        """
        Capture the owning posts before the rows disappear.

        Observes only: returns keys unchanged and never blocks the delete.
        """
        comment_ids = _normalize_keys(keys)
        try:
            self.store.capture(comment_ids)
        except Exception:
            logger.exception(f"Failed to capture comments {comment_ids} before deletion")
        return keys

    def record_before_delete(self, pairs) -> None:
        """
        Same as on_before_delete when the caller already knows each comment's
        post: stores (comment_id, post_id) pairs with no read.
        """
        pairs = list(pairs)
        try:
            self.store.record(pairs)
        except Exception:
            logger.exception(f"Failed to record comments {[pk for pk, _ in pairs]} before deletion")

    def on_after_delete(self, keys) -> set:
        """
        Recompute every post that lost comments in this batch, once per post.

        Order across posts is irrelevant: recompute is idempotent and posts
        are independent. Returns the posts recomputed successfully.
        """
        comment_ids = _normalize_keys(keys)
        if not comment_ids:
            return set()

        try:
            affected_posts = self.store.drain_posts_for(comment_ids)
        except Exception:
            logger.exception(f"Failed to resolve posts for deleted comments {comment_ids}")
            return set()
        logger.debug(f"Comments {comment_ids} deleted; recomputing posts {sorted(affected_posts, key=str)}")

        recomputed = set()
        for post_id in affected_posts:
            if self._recompute_safely(post_id):
                recomputed.add(post_id)
        return recomputed

    def _recompute_safely(self, post_id) -> bool:
        # Hook boundary: nothing escapes into the comment write path
        try:
            self.recompute(post_id)
        except CommentCountError:
            logger.exception(f"Comment count for post {post_id} not updated")
            return False
        except Exception:
            logger.exception(f"Unexpected error recomputing comment count for post {post_id}")
            return False
        return True
