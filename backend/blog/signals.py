"""
Django Signals binding the comment-count hooks.

Mapping to the router (hooks.py):
---------------------------------
post_save (created)  -> router.on_create         (synchronous, same transaction)
pre_delete           -> router.record_before_delete  (no read: post_id is on the instance)
post_delete          -> pending batch, flushed once on commit
                        -> router.on_after_delete

WHY THE DELETE SIDE IS BATCHED:
-------------------------------
Django fires pre_delete/post_delete once PER INSTANCE, including for rows
removed by QuerySet.delete() and by cascades (deleting a post deletes all its
comments; deleting a comment deletes its replies). Recomputing on every
post_delete would recount the same post N times.

Instead each post_delete adds its id to a thread-local batch and schedules a
flush with transaction.on_commit(). The first flush after commit drains the
whole batch, so every affected post is recomputed once; later flushes find
the batch empty. If the transaction rolls back, the ids stay queued and are
drained with the next flush - harmless, since recompute is idempotent. The
batch is keyed by id, so deleting the same comment again after a rollback
queues it once.

IMPORTANT: Signals do NOT fire on bulk_create() or raw SQL. Those paths
must call counters.recompute_comment_count (or the reconciliation job).
Post.comment_count itself is written with QuerySet.update(), which fires no
signal, so the hooks can never re-enter themselves.
"""

import threading

from django.conf import settings
from django.db import transaction
from django.db.models.signals import post_save, pre_delete, post_delete
from django.dispatch import receiver

from .capture import CaptureStore, DEFAULT_TTL_SECONDS
from .hooks import CommentCountRouter
from .models import Comment

capture_store = CaptureStore(
    ttl=getattr(settings, 'COMMENT_CAPTURE_TTL_SECONDS', DEFAULT_TTL_SECONDS)
)
router = CommentCountRouter(capture_store)

_pending = threading.local()


def _pending_comment_ids() -> dict:
    # Insertion-ordered set: an id re-queued after a rolled-back delete appears once
    if not hasattr(_pending, 'comment_ids'):
        _pending.comment_ids = {}
    return _pending.comment_ids


def flush_deleted_comments():
    """Hand every comment deleted since the last flush to the router as one batch."""
    comment_ids = list(_pending_comment_ids())
    if not comment_ids:
        return
    _pending.comment_ids = {}
    router.on_after_delete(comment_ids)


@receiver(post_save, sender=Comment)
def recompute_on_comment_created(sender, instance, created, raw=False, **kwargs):
    """
    New comment -> recount its post.

    Edits (created=False) never change the count. Fixture loading (raw=True)
    is skipped; run recompute_comment_counts afterwards.
    """
    if not created or raw:
        return
    router.on_create({'id': instance.pk, 'post': instance.post_id})


@receiver(pre_delete, sender=Comment)
def capture_before_comment_delete(sender, instance, **kwargs):
    # The Collector already loaded the row: its post is on the instance
    router.record_before_delete([(instance.pk, instance.post_id)])


@receiver(post_delete, sender=Comment)
def recompute_after_comment_delete(sender, instance, using=None, **kwargs):
    _pending_comment_ids()[instance.pk] = None
    transaction.on_commit(flush_deleted_comments, using=using)
