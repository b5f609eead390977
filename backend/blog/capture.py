"""
Pre-Delete Capture Store
========================

Bridges information that exists BEFORE a comment is deleted to the hook that
runs AFTER the delete.

Problem: the after-delete hook gets comment ids only. The rows are gone, so
"which post did comment 42 belong to?" can no longer be answered by a query.

Solution: before the delete proceeds, read {id -> post} for every comment
in the batch (ONE query) and keep it here. After the delete, pop the entries
and recompute each distinct post once.

When the caller already holds the rows (Django's delete Collector hands
loaded instances to pre_delete), record() stores the pairs with no read.

SHARED STATE:
-------------
One store per process, keyed by comment id. Concurrent batches use disjoint
keys, so the lock only guards the dict itself - it is never held across a
database call.

KNOWN GAP:
----------
A restart between capture and drain loses the mapping; the affected post's
count drifts low until its next recompute trigger or a reconciliation run
(counters.recompute_all_comment_counts). Entries older than the TTL are
purged so deletes without a matching after-hook cannot grow the store forever.
"""

import logging
import threading
import time
from typing import Callable, Iterable, Optional

from . import accessors

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

# Expired entries are swept at most this many times per TTL window
PURGES_PER_TTL = 4


class CaptureStore:
    """comment_id -> post_id, filled just before delete, drained just after."""

    def __init__(
        self,
        reader: Optional[Callable[[Iterable[int]], list[dict]]] = None,
        ttl: Optional[float] = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._reader = reader
        self._ttl = ttl
        self._clock = clock
        self._entries: dict = {}  # comment_id -> (post_id, captured_at)
        self._next_purge = float('-inf')
        self._lock = threading.Lock()

    def capture(self, comment_ids: Iterable[int]) -> None:
        """
        Remember the owning post of every comment about to be deleted.

        ONE batched read for the whole id list. Must complete before the
        delete runs. Read errors propagate.
        """
        comment_ids = list(comment_ids)
        if not comment_ids:
            return

        reader = self._reader or accessors.get_comments_by_ids
        rows = reader(comment_ids)

        self.record((row['id'], row['post']) for row in rows)
        logger.debug(f"Captured {len(rows)} of {len(comment_ids)} comments before delete")

    def record(self, pairs: Iterable[tuple]) -> None:
        """
        Store (comment_id, post_id) pairs the caller already holds.

        No read: used when the rows about to be deleted are already loaded,
        e.g. the instances Django's delete Collector passes to pre_delete.
        """
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            for comment_id, post_id in pairs:
                self._entries[comment_id] = (post_id, now)

    def drain_posts_for(self, comment_ids: Iterable[int]) -> set:
        """
        Pop the entries for the deleted comments and return the distinct posts.

        A miss (never captured, or expired) is skipped with a warning; the
        rest of the batch is still processed.
        """
        posts = set()
        missed = []

        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            for comment_id in comment_ids:
                entry = self._entries.pop(comment_id, None)
                if entry is None or self._is_expired(entry, now):
                    missed.append(comment_id)
                    continue
                posts.add(entry[0])

        if missed:
            logger.warning(
                f"No captured post for deleted comments {missed}; "
                f"their posts' comment_count may drift until the next recompute"
            )
        return posts

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, comment_id):
        with self._lock:
            return comment_id in self._entries

    def _is_expired(self, entry, now: float) -> bool:
        return self._ttl is not None and now - entry[1] > self._ttl

    def _purge_expired(self, now: float) -> None:
        # Caller holds self._lock. Full scan, so throttled.
        if self._ttl is None or now < self._next_purge:
            return
        self._next_purge = now + self._ttl / PURGES_PER_TTL

        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.warning(f"Expired {len(expired)} captured comments with no matching delete")
