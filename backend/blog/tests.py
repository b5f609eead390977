"""
Tests for the comment-count hooks

Focus areas:
1. Recompute service (full recount, idempotent, failures surface)
2. Capture store (batched read, dedup, misses, TTL, thread safety)
3. Event router (dispatch, error boundary, one recompute per post per batch)
4. Signal integration (creates, batch deletes, cascades)
5. REST surface and reconciliation entry points
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from io import StringIO
from unittest.mock import Mock, patch

from django.contrib import admin, messages
from django.contrib.auth.models import User
from django.core.management import call_command, CommandError
from django.db import DatabaseError, connection, transaction
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.test.utils import CaptureQueriesContext
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from . import accessors
from . import signals as comment_signals
from .admin import PostAdmin
from .capture import CaptureStore
from .counters import (
    recompute_comment_count, recompute_all_comment_counts, find_drifted_posts, ReconciliationResult
)
from .exceptions import RecomputeError
from .hooks import CommentCountRouter
from .models import Post, Comment
from .queries import get_all_comments_for_post, build_comment_tree


def reset_hook_state():
    comment_signals.capture_store.clear()
    comment_signals._pending.comment_ids = {}


class FakeBackend:
    """In-memory comments table for router tests that don't need a database."""

    def __init__(self, comments):
        self.comments = dict(comments)  # comment_id -> post_id
        self.counts = {}
        self.lock = threading.Lock()

    def read(self, ids):
        with self.lock:
            return [{'id': i, 'post': self.comments[i]} for i in ids if i in self.comments]

    def delete(self, ids):
        with self.lock:
            for i in ids:
                self.comments.pop(i, None)

    def recompute(self, post_id):
        with self.lock:
            count = sum(1 for p in self.comments.values() if p == post_id)
            self.counts[post_id] = count
            return count


class RecomputeServiceTestCase(TestCase):
    """Full recount onto Post.comment_count."""

    def setUp(self):
        self.user = User.objects.create_user('author', 'a@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, title='Post', content='Content')
        # bulk_create fires no signals - the stored count stays 0
        Comment.objects.bulk_create([
            Comment(post=self.post, author=self.user, content=f'Comment {i}')
            for i in range(3)
        ])

    def test_recompute_writes_full_count(self):
        self.assertEqual(Post.objects.get(id=self.post.id).comment_count, 0)

        count = recompute_comment_count(self.post.id)

        self.assertEqual(count, 3)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 3)

    def test_recompute_is_idempotent(self):
        """Twice in a row with no comment mutation gives the same value."""
        first = recompute_comment_count(self.post.id)
        self.post.refresh_from_db()
        stored_first = self.post.comment_count

        second = recompute_comment_count(self.post.id)
        self.post.refresh_from_db()

        self.assertEqual(first, second)
        self.assertEqual(stored_first, self.post.comment_count)

    def test_recompute_replaces_drifted_value(self):
        Post.objects.filter(id=self.post.id).update(comment_count=42)

        recompute_comment_count(self.post.id)

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 3)

    def test_recompute_for_missing_post_is_noop(self):
        self.assertIsNone(recompute_comment_count(999999))

    def test_write_failure_raises_and_writes_nothing(self):
        Post.objects.filter(id=self.post.id).update(comment_count=7)

        with patch('blog.accessors.update_post_comment_count', side_effect=DatabaseError('write failed')):
            with self.assertLogs('blog.counters', level='ERROR'):
                with self.assertRaises(RecomputeError) as ctx:
                    recompute_comment_count(self.post.id)

        self.assertEqual(ctx.exception.post_id, self.post.id)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 7)

    def test_count_failure_raises(self):
        with patch('blog.accessors.count_comments', side_effect=DatabaseError('read failed')):
            with self.assertLogs('blog.counters', level='ERROR'):
                with self.assertRaises(RecomputeError):
                    recompute_comment_count(self.post.id)

    def test_distinct_posts_do_not_interfere(self):
        """A recompute of P2 interleaved inside P1's recompute leaves both correct."""
        other = Post.objects.create(author=self.user, title='Other', content='Content')
        Comment.objects.bulk_create([
            Comment(post=other, author=self.user, content='x') for _ in range(5)
        ])
        original_count = accessors.count_comments

        def interleaved(post_id):
            if post_id == self.post.id:
                recompute_comment_count(other.id)
            return original_count(post_id)

        with patch('blog.accessors.count_comments', side_effect=interleaved):
            recompute_comment_count(self.post.id)

        self.post.refresh_from_db()
        other.refresh_from_db()
        self.assertEqual(self.post.comment_count, 3)
        self.assertEqual(other.comment_count, 5)


class ReconciliationTestCase(TestCase):
    """recompute_all_comment_counts / find_drifted_posts."""

    def setUp(self):
        self.user = User.objects.create_user('author', 'a@test.com', 'pass')
        self.post1 = Post.objects.create(author=self.user, title='P1', content='Content')
        self.post2 = Post.objects.create(author=self.user, title='P2', content='Content')
        Comment.objects.bulk_create([
            Comment(post=self.post1, author=self.user, content='a'),
            Comment(post=self.post1, author=self.user, content='b'),
            Comment(post=self.post2, author=self.user, content='c'),
        ])

    def test_find_drifted_posts(self):
        Post.objects.filter(id=self.post2.id).update(comment_count=1)

        drifted = list(find_drifted_posts())

        self.assertEqual([p.id for p in drifted], [self.post1.id])
        self.assertEqual(drifted[0].actual_comment_count, 2)

    def test_recompute_all_fixes_every_post(self):
        result = recompute_all_comment_counts()

        self.assertEqual(sorted(result.updated), sorted([self.post1.id, self.post2.id]))
        self.assertEqual(result.failed, [])
        self.assertEqual(list(find_drifted_posts()), [])

    def test_recompute_all_continues_after_failure(self):
        original_count = accessors.count_comments

        def failing_for_post1(post_id):
            if post_id == self.post1.id:
                raise DatabaseError('boom')
            return original_count(post_id)

        with patch('blog.accessors.count_comments', side_effect=failing_for_post1):
            with self.assertLogs('blog.counters', level='ERROR'):
                result = recompute_all_comment_counts()

        self.assertEqual(result.failed, [self.post1.id])
        self.assertEqual(result.updated, [self.post2.id])
        self.post2.refresh_from_db()
        self.assertEqual(self.post2.comment_count, 1)

    def test_recompute_given_posts_reports_missing(self):
        result = recompute_all_comment_counts([self.post1.id, 999999])

        self.assertEqual(result.updated, [self.post1.id])
        self.assertEqual(result.missing, [999999])
        self.assertEqual(result.as_dict()['total'], 2)

    def test_as_dict_lists_post_ids_for_every_outcome(self):
        result = recompute_all_comment_counts([self.post1.id, self.post2.id, 999999])

        self.assertEqual(result.as_dict(), {
            'total': 3,
            'updated': [self.post1.id, self.post2.id],
            'missing': [999999],
            'failed': [],
        })

    def test_summary_names_missing_and_failed_posts(self):
        result = ReconciliationResult()
        result.updated = [1, 2]
        result.missing = [7]
        result.failed = [9]

        self.assertEqual(
            result.summary(),
            'Recomputed 2 posts, 1 missing (posts [7]), 1 failed (posts [9]).'
        )

    def test_summary_when_everything_updated(self):
        result = ReconciliationResult()
        result.updated = [1]

        self.assertEqual(result.summary(), 'Recomputed 1 posts, 0 failed.')

    def test_admin_action_warns_about_missing_posts(self):
        result = ReconciliationResult()
        result.updated = [self.post1.id]
        result.missing = [self.post2.id]
        model_admin = PostAdmin(Post, admin.site)
        request = RequestFactory().post('/admin/blog/post/')

        with patch('blog.admin.recompute_all_comment_counts', return_value=result) as recompute:
            with patch.object(PostAdmin, 'message_user') as message_user:
                model_admin.recompute_comment_counts(request, Post.objects.order_by('id'))

        recompute.assert_called_once_with([self.post1.id, self.post2.id])
        message = message_user.call_args.args[1]
        self.assertIn(f'missing (posts [{self.post2.id}])', message)
        self.assertEqual(message_user.call_args.kwargs['level'], messages.WARNING)

    def test_admin_action_reports_success(self):
        model_admin = PostAdmin(Post, admin.site)
        request = RequestFactory().post('/admin/blog/post/')

        with patch.object(PostAdmin, 'message_user') as message_user:
            model_admin.recompute_comment_counts(request, Post.objects.filter(id=self.post1.id))

        self.assertEqual(message_user.call_args.kwargs['level'], messages.SUCCESS)
        self.post1.refresh_from_db()
        self.assertEqual(self.post1.comment_count, 2)

    def test_management_command(self):
        out = StringIO()
        call_command('recompute_comment_counts', stdout=out)

        self.assertIn('Recomputed comment counts for 2 posts', out.getvalue())
        self.post1.refresh_from_db()
        self.assertEqual(self.post1.comment_count, 2)

    def test_management_command_check_reports_drift(self):
        out = StringIO()
        with self.assertRaises(CommandError):
            call_command('recompute_comment_counts', '--check', stdout=out)
        self.assertIn(f'post {self.post1.id}: stored 0, actual 2', out.getvalue())

        call_command('recompute_comment_counts', stdout=StringIO())
        out = StringIO()
        call_command('recompute_comment_counts', '--check', stdout=out)
        self.assertIn('consistent', out.getvalue())


class CaptureStoreTestCase(SimpleTestCase):
    """Pre-delete capture store, no database."""

    def setUp(self):
        self.backend = FakeBackend({1: 10, 2: 10, 3: 20, 4: 30})
        self.reader = Mock(side_effect=self.backend.read)
        self.store = CaptureStore(reader=self.reader)

    def test_capture_uses_one_batched_read(self):
        self.store.capture([1, 2, 3])

        self.reader.assert_called_once_with([1, 2, 3])
        self.assertEqual(len(self.store), 3)

    def test_capture_empty_batch_reads_nothing(self):
        self.store.capture([])
        self.reader.assert_not_called()

    def test_capture_skips_ids_without_rows(self):
        self.store.capture([1, 99])

        self.assertIn(1, self.store)
        self.assertNotIn(99, self.store)

    def test_drain_deduplicates_posts_and_removes_entries(self):
        self.store.capture([1, 2, 3])

        posts = self.store.drain_posts_for([1, 2, 3])

        self.assertEqual(posts, {10, 20})
        self.assertEqual(len(self.store), 0)

    def test_drain_only_consumes_given_ids(self):
        self.store.capture([1, 2, 3, 4])

        self.assertEqual(self.store.drain_posts_for([3]), {20})
        self.assertEqual(len(self.store), 3)

    def test_drain_miss_is_skipped_with_warning(self):
        self.store.capture([1])

        with self.assertLogs('blog.capture', level='WARNING') as logs:
            posts = self.store.drain_posts_for([1, 555])

        self.assertEqual(posts, {10})
        self.assertIn('555', logs.output[0])

    def test_read_error_propagates(self):
        store = CaptureStore(reader=Mock(side_effect=DatabaseError('down')))
        with self.assertRaises(DatabaseError):
            store.capture([1])
        self.assertEqual(len(store), 0)

    def test_entries_expire_after_ttl(self):
        now = [1000.0]
        store = CaptureStore(reader=self.backend.read, ttl=10, clock=lambda: now[0])
        store.capture([1, 3])

        now[0] += 11
        with self.assertLogs('blog.capture', level='WARNING'):
            posts = store.drain_posts_for([1, 3])

        self.assertEqual(posts, set())
        self.assertEqual(len(store), 0)

    def test_record_stores_pairs_without_reading(self):
        self.store.record([(1, 10), (3, 20)])

        self.reader.assert_not_called()
        self.assertEqual(self.store.drain_posts_for([1, 3]), {10, 20})

    def test_purge_is_throttled_within_a_ttl_window(self):
        now = [1000.0]
        store = CaptureStore(reader=self.backend.read, ttl=10, clock=lambda: now[0])
        store.record([(1, 10)])
        now[0] = 1009.0
        store.record([(2, 20)])  # sweeps; next sweep due at 1011.5

        now[0] = 1011.0
        store.record([(3, 30)])

        # 1 is past the TTL but no sweep has run since it expired
        self.assertIn(1, store)
        self.assertEqual(len(store), 3)

    def test_expired_entry_is_a_miss_even_before_purge(self):
        now = [1000.0]
        store = CaptureStore(reader=self.backend.read, ttl=10, clock=lambda: now[0])
        store.record([(1, 10)])
        now[0] = 1009.0
        store.record([(2, 20)])

        now[0] = 1011.0
        with self.assertLogs('blog.capture', level='WARNING') as logs:
            posts = store.drain_posts_for([1])

        self.assertEqual(posts, set())
        self.assertIn('[1]', logs.output[0])

    def test_purge_sweeps_stale_entries_once_due(self):
        now = [1000.0]
        store = CaptureStore(reader=self.backend.read, ttl=10, clock=lambda: now[0])
        store.record([(1, 10)])

        now[0] = 1011.0
        with self.assertLogs('blog.capture', level='WARNING') as logs:
            store.record([(2, 20)])

        self.assertNotIn(1, store)
        self.assertIn(2, store)
        self.assertIn('Expired 1 captured comments', logs.output[0])

    def test_no_ttl_keeps_entries(self):
        now = [1000.0]
        store = CaptureStore(reader=self.backend.read, ttl=None, clock=lambda: now[0])
        store.record([(1, 10)])

        now[0] += 10 ** 6
        self.assertEqual(store.drain_posts_for([1]), {10})

    def test_concurrent_disjoint_batches(self):
        comments = {i: i % 7 for i in range(1, 401)}
        backend = FakeBackend(comments)
        store = CaptureStore(reader=backend.read)
        batches = [list(range(start, start + 20)) for start in range(1, 401, 20)]

        def capture_then_drain(batch):
            store.capture(batch)
            return store.drain_posts_for(batch)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(capture_then_drain, batches))

        for batch, posts in zip(batches, results):
            self.assertEqual(posts, {comments[i] for i in batch})
        self.assertEqual(len(store), 0)


class CommentCountRouterTestCase(SimpleTestCase):
    """Event router with an in-memory backend."""

    def setUp(self):
        # P1 has comments 1, 2; P2 has comments 3, 4, 5
        self.backend = FakeBackend({1: 'p1', 2: 'p1', 3: 'p2', 4: 'p2', 5: 'p2'})
        self.store = CaptureStore(reader=self.backend.read)
        self.recompute = Mock(side_effect=self.backend.recompute)
        self.router = CommentCountRouter(self.store, recompute=self.recompute)

    def delete(self, keys):
        self.router.on_before_delete(keys)
        self.backend.delete(keys if isinstance(keys, list) else [keys])
        return self.router.on_after_delete(keys)

    def test_create_with_post_id(self):
        self.assertEqual(self.router.on_create({'post_id': 'p1'}), 'p1')
        self.recompute.assert_called_once_with('p1')

    def test_create_with_post_field(self):
        self.router.on_create({'post': 'p2', 'content': 'hi'})
        self.recompute.assert_called_once_with('p2')

    def test_create_with_nested_post(self):
        self.router.on_create({'post': {'id': 'p2', 'title': 'T'}})
        self.recompute.assert_called_once_with('p2')

    def test_create_without_post_writes_nothing(self):
        with self.assertLogs('blog.hooks', level='INFO'):
            result = self.router.on_create({'content': 'orphan'})

        self.assertIsNone(result)
        self.recompute.assert_not_called()

    def test_create_recompute_failure_is_swallowed(self):
        self.recompute.side_effect = RecomputeError('p1')

        with self.assertLogs('blog.hooks', level='ERROR'):
            result = self.router.on_create({'post': 'p1'})

        self.assertIsNone(result)

    def test_before_delete_returns_payload_unchanged(self):
        payload = [1, 2]
        self.assertIs(self.router.on_before_delete(payload), payload)
        self.assertEqual(self.router.on_before_delete(3), 3)
        self.assertEqual(len(self.store), 3)

    def test_before_delete_read_failure_does_not_block(self):
        store = CaptureStore(reader=Mock(side_effect=DatabaseError('down')))
        router = CommentCountRouter(store, recompute=self.recompute)

        with self.assertLogs('blog.hooks', level='ERROR'):
            self.assertEqual(router.on_before_delete([1]), [1])

    def test_single_id_delete(self):
        self.assertEqual(self.delete(1), {'p1'})
        self.assertEqual(self.backend.counts, {'p1': 1})

    def test_batch_delete_on_one_post(self):
        """P2: 3 comments, delete 2 -> 1."""
        self.delete([3, 4])

        self.recompute.assert_called_once_with('p2')
        self.assertEqual(self.backend.counts['p2'], 1)

    def test_multi_post_batch_recomputes_each_post_once(self):
        """P1 loses 2 of 2, P2 loses 1 of 3, in any order."""
        for batch in ([1, 2, 3], [3, 2, 1], [2, 3, 1]):
            with self.subTest(batch=batch):
                self.setUp()
                self.delete(batch)

                self.assertEqual(self.recompute.call_count, 2)
                self.assertEqual(
                    sorted(c.args[0] for c in self.recompute.call_args_list),
                    ['p1', 'p2']
                )
                self.assertEqual(self.backend.counts, {'p1': 0, 'p2': 2})

    def test_capture_miss_does_not_affect_rest_of_batch(self):
        self.router.on_before_delete([1])
        self.backend.delete([1, 3])

        with self.assertLogs('blog.capture', level='WARNING'):
            recomputed = self.router.on_after_delete([1, 3])

        self.assertEqual(recomputed, {'p1'})
        self.recompute.assert_called_once_with('p1')

    def test_recompute_failure_on_one_post_continues_with_others(self):
        def flaky(post_id):
            if post_id == 'p1':
                raise DatabaseError('p1 locked')
            return self.backend.recompute(post_id)

        self.recompute.side_effect = flaky

        with self.assertLogs('blog.hooks', level='ERROR'):
            recomputed = self.delete([1, 3])

        self.assertEqual(recomputed, {'p2'})
        self.assertEqual(self.backend.counts, {'p2': 2})

    def test_after_delete_with_no_keys(self):
        self.assertEqual(self.router.on_after_delete(None), set())
        self.recompute.assert_not_called()

    def test_concurrent_deletes_on_distinct_posts(self):
        comments = {}
        for post in range(20):
            for n in range(5):
                comments[post * 100 + n] = post
        backend = FakeBackend(comments)
        router = CommentCountRouter(CaptureStore(reader=backend.read), recompute=backend.recompute)

        def delete_two(post):
            ids = [post * 100, post * 100 + 1]
            router.on_before_delete(ids)
            backend.delete(ids)
            router.on_after_delete(ids)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(delete_two, range(20)))

        self.assertEqual(backend.counts, {post: 3 for post in range(20)})


class HookErrorBoundaryTestCase(TestCase):
    """Malformed payloads through the real recompute and capture never escape a hook."""

    def setUp(self):
        self.store = CaptureStore()
        self.router = CommentCountRouter(self.store)

    def test_create_with_non_numeric_post(self):
        with self.assertLogs('blog.hooks', level='ERROR'):
            result = self.router.on_create({'post': 'abc'})

        self.assertIsNone(result)

    def test_before_delete_with_non_numeric_id(self):
        with self.assertLogs('blog.hooks', level='ERROR'):
            result = self.router.on_before_delete(['abc'])

        self.assertEqual(result, ['abc'])

    def test_after_delete_with_non_numeric_post(self):
        self.store.record([(5, 'abc')])

        with self.assertLogs('blog.hooks', level='ERROR'):
            recomputed = self.router.on_after_delete([5])

        self.assertEqual(recomputed, set())
        self.assertEqual(len(self.store), 0)

    def test_after_delete_store_failure_is_logged(self):
        with patch.object(self.store, 'drain_posts_for', side_effect=RuntimeError('broken')):
            with self.assertLogs('blog.hooks', level='ERROR'):
                recomputed = self.router.on_after_delete([5])

        self.assertEqual(recomputed, set())

    def test_record_failure_is_logged(self):
        with patch.object(self.store, 'record', side_effect=RuntimeError('broken')):
            with self.assertLogs('blog.hooks', level='ERROR'):
                self.router.record_before_delete([(5, 1)])


class CommentSignalTestCase(TestCase):
    """End to end through Django model signals."""

    def setUp(self):
        reset_hook_state()
        self.user = User.objects.create_user('author', 'a@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, title='Post', content='Content')

    def tearDown(self):
        reset_hook_state()

    def add_comments(self, post, n, parent=None):
        return [
            Comment.objects.create(post=post, author=self.user, content=f'c{i}', parent_comment=parent)
            for i in range(n)
        ]

    def test_single_create(self):
        self.assertEqual(self.post.comment_count, 0)

        Comment.objects.create(post=self.post, author=self.user, content='First!')

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)

    def test_edit_does_not_recompute(self):
        comment = self.add_comments(self.post, 1)[0]
        Post.objects.filter(id=self.post.id).update(comment_count=42)

        comment.content = 'Edited'
        comment.save()

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 42)

    def test_batch_delete(self):
        """3 comments, delete 2 in one QuerySet.delete() -> 1."""
        comments = self.add_comments(self.post, 3)

        with self.captureOnCommitCallbacks(execute=True):
            Comment.objects.filter(id__in=[comments[0].id, comments[1].id]).delete()

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)
        self.assertEqual(len(comment_signals.capture_store), 0)

    def test_multi_post_batch_recomputes_each_post_once(self):
        other = Post.objects.create(author=self.user, title='Other', content='Content')
        mine = self.add_comments(self.post, 2)
        theirs = self.add_comments(other, 3)

        router = comment_signals.router
        with patch.object(router, 'recompute', wraps=router.recompute) as spy:
            with self.captureOnCommitCallbacks(execute=True):
                Comment.objects.filter(id__in=[mine[0].id, theirs[0].id, mine[1].id]).delete()

        self.assertEqual(sorted(c.args[0] for c in spy.call_args_list), sorted([self.post.id, other.id]))
        self.post.refresh_from_db()
        other.refresh_from_db()
        self.assertEqual(self.post.comment_count, 0)
        self.assertEqual(other.comment_count, 2)

    def test_deleting_parent_cascades_replies(self):
        root = self.add_comments(self.post, 1)[0]
        self.add_comments(self.post, 2, parent=root)
        self.add_comments(self.post, 1)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 4)

        with self.captureOnCommitCallbacks(execute=True):
            root.delete()

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)

    def test_deleting_post_cascades_without_error(self):
        self.add_comments(self.post, 3)

        with self.captureOnCommitCallbacks(execute=True):
            self.post.delete()

        self.assertFalse(Comment.objects.exists())
        self.assertEqual(len(comment_signals.capture_store), 0)

    def test_capture_is_one_query_per_delete_hook(self):
        comment = self.add_comments(self.post, 1)[0]

        with CaptureQueriesContext(connection) as context:
            comment_signals.router.on_before_delete([comment.id])

        selects = [q for q in context.captured_queries if q['sql'].startswith('SELECT')]
        self.assertEqual(len(selects), 1)
        comment_signals.capture_store.clear()

    def test_missed_capture_drifts_until_reconciled(self):
        comments = self.add_comments(self.post, 2)

        with patch.object(comment_signals.capture_store, 'record'):
            with self.assertLogs('blog.capture', level='WARNING'):
                with self.captureOnCommitCallbacks(execute=True):
                    comments[0].delete()

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 2)  # known gap

        recompute_all_comment_counts()
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)

    def test_recompute_failure_does_not_roll_back_comment(self):
        with patch('blog.accessors.update_post_comment_count', side_effect=DatabaseError('write failed')):
            with self.assertLogs('blog', level='ERROR'):
                comment = Comment.objects.create(post=self.post, author=self.user, content='Still saved')

        self.assertTrue(Comment.objects.filter(id=comment.id).exists())
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 0)

    def test_capture_failure_does_not_block_delete(self):
        comment = self.add_comments(self.post, 1)[0]

        with patch.object(comment_signals.capture_store, 'record', side_effect=DatabaseError('store down')):
            with self.assertLogs('blog', level='WARNING') as logs:
                with self.captureOnCommitCallbacks(execute=True):
                    comment.delete()

        self.assertFalse(Comment.objects.filter(post=self.post).exists())
        self.assertTrue(any('Failed to record comments' in line for line in logs.output))

    def test_queryset_delete_reads_no_comment_rows_for_capture(self):
        self.add_comments(self.post, 5)

        with patch('blog.accessors.get_comments_by_ids') as reader:
            with self.captureOnCommitCallbacks(execute=True):
                Comment.objects.filter(post=self.post).delete()

        reader.assert_not_called()
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 0)
        self.assertEqual(len(comment_signals.capture_store), 0)

    def test_delete_hooks_do_not_select_from_comments(self):
        self.add_comments(self.post, 5)

        with CaptureQueriesContext(connection) as context:
            with self.captureOnCommitCallbacks(execute=True):
                Comment.objects.filter(post=self.post).delete()

        # Only the Collector's own loads (comments, then their replies) read comment rows
        comment_selects = [
            q for q in context.captured_queries
            if q['sql'].startswith('SELECT') and 'FROM "blog_comment"' in q['sql'] and 'COUNT(' not in q['sql']
        ]
        self.assertLessEqual(len(comment_selects), 2)

    def test_delete_after_rollback_is_counted_once(self):
        first = self.add_comments(self.post, 2)[0]
        first_id = first.id

        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                first.delete()
                raise RuntimeError('abort')

        self.assertTrue(Comment.objects.filter(id=first_id).exists())
        first = Comment.objects.get(id=first_id)

        with self.assertNoLogs('blog.capture', level='WARNING'):
            with self.captureOnCommitCallbacks(execute=True):
                first.delete()

        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)
        self.assertEqual(len(comment_signals.capture_store), 0)


class CommentTreeTestCase(TestCase):
    """Comment forest for the post detail view."""

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, title='Test', content='Content')

    def test_tree_building_nested(self):
        c1 = Comment.objects.create(post=self.post, author=self.user, content='Comment 1')
        c2 = Comment.objects.create(post=self.post, author=self.user, content='Reply', parent_comment=c1)
        Comment.objects.create(post=self.post, author=self.user, content='Reply to reply', parent_comment=c2)
        c4 = Comment.objects.create(post=self.post, author=self.user, content='Comment 2')

        tree = build_comment_tree(get_all_comments_for_post(self.post.id))

        self.assertEqual([node['comment'].id for node in tree], [c1.id, c4.id])
        self.assertEqual(tree[0]['replies'][0]['comment'].id, c2.id)
        self.assertEqual(len(tree[0]['replies'][0]['replies']), 1)


class BlogAPITestCase(APITestCase):
    """REST surface keeps comment_count consistent and read-only."""

    def setUp(self):
        reset_hook_state()
        self.user = User.objects.create_user('author', 'a@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.post = Post.objects.create(author=self.user, title='Post', content='Content')
        self.client.force_authenticate(user=self.user)

    def tearDown(self):
        reset_hook_state()

    def test_create_post_ignores_comment_count(self):
        response = self.client.post(
            reverse('post-list'),
            {'title': 'New', 'content': 'Body', 'comment_count': 50},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Post.objects.get(id=response.data['id']).comment_count, 0)

    def test_create_comment_updates_count(self):
        response = self.client.post(
            reverse('comment-create', args=[self.post.id]),
            {'content': 'Hello'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['post_comment_count'], 1)

    def test_reply_must_belong_to_same_post(self):
        other_post = Post.objects.create(author=self.user, title='Other', content='Content')
        parent = Comment.objects.create(post=other_post, author=self.user, content='Elsewhere')

        response = self.client.post(
            reverse('comment-create', args=[self.post.id]),
            {'content': 'Reply', 'parent_comment': parent.id},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 0)

    def test_post_detail_includes_tree_and_count(self):
        root = Comment.objects.create(post=self.post, author=self.user, content='Root')
        Comment.objects.create(post=self.post, author=self.user, content='Reply', parent_comment=root)

        response = self.client.get(reverse('post-detail', args=[self.post.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['comment_count'], 2)
        self.assertEqual(len(response.data['comments']), 1)
        self.assertEqual(len(response.data['comments'][0]['replies']), 1)

    def test_edit_comment_keeps_count(self):
        comment = Comment.objects.create(post=self.post, author=self.user, content='Before')

        response = self.client.patch(
            reverse('comment-detail', args=[comment.id]),
            {'content': 'After'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['content'], 'After')
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)

    def test_delete_comment_updates_count(self):
        comment = Comment.objects.create(post=self.post, author=self.user, content='Bye')

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.delete(reverse('comment-detail', args=[comment.id]))

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 0)

    def test_cannot_delete_others_comment(self):
        comment = Comment.objects.create(post=self.post, author=self.other, content='Not yours')

        response = self.client.delete(reverse('comment-detail', args=[comment.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(Comment.objects.filter(id=comment.id).exists())

    def test_bulk_delete_across_posts(self):
        other_post = Post.objects.create(author=self.other, title='Other', content='Content')
        mine = [
            Comment.objects.create(post=self.post, author=self.user, content='a'),
            Comment.objects.create(post=self.post, author=self.user, content='b'),
            Comment.objects.create(post=other_post, author=self.user, content='c'),
        ]
        kept = Comment.objects.create(post=other_post, author=self.other, content='d')

        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.post(
                reverse('comment-bulk-delete'),
                {'ids': [mine[0].id, mine[2].id, kept.id]},
                format='json'
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['deleted'], sorted([mine[0].id, mine[2].id]))
        self.post.refresh_from_db()
        other_post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)
        self.assertEqual(other_post.comment_count, 1)

    def test_recompute_endpoint_requires_staff(self):
        response = self.client.post(reverse('recompute-comment-counts'), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_recompute_endpoint_fixes_drift(self):
        Comment.objects.create(post=self.post, author=self.user, content='x')
        Post.objects.filter(id=self.post.id).update(comment_count=9)
        admin = User.objects.create_user('admin', 'admin@test.com', 'pass', is_staff=True)
        self.client.force_authenticate(user=admin)

        response = self.client.post(
            reverse('recompute-comment-counts'),
            {'post_ids': [self.post.id]},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['updated'], [self.post.id])
        self.assertEqual(response.data['total'], 1)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)
