"""
Data Models for the Blog
========================

Design Philosophy:
------------------
1. Comments use Adjacency List pattern (parent_comment FK) - simple, works with ORM
   - Replies cascade with their parent, so deleting a root comment removes
     its whole thread in one Collector pass
   - Tree assembly happens in Python (see queries.build_comment_tree)

2. Post.comment_count is a DENORMALIZED aggregate
   - Source of truth is the Comment table
   - Maintained by the hooks in hooks.py / signals.py, never by user writes
   - Always a full recount (see counters.py), never F() +1 / -1
   - Trade-off: one COUNT(*) per comment write vs N+1 counting on every read

Indexes Strategy:
-----------------
- comment.post_id + comment.created_at: For fetching and counting a post's comments
- comment.parent_comment_id: For thread traversal and cascades
- post.created_at: For feed ordering
"""

from django.db import models
from django.contrib.auth.models import User
from django.core.validators import MinLengthValidator
from django.utils import timezone


class Post(models.Model):
    """
    A blog post. Root-level content that can have comments.

    comment_count is written only by counters.recompute_comment_count.
    Serializers and the admin expose it read-only.
    """
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
        db_index=True
    )
    title = models.CharField(
        max_length=300,
        validators=[MinLengthValidator(1)]
    )
    content = models.TextField()
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True  # Feed ordering
    )
    updated_at = models.DateTimeField(auto_now=True)

    # Denormalized: number of Comment rows whose post is this post
    comment_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.title[:50]} by {self.author.username}"


class Comment(models.Model):
    """
    Threaded comment using Adjacency List pattern.

    A comment with no parent_comment is a root of its post's thread.
    Creation and deletion are the only transitions that change
    Post.comment_count; editing content triggers nothing.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments',
        db_index=True  # Critical: counting and fetching all comments for a post
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    parent_comment = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
        db_index=True
    )
    content = models.TextField(
        validators=[MinLengthValidator(1)]
    )
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at']  # Oldest first within a thread
        indexes = [
            models.Index(fields=['post', 'created_at'], name='blog_comment_post_created_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.author.username} on {self.post_id}"
