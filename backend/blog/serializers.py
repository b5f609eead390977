"""
DRF Serializers
===============

DESIGN DECISIONS:
-----------------
1. Separate serializers for list vs detail views (performance)
2. Comment forest is pre-built by queries.build_comment_tree and passed in context
3. comment_count is READ-ONLY everywhere - only the hooks write it
"""

from rest_framework import serializers
from django.contrib.auth.models import User

from .models import Post, Comment

MAX_BULK_DELETE = 500


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""

    class Meta:
        model = User
        fields = ['id', 'username', 'first_name', 'last_name']
        read_only_fields = fields


class PostListSerializer(serializers.ModelSerializer):
    """Feed list view - no nested comments, count comes from the denormalized column."""
    author = UserSerializer(read_only=True)

    class Meta:
        model = Post
        fields = [
            'id',
            'title',
            'content',
            'author',
            'comment_count',
            'created_at',
            'updated_at'
        ]
        read_only_fields = ['comment_count', 'created_at', 'updated_at']


class PostCreateSerializer(serializers.ModelSerializer):
    """
    Serializer for creating posts.

    Author is set from request.user in the view, not from input.
    A comment_count in the body is ignored.
    """

    class Meta:
        model = Post
        fields = ['id', 'title', 'content', 'comment_count']
        read_only_fields = ['id', 'comment_count']

    def validate_title(self, value):
        if not value.strip():
            raise serializers.ValidationError("Title cannot be empty.")
        return value.strip()


class CommentSerializer(serializers.ModelSerializer):
    """A single comment, without its replies."""
    author = UserSerializer(read_only=True)

    class Meta:
        model = Comment
        fields = [
            'id',
            'post',
            'content',
            'author',
            'parent_comment',
            'created_at',
            'updated_at'
        ]
        read_only_fields = fields


class CommentCreateSerializer(serializers.ModelSerializer):
    """
    Serializer for creating comments.

    Validates that the parent comment (if provided) belongs to the same post.
    Post ID comes from the view (URL parameter).
    """

    class Meta:
        model = Comment
        fields = ['id', 'content', 'parent_comment']
        read_only_fields = ['id']

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value.strip()

    def validate(self, attrs):
        parent = attrs.get('parent_comment')
        post_id = self.context.get('post_id')

        if parent and parent.post_id != post_id:
            raise serializers.ValidationError({
                'parent_comment': 'Parent comment must belong to the same post.'
            })

        return attrs


class CommentUpdateSerializer(serializers.ModelSerializer):
    """Edit content only. Moving a comment to another post is not allowed."""

    class Meta:
        model = Comment
        fields = ['id', 'content']
        read_only_fields = ['id']

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value.strip()


class CommentTreeSerializer(serializers.Serializer):
    """
    Serializer for the pre-built comment forest.

    Structure:
    {
        "comment": { ...comment data... },
        "replies": [ ...nested CommentTreeSerializer... ]
    }
    """
    comment = CommentSerializer()
    replies = serializers.SerializerMethodField()

    def get_replies(self, obj):
        return CommentTreeSerializer(obj['replies'], many=True).data


class PostDetailSerializer(serializers.ModelSerializer):
    """Post with nested comments (tree passed in context)."""
    author = UserSerializer(read_only=True)
    comments = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'title',
            'content',
            'author',
            'comment_count',
            'created_at',
            'updated_at',
            'comments'
        ]

    def get_comments(self, obj):
        comment_tree = self.context.get('comment_tree', [])
        return CommentTreeSerializer(comment_tree, many=True).data


class CommentBulkDeleteSerializer(serializers.Serializer):
    ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
        max_length=MAX_BULK_DELETE
    )


class RecomputeRequestSerializer(serializers.Serializer):
    """Optional list of posts; omitted means every post."""
    post_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        required=False,
        allow_empty=False
    )
