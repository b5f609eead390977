"""
DRF Views
=========

Thin REST surface over posts and comments. Every comment create/delete that
goes through here fires the model signals, which keep Post.comment_count in
sync (signals.py). No view ever writes comment_count itself.

AUTHENTICATION NOTE:
--------------------
Session/basic authentication from DRF defaults. Reads are public; writes need
a logged-in user and only the author may edit or delete their content.
"""

from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework import generics, status, permissions
from rest_framework.pagination import CursorPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from .counters import recompute_all_comment_counts
from .models import Post, Comment
from .queries import get_post_with_comment_tree
from .serializers import (
    PostListSerializer,
    PostCreateSerializer,
    PostDetailSerializer,
    CommentSerializer,
    CommentCreateSerializer,
    CommentUpdateSerializer,
    CommentBulkDeleteSerializer,
    RecomputeRequestSerializer
)


class IsAuthorOrReadOnly(permissions.BasePermission):
    """Object-level: only the author may modify."""

    def has_object_permission(self, request, view, obj):
        if request.method in permissions.SAFE_METHODS:
            return True
        return obj.author_id == request.user.id


class FeedPagination(CursorPagination):
    """
    Cursor pagination for the post list.

    Trade-off: Can't jump to arbitrary page, but O(1) index seek vs O(n) offset.
    """
    page_size = 20
    ordering = '-created_at'
    cursor_query_param = 'cursor'


class PostListCreateView(generics.ListCreateAPIView):
    """
    GET  /api/posts/  - paginated posts, newest first (1 query with author JOIN)
    POST /api/posts/  - create a post; author from the request user
    """
    pagination_class = FeedPagination
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get_queryset(self):
        return Post.objects.select_related('author').order_by('-created_at')

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return PostCreateSerializer
        return PostListSerializer

    def perform_create(self, serializer):
        serializer.save(author=self.request.user)


class PostDetailView(APIView):
    """
    GET    /api/posts/<id>/  - post with nested comment tree (2 queries)
    DELETE /api/posts/<id>/  - author only; cascades to every comment
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly, IsAuthorOrReadOnly]

    def get(self, request, post_id):
        result = get_post_with_comment_tree(post_id)
        if not result:
            return Response(
                {'error': 'Post not found'},
                status=status.HTTP_404_NOT_FOUND
            )

        serializer = PostDetailSerializer(
            result['post'],
            context={
                'comment_tree': result['comments'],
                'request': request
            }
        )
        return Response(serializer.data)

    def delete(self, request, post_id):
        post = get_object_or_404(Post, id=post_id)
        self.check_object_permissions(request, post)
        post.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class CommentCreateView(generics.CreateAPIView):
    """
    POST /api/posts/<post_id>/comments/

    Body:
    {
        "content": "Comment text",
        "parent_comment": 123  // optional, for replies
    }

    Response includes the post's comment_count after the create hook ran.
    """
    serializer_class = CommentCreateSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['post_id'] = self.kwargs['post_id']
        return context

    def create(self, request, *args, **kwargs):
        post = get_object_or_404(Post, id=self.kwargs['post_id'])
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = serializer.save(author=request.user, post=post)

        post.refresh_from_db(fields=['comment_count'])
        data = CommentSerializer(comment).data
        data['post_comment_count'] = post.comment_count
        return Response(data, status=status.HTTP_201_CREATED)


class CommentDetailView(APIView):
    """
    PATCH  /api/comments/<id>/  - edit content (no count change)
    DELETE /api/comments/<id>/  - delete comment and its replies
    """
    permission_classes = [permissions.IsAuthenticated, IsAuthorOrReadOnly]

    def patch(self, request, comment_id):
        comment = get_object_or_404(Comment, id=comment_id)
        self.check_object_permissions(request, comment)

        serializer = CommentUpdateSerializer(comment, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(CommentSerializer(comment).data)

    def delete(self, request, comment_id):
        comment = get_object_or_404(Comment, id=comment_id)
        self.check_object_permissions(request, comment)
        comment.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class CommentBulkDeleteView(APIView):
    """
    POST /api/comments/bulk-delete/

    Body: { "ids": [1, 2, 3] }

    Deletes the requesting user's comments among the ids in ONE batch.
    Ids that don't exist or belong to someone else are ignored.
    Each affected post is recomputed once, after commit.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = CommentBulkDeleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            queryset = Comment.objects.filter(
                id__in=serializer.validated_data['ids'],
                author=request.user
            )
            deleted_ids = list(queryset.values_list('id', flat=True))
            queryset.delete()

        return Response({'deleted': sorted(deleted_ids)})


class RecomputeCommentCountsView(APIView):
    """
    POST /api/maintenance/recompute-comment-counts/

    Staff only. Reconciliation: recounts every post (or body "post_ids").
    """
    permission_classes = [permissions.IsAdminUser]

    def post(self, request):
        serializer = RecomputeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = recompute_all_comment_counts(serializer.validated_data.get('post_ids'))
        return Response(result.as_dict())
