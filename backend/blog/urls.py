"""
Blog App URL Configuration
"""
from django.urls import path
from .views import (
    PostListCreateView,
    PostDetailView,
    CommentCreateView,
    CommentDetailView,
    CommentBulkDeleteView,
    RecomputeCommentCountsView
)

urlpatterns = [
    # Posts
    path('posts/', PostListCreateView.as_view(), name='post-list'),
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),
    path('posts/<int:post_id>/comments/', CommentCreateView.as_view(), name='comment-create'),

    # Comments
    path('comments/bulk-delete/', CommentBulkDeleteView.as_view(), name='comment-bulk-delete'),
    path('comments/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),

    # Maintenance
    path(
        'maintenance/recompute-comment-counts/',
        RecomputeCommentCountsView.as_view(),
        name='recompute-comment-counts'
    ),
]
