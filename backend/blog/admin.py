"""
Django Admin Configuration for Blog Models
"""
from django.contrib import admin, messages

from .counters import recompute_all_comment_counts
from .models import Post, Comment


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['title', 'author', 'comment_count', 'created_at']
    list_filter = ['created_at']
    search_fields = ['title', 'content', 'author__username']
    # Maintained by the comment hooks only
    readonly_fields = ['comment_count', 'created_at', 'updated_at']
    actions = ['recompute_comment_counts']

    @admin.action(description='Recompute comment count')
    def recompute_comment_counts(self, request, queryset):
        result = recompute_all_comment_counts(list(queryset.values_list('id', flat=True)))
        level = messages.WARNING if result.failed or result.missing else messages.SUCCESS
        self.message_user(request, result.summary(), level=level)


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'parent_comment', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__username']
    readonly_fields = ['created_at', 'updated_at']
