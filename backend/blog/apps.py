"""
Blog App Configuration
"""
from django.apps import AppConfig


class BlogConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'blog'

    def ready(self):
        # Import signals when app is ready - registers the comment-count hooks
        import blog.signals  # noqa
