"""
Blogcore URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Blog API Server',
        'version': '1.0',
        'endpoints': {
            'posts': '/api/posts/',
            'post': '/api/posts/<id>/',
            'comments': '/api/posts/<id>/comments/',
            'comment': '/api/comments/<id>/',
            'bulk_delete_comments': '/api/comments/bulk-delete/',
            'recompute_comment_counts': '/api/maintenance/recompute-comment-counts/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('blog.urls')),
]
