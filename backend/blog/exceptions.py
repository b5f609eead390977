"""
Error types for the comment-count subsystem, and the custom
exception handler for DRF.

Core errors are raised by counters.py and swallowed (logged) at the hook
boundary in hooks.py - they never reach the user-facing write path.
The DRF handler provides a consistent error response format across the API.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class CommentCountError(Exception):
    """Base class for comment-count maintenance failures."""


class RecomputeError(CommentCountError):
    """
    Counting a post's comments or writing the result failed.

    Nothing was written: the recompute runs in a savepoint, so the stored
    count is stale (fixable by replaying the recompute), never wrong by a delta.
    """

    def __init__(self, post_id, message=None):
        self.post_id = post_id
        super().__init__(message or f"Failed to recompute comment_count for post {post_id}")


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts Django exceptions to DRF responses
    3. Provides consistent error format
    """

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    # If DRF handled it, enhance the response
    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, ValueError):
        return Response(
            {'error': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    logger.exception(f"Unhandled exception: {exc}")

    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
