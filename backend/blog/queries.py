"""
Read Queries for Posts and Comment Threads
==========================================

Avoids N+1 when loading a post with its threaded comments:

1. Fetch ALL comments for a post in ONE query (author via select_related)
2. Build the forest in Python with an O(n) single pass

Total: 1 query for post + 1 query for all comments, regardless of nesting depth.

Note that the post's comment_count is READ from the denormalized column -
it is never derived here.
"""

from typing import Optional

from .models import Post, Comment


def get_post_with_author(post_id: int) -> Optional[Post]:
    """
    Fetch a single post with its author.

    Query: 1 (with JOIN)
    """
    return (
        Post.objects
        .select_related('author')
        .filter(id=post_id)
        .first()
    )


def get_all_comments_for_post(post_id: int) -> list[Comment]:
    """
    Fetch ALL comments for a post in a SINGLE query, oldest first.

    Ordering by created_at means a parent almost always precedes its replies,
    and gives chronological display within threads.
    """
    return list(
        Comment.objects
        .filter(post_id=post_id)
        .select_related('author')
        .order_by('created_at')
    )


def build_comment_tree(flat_comments: list[Comment]) -> list[dict]:
    """
    Build nested forest from flat list.

    Example Input (flat):
        [Comment(id=1, parent=None), Comment(id=2, parent=1), Comment(id=3, parent=1)]

    Example Output (nested):
        [
            {
                'comment': Comment(id=1),
                'replies': [
                    {'comment': Comment(id=2), 'replies': []},
                    {'comment': Comment(id=3), 'replies': []}
                ]
            }
        ]
    """
    nodes = {}
    for comment in flat_comments:
        nodes[comment.id] = {
            'comment': comment,
            'replies': []
        }

    root_nodes = []
    for comment in flat_comments:
        node = nodes[comment.id]
        if comment.parent_comment_id is None:
            root_nodes.append(node)
        else:
            parent_node = nodes.get(comment.parent_comment_id)
            if parent_node:
                parent_node['replies'].append(node)
            else:
                # Parent not in this list - show as a root rather than drop it
                root_nodes.append(node)

    return root_nodes


def get_post_with_comment_tree(post_id: int) -> Optional[dict]:
    """
    Post plus its fully nested comment forest.

    TOTAL QUERIES: 2
    """
    post = get_post_with_author(post_id)
    if not post:
        return None

    flat_comments = get_all_comments_for_post(post_id)

    return {
        'post': post,
        'comments': build_comment_tree(flat_comments),
    }
