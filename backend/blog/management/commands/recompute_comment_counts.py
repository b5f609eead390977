"""
Reconciliation command: recount comments for every post.

Usage:
    python manage.py recompute_comment_counts
    python manage.py recompute_comment_counts --post 3 --post 7
    python manage.py recompute_comment_counts --check
"""

from django.core.management.base import BaseCommand, CommandError

from blog.counters import recompute_all_comment_counts, find_drifted_posts


class Command(BaseCommand):
    help = 'Recompute Post.comment_count from the comments table'

    def add_arguments(self, parser):
        parser.add_argument(
            '--post',
            type=int,
            action='append',
            dest='post_ids',
            help='Only recompute this post (repeatable)'
        )
        parser.add_argument(
            '--check',
            action='store_true',
            help='Report posts whose stored count has drifted, without writing'
        )

    def handle(self, *args, **options):
        if options['check']:
            drifted = list(find_drifted_posts())
            for post in drifted:
                self.stdout.write(
                    f'  post {post.id}: stored {post.comment_count}, actual {post.actual_comment_count}'
                )
            if drifted:
                raise CommandError(f'{len(drifted)} posts have a drifted comment_count')
            self.stdout.write(self.style.SUCCESS('All comment counts are consistent.'))
            return

        result = recompute_all_comment_counts(options['post_ids'])

        for post_id in result.missing:
            self.stdout.write(self.style.WARNING(f'  post {post_id} does not exist'))

        if result.failed:
            raise CommandError(
                f'Recomputed {len(result.updated)} posts; failed for posts {result.failed}'
            )

        self.stdout.write(self.style.SUCCESS(
            f'Recomputed comment counts for {len(result.updated)} posts.'
        ))
