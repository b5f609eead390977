"""
Management command to seed the database with sample data.

Comments are created one by one through the ORM so the comment-count hooks
run exactly as they do for API writes.

Usage: python manage.py seed_data
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from blog.models import Post, Comment


class Command(BaseCommand):
    help = 'Seed the database with sample posts and threaded comments'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=5,
            help='Number of users to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=10,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=50,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        users = self._create_users(options['users'])

        self.stdout.write('Creating posts...')
        posts = self._create_posts(users, options['posts'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(users, posts, options['comments'])

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users\n'
            f'  - {len(posts)} posts\n'
            f'  - {len(comments)} comments'
        ))

    def _create_users(self, count):
        users = []
        for i in range(count):
            username = f'user{i+1}'
            user, created = User.objects.get_or_create(
                username=username,
                defaults={'email': f'{username}@example.com'}
            )
            if created:
                user.set_password('password123')
                user.save(update_fields=['password'])
            users.append(user)
        return users

    def _create_posts(self, users, count):
        titles = [
            "Notes from the weekend",
            "What I learned this month",
            "A question for readers",
            "Project update",
            "Thoughts on writing",
        ]
        contents = [
            "Lorem ipsum dolor sit amet, consectetur adipiscing elit.",
            "I've been working on this for a while and wanted to share my thoughts.",
            "Has anyone else run into this? I'd love to hear your perspectives.",
        ]

        return [
            Post.objects.create(
                author=random.choice(users),
                title=f"{random.choice(titles)} #{i+1}",
                content=random.choice(contents),
                created_at=timezone.now() - timedelta(hours=random.randint(0, 48))
            )
            for i in range(count)
        ]

    def _create_comments(self, users, posts, count):
        comments = []
        comment_texts = [
            "Great point!",
            "Thanks for sharing.",
            "Can you elaborate on this?",
            "I have a different perspective on this.",
            "Well said!",
        ]

        for _ in range(count):
            post = random.choice(posts)

            # 30% chance of replying to an existing comment on the same post
            parent = None
            existing = [c for c in comments if c.post_id == post.id]
            if existing and random.random() < 0.3:
                parent = random.choice(existing)

            comments.append(Comment.objects.create(
                post=post,
                author=random.choice(users),
                parent_comment=parent,
                content=random.choice(comment_texts)
            ))

        return comments
