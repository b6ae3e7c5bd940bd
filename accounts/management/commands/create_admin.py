import os

from django.core.management.base import BaseCommand, CommandError
from django.contrib.auth import get_user_model

User = get_user_model()


class Command(BaseCommand):
    help = 'Create or update the platform admin who can queue payouts and force-run settlement jobs'

    def add_arguments(self, parser):
        parser.add_argument('--email', default=os.getenv('ADMIN_EMAIL'))
        parser.add_argument('--password', default=os.getenv('ADMIN_PASSWORD'))

    def handle(self, *args, **options):
        email = options['email']
        password = options['password']
        if not email or not password:
            raise CommandError('Provide --email/--password or set ADMIN_EMAIL and ADMIN_PASSWORD')

        user, created = User.objects.get_or_create(email=email, defaults={
            'full_name': 'Admin User',
            'role': 'admin',
            'is_staff': True,
            'is_superuser': True,
            'is_active': True,
        })
        if not created:
            user.role = 'admin'
            user.is_staff = True
            user.is_superuser = True
            user.is_active = True
        user.set_password(password)
        user.save()

        if created:
            self.stdout.write(self.style.SUCCESS(f'Created admin user: {email}'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Updated existing admin user: {email}'))
