"""
Management command to create the default staff accounts
"""
from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model

User = get_user_model()

DEFAULT_USERS = (
    {'username': 'admin', 'password': 'admin123', 'name': 'Administrator', 'role': 'admin'},
    {'username': 'vendor_test', 'password': 'vend123', 'name': 'Test Vendor', 'role': 'vendor'},
    {'username': 'controleur1', 'password': 'ctrl123', 'name': 'Gate Controller', 'role': 'controller'},
)


class Command(BaseCommand):
    help = 'Create default admin, vendor and controller accounts (skips existing usernames)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset-passwords',
            action='store_true',
            help='Reset passwords of existing default accounts',
        )

    def handle(self, *args, **options):
        for account in DEFAULT_USERS:
            user = User.objects.filter(username=account['username']).first()

            if user is None:
                extra = {'is_superuser': True} if account['role'] == User.Role.ADMIN else {}
                User.objects.create_user(
                    username=account['username'],
                    password=account['password'],
                    name=account['name'],
                    role=account['role'],
                    **extra
                )
                self.stdout.write(self.style.SUCCESS(f"  Created {account['role']}: {account['username']}"))
                continue

            if options['reset_passwords']:
                user.set_password(account['password'])
                user.save(update_fields=['password', 'updated_at'])
                self.stdout.write(self.style.WARNING(f"  Password reset: {account['username']}"))
            else:
                self.stdout.write(f"  Exists: {account['username']}")

        self.stdout.write(self.style.WARNING('Change the default passwords before going to production!'))
