from django.core.management.base import BaseCommand

from apps.accounts.services import CredentialService


class Command(BaseCommand):
    help = 'Delete expired refresh tokens'

    def handle(self, *args, **options):
        deleted = CredentialService.clean_expired()
        self.stdout.write(self.style.SUCCESS(f'Removed {deleted} expired token rows'))
