from django.core.management.base import BaseCommand

from apps.tickets.services import TicketService


class Command(BaseCommand):
    help = 'Render PDF/QR artifacts for tickets that do not have one yet'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            help='Maximum number of tickets to process',
        )

    def handle(self, *args, **options):
        self.stdout.write('Rendering missing ticket artifacts...')

        rendered, failed = TicketService.render_missing_artifacts(limit=options.get('limit'))

        self.stdout.write(self.style.SUCCESS(f'Rendered: {rendered}'))
        if failed:
            self.stdout.write(self.style.WARNING(f'Failed: {failed} (see logs)'))
