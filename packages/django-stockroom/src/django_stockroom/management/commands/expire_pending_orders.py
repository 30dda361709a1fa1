"""Management command to expire orders whose payment window elapsed."""

from django.core.management.base import BaseCommand
from django.utils import timezone

from django_stockroom.services.expiry import expirable_orders, expire_pending_orders


class Command(BaseCommand):
    help = 'Expire pending orders past their PIX expiry or payment window'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show how many orders would expire without changing them'
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options['dry_run']:
            count = expirable_orders(now).count()
            self.stdout.write(f'Would expire {count} pending orders')
            return

        expired = expire_pending_orders(now)
        self.stdout.write(
            self.style.SUCCESS(f'Expired {len(expired)} pending orders')
        )
