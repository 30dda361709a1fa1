"""Management command to bulk import stock codes from a text file."""

from django.core.management.base import BaseCommand, CommandError

from django_stockroom.exceptions import StockroomError
from django_stockroom.services.stock import bulk_import_stock


class Command(BaseCommand):
    help = 'Import stock codes (one per line) for a product or variant'

    def add_arguments(self, parser):
        parser.add_argument('product_id', help='Product primary key')
        parser.add_argument('path', help='Newline-delimited file of codes')
        parser.add_argument(
            '--variant',
            default=None,
            help='Variant primary key (required for products with variants)'
        )

    def handle(self, *args, **options):
        try:
            with open(options['path'], encoding='utf-8') as fh:
                payload = fh.read()
        except OSError as e:
            raise CommandError(f'Cannot read {options["path"]}: {e}')

        try:
            result = bulk_import_stock(options['product_id'], options['variant'], payload)
        except StockroomError as e:
            raise CommandError(str(e))

        self.stdout.write(
            self.style.SUCCESS(
                f'Imported {result.added} of {result.total} codes '
                f'({result.duplicates} duplicates), {result.current_stock} in stock'
            )
        )
