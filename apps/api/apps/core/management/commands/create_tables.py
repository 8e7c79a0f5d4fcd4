"""
Management command to create the document store tables (local development).
"""
from django.conf import settings
from django.core.management.base import BaseCommand

from apps.core.dynamodb import create_resource
from apps.core.tables import create_tables


class Command(BaseCommand):
    help = 'Create every DynamoDB table and index for the configured environment if missing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--environment',
            default=settings.DYNAMODB_ENVIRONMENT,
            help='Table name suffix (default: DYNAMODB_ENVIRONMENT)',
        )
        parser.add_argument(
            '--endpoint-url',
            default=None,
            help='Store endpoint, e.g. http://localhost:8000 for DynamoDB Local',
        )

    def handle(self, *args, **options):
        resource = create_resource(endpoint_url=options['endpoint_url'])
        created = create_tables(resource, options['environment'])

        if created:
            for name in created:
                self.stdout.write(self.style.SUCCESS(f'Table "{name}" created'))
        else:
            self.stdout.write(self.style.WARNING('All tables already exist'))
