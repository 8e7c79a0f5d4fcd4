"""
Health check endpoints.

Provides /healthz, /readyz and /metrics endpoints for monitoring.
"""
import logging

from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.http import HttpResponse, JsonResponse
from django.views import View
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from apps.core.container import get_container
from apps.core.dynamodb import TableNames, table_name

logger = logging.getLogger(__name__)


class HealthzView(View):
    """
    Basic health check endpoint.

    Returns 200 OK if application is running.
    Does not check dependencies.
    """

    def get(self, request):
        """Return basic health status."""
        health_data = {
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }

        # Add commit hash if available (set by deployment)
        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            health_data['commit'] = commit_hash

        return JsonResponse(health_data, status=200)


class ReadyzView(View):
    """
    Readiness check endpoint.

    Returns 200 OK if application is ready to serve traffic.
    Checks that the document store answers for a core table.
    """

    probe_table = TableNames.VISITS

    def get(self, request):
        """Return readiness status with dependency checks."""
        checks = {
            'dynamodb': self._check_dynamodb(),
        }

        all_healthy = all(checks.values())

        response_data = {
            'status': 'ready' if all_healthy else 'not_ready',
            'checks': checks,
        }

        status_code = 200 if all_healthy else 503

        return JsonResponse(response_data, status=status_code)

    def _check_dynamodb(self):
        """DescribeTable on the probe table."""
        container = get_container()
        name = table_name(self.probe_table, container.environment)
        try:
            client = container.resource.meta.client
            client.describe_table(TableName=name)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(
                'DynamoDB health check failed',
                extra={
                    'event': 'health_check_failed',
                    'check': 'dynamodb',
                    'table': name,
                    'error': str(e)
                }
            )
            return False


class MetricsView(View):
    """Prometheus scrape endpoint."""

    def get(self, request):
        return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)
