"""
Metrics instrumentation.

Prometheus counters/histograms for the document store, draft autosave,
examination writes and authorization decisions.
"""
import logging
import time
from functools import wraps

from prometheus_client import Counter, Histogram, Info

logger = logging.getLogger(__name__)


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        """Initialize metrics registry."""
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'status']
        )

        self.http_request_duration_seconds = self._create_histogram(
            'http_request_duration_seconds',
            'HTTP request duration in seconds',
            ['method'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
        )

        self.exceptions_total = self._create_counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Document Store Metrics
        # ===================================================================
        self.dynamodb_requests_total = self._create_counter(
            'dynamodb_requests_total',
            'DynamoDB calls',
            ['operation', 'table', 'result']  # result: success, error, conflict
        )

        self.dynamodb_request_duration_seconds = self._create_histogram(
            'dynamodb_request_duration_seconds',
            'DynamoDB call duration in seconds',
            ['operation'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
        )

        self.dynamodb_batch_chunks_total = self._create_counter(
            'dynamodb_batch_chunks_total',
            'Batch chunks issued',
            ['operation', 'result']
        )

        # ===================================================================
        # Clinical Workflow Metrics
        # ===================================================================
        self.examination_records_created_total = self._create_counter(
            'examination_records_created_total',
            'Examination records written',
            ['type']
        )

        self.draft_autosave_total = self._create_counter(
            'draft_autosave_total',
            'Draft autosave attempts',
            ['result']  # saved, conflict, missing
        )

        self.examination_submit_duration_seconds = self._create_histogram(
            'examination_submit_duration_seconds',
            'Draft submission (fan-out to examination tables) duration in seconds',
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
        )

        self.visits_completed_total = self._create_counter(
            'visits_completed_total',
            'Visits marked completed'
        )

        self.protocol_deviations_detected_total = self._create_counter(
            'protocol_deviations_detected_total',
            'Protocol deviations detected',
            ['type']
        )

        # ===================================================================
        # Authorization Metrics
        # ===================================================================
        self.authz_denied_total = self._create_counter(
            'authz_denied_total',
            'Requests denied by the permission model',
            ['role']
        )

        self.build_info = Info('clinical_api_build', 'Build information')

    def track_duration(self, histogram_metric, **labels):
        """
        Decorator to track function duration.

        Usage:
            @metrics.track_duration(metrics.dynamodb_request_duration_seconds, operation='Scan')
            def rebuild_stats():
                ...
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    duration = time.time() - start_time
                    target = histogram_metric.labels(**labels) if labels else histogram_metric
                    target.observe(duration)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
