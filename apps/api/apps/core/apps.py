"""Core app configuration."""
from django.apps import AppConfig
from django.conf import settings


class CoreConfig(AppConfig):
    """Builds the dependency container once per process."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    container = None

    def ready(self):
        from apps.core.container import Container
        from apps.core.observability.metrics import metrics

        # boto3 resources are lazy: no network call happens here
        self.container = Container.from_settings()
        metrics.build_info.info({
            'version': settings.VERSION,
            'commit': settings.COMMIT_HASH or 'unknown',
            'environment': settings.DYNAMODB_ENVIRONMENT,
        })
