from django.apps import AppConfig


class AccountsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.accounts'
    verbose_name = 'Accounts'

    def ready(self):
        """
        Start the refresh token cleanup scheduler when explicitly enabled
        """
        from django.conf import settings

        if getattr(settings, 'ENABLE_TOKEN_CLEANUP_SCHEDULER', False):
            import logging
            logger = logging.getLogger(__name__)
            try:
                from .scheduler import start_scheduler
                start_scheduler()
            except Exception:
                # Scheduler problems must not keep the API from starting
                logger.exception("Failed to start token cleanup scheduler")
