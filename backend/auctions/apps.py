from django.apps import AppConfig


class AuctionsConfig(AppConfig):
    """
    Auction settlement app configuration
    """
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'auctions'
    verbose_name = 'Auctions'

    def ready(self):
        from .services.payouts import register_queue_callbacks

        register_queue_callbacks()
