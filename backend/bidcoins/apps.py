from django.apps import AppConfig


class BidcoinsConfig(AppConfig):
    """
    BidCoin wallet app configuration
    """
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'bidcoins'
    verbose_name = 'BidCoins'

    def ready(self):
        from . import signals  # noqa: F401
