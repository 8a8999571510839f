from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import UserBidcoinBalance


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_bidcoin_wallet(sender, instance, created, **kwargs):
    """Open an empty wallet for every new user."""
    if created:
        UserBidcoinBalance.objects.get_or_create(user=instance)
