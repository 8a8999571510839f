import secrets

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone

REFERRAL_CODE_BYTES = 4


def generate_referral_code() -> str:
    return secrets.token_hex(REFERRAL_CODE_BYTES)


class User(AbstractUser):
    """
    Marketplace user; the same account can bid and sell
    """

    class SubscriptionPlan(models.TextChoices):
        STANDARD = "standard", "Standard"
        PREMIUM = "premium", "Premium"

    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    # Payment processor identifiers
    stripe_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe customer used for card authorizations when bidding",
    )
    stripe_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe connected account receiving seller payouts",
    )
    # Seller subscription
    subscription_plan = models.CharField(
        max_length=20,
        choices=SubscriptionPlan.choices,
        default=SubscriptionPlan.STANDARD,
    )
    subscription_expires_at = models.DateTimeField(blank=True, null=True)
    # Referrals
    referral_code = models.CharField(max_length=32, unique=True, blank=True, null=True)
    referred_by = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="referrals",
    )
    referral_last_attempt_at = models.DateTimeField(blank=True, null=True)

    USERNAME_FIELD = 'username'
    REQUIRED_FIELDS = ['email']

    class Meta:
        db_table = 'user'
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.username

    @property
    def is_premium_seller(self) -> bool:
        if self.subscription_plan != self.SubscriptionPlan.PREMIUM:
            return False
        if self.subscription_expires_at is None:
            return True
        return self.subscription_expires_at > timezone.now()

    def save(self, *args, **kwargs):
        if not self.referral_code:
            self.referral_code = generate_referral_code()
        return super().save(*args, **kwargs)
