"""BidCoin wallet models: per-user balance and the append-only transaction ledger."""
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q


class UserBidcoinBalance(models.Model):
    """Current BidCoin balance for a user, created lazily on first adjustment."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="bidcoin_balance",
    )
    balance = models.IntegerField(
        default=0,
        help_text="Balance in coins (100 coins = 1.00 USD)",
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "bidcoins_user_balance"
        verbose_name = "BidCoin balance"
        verbose_name_plural = "BidCoin balances"

    def __str__(self):
        return f"UserBidcoinBalance<{self.user_id}:{self.balance}>"


class BidcoinTransaction(models.Model):
    """Immutable audit trail for every BidCoin balance change."""

    class TransactionType(models.TextChoices):
        SIGNUP_BONUS = "signup_bonus", "Signup bonus"
        REFERRAL = "referral", "Referral"
        AUCTION_SALE = "auction_sale", "Auction sale"
        RAFFLE_PURCHASE = "raffle_purchase", "Raffle purchase"
        ITEM_PURCHASE = "item_purchase", "Item purchase"
        PLAN_PURCHASE = "plan_purchase", "Plan purchase"
        AUCTION_PURCHASE = "auction_purchase", "Auction purchase"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bidcoin_transactions",
    )
    change = models.IntegerField(
        help_text="Signed coin amount; positive for credits, negative for debits",
    )
    balance_after = models.IntegerField(
        help_text="Balance snapshot right after this change was applied",
    )
    type = models.CharField(max_length=32, choices=TransactionType.choices)
    reference_id = models.CharField(max_length=64, blank=True, null=True)
    reference_table = models.CharField(max_length=64, blank=True, null=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "bidcoins_transaction"
        verbose_name = "BidCoin transaction"
        verbose_name_plural = "BidCoin transactions"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=~Q(change=0), name="bidcoin_transaction_non_zero"),
        ]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="bidcoin_tx_user_created"),
            models.Index(fields=["user", "type"], name="bidcoin_tx_user_type"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("BidcoinTransaction records are immutable and cannot be updated.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("BidcoinTransaction records are immutable and cannot be deleted.")

    @property
    def usd_value(self):
        return self.change / 100

    def __str__(self):
        return f"BidcoinTransaction<{self.type}:{self.change} for {self.user_id}>"
