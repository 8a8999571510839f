"""Auction, bid and sale records for the settlement flow."""
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Auction(models.Model):
    """A listing that accepts bids until ``end_time``."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        ENDED = "ended", "Ended"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="auctions",
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    starting_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    reserve_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    current_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Highest standing bid, or the starting price while there are no bids",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    end_time = models.DateTimeField()
    ended_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "auctions_auction"
        ordering = ["end_time"]
        indexes = [
            models.Index(fields=["status", "end_time"], name="auction_status_end_idx"),
            models.Index(fields=["seller", "status"], name="auction_seller_status_idx"),
        ]

    def __str__(self):
        return f"Auction<{self.title}:{self.status}>"

    def save(self, *args, **kwargs):
        if self.current_price is None:
            self.current_price = self.starting_price
        return super().save(*args, **kwargs)

    @property
    def has_expired(self) -> bool:
        return timezone.now() >= self.end_time

    @property
    def reserve_met(self) -> bool:
        if self.reserve_price is None:
            return True
        return self.current_price >= self.reserve_price


class Bid(models.Model):
    """A bidder's offer together with the hold that backs it."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        WINNING = "winning", "Winning"
        OUTBID = "outbid", "Outbid"
        CANCELLED = "cancelled", "Cancelled"

    class PaymentMethod(models.TextChoices):
        CARD = "card", "Card"
        BIDCOIN = "bidcoin", "BidCoin"
        HYBRID = "hybrid", "Hybrid"

    class AuthorizationStatus(models.TextChoices):
        AUTHORIZED = "authorized", "Authorized"
        CAPTURED = "captured", "Captured"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = (Status.WINNING, Status.OUTBID, Status.CANCELLED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    auction = models.ForeignKey(Auction, on_delete=models.CASCADE, related_name="bids")
    bidder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bids",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices)
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, null=True)
    authorization_status = models.CharField(
        max_length=16,
        choices=AuthorizationStatus.choices,
        blank=True,
        null=True,
    )
    authorized_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    bidcoin_hold = models.IntegerField(default=0, help_text="Coins debited from the bidder and not yet released")
    holds_released = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "auctions_bid"
        ordering = ["-amount", "created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["auction"],
                condition=Q(status="winning"),
                name="bid_single_winner_per_auction",
            ),
            models.CheckConstraint(condition=Q(bidcoin_hold__gte=0), name="bid_bidcoin_hold_non_negative"),
        ]
        indexes = [
            models.Index(fields=["auction", "status", "-amount"], name="bid_auction_status_amount_idx"),
            models.Index(fields=["bidder", "-created_at"], name="bid_bidder_created_idx"),
        ]

    def __str__(self):
        return f"Bid<{self.amount} on {self.auction_id}:{self.status}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def has_open_hold(self) -> bool:
        if self.payment_method == self.PaymentMethod.BIDCOIN:
            return self.bidcoin_hold > 0 and not self.holds_released
        return (
            bool(self.stripe_payment_intent_id)
            and self.authorization_status == self.AuthorizationStatus.AUTHORIZED
        )


class SalePayment(models.Model):
    """Durable record of a completed sale and the state of the seller payout."""

    class TransferStatus(models.TextChoices):
        AUTOMATIC = "automatic", "Automatic"
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        NOT_REQUIRED = "not_required", "Not required"

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"
        REFUNDED = "refunded", "Refunded"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    auction = models.OneToOneField(Auction, on_delete=models.PROTECT, related_name="sale")
    winning_bid = models.OneToOneField(Bid, on_delete=models.PROTECT, related_name="sale")
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2)
    seller_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=16, choices=Bid.PaymentMethod.choices)
    stripe_payment_intent_id = models.CharField(max_length=255, blank=True, null=True)
    bidcoin_amount = models.IntegerField(default=0)
    transfer_status = models.CharField(max_length=16, choices=TransferStatus.choices)
    stripe_transfer_id = models.CharField(max_length=255, blank=True, null=True)
    transfer_attempts = models.PositiveIntegerField(default=0)
    last_transfer_error = models.TextField(blank=True, default="")
    status = models.CharField(max_length=24, choices=Status.choices, default=Status.COMPLETED)
    refunded_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "auctions_sale_payment"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["transfer_status"], name="sale_transfer_status_idx"),
            models.Index(fields=["seller", "-created_at"], name="sale_seller_created_idx"),
        ]

    def __str__(self):
        return f"SalePayment<{self.auction_id}:{self.amount}:{self.transfer_status}>"

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount
