import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Auction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("starting_price", models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal("0.01"))])),
                ("reserve_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("current_price", models.DecimalField(decimal_places=2, help_text="Highest standing bid, or the starting price while there are no bids", max_digits=12)),
                ("status", models.CharField(choices=[("active", "Active"), ("ended", "Ended"), ("cancelled", "Cancelled")], default="active", max_length=16)),
                ("end_time", models.DateTimeField()),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("seller", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="auctions", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "auctions_auction",
                "ordering": ["end_time"],
                "indexes": [
                    models.Index(fields=["status", "end_time"], name="auction_status_end_idx"),
                    models.Index(fields=["seller", "status"], name="auction_seller_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Bid",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("status", models.CharField(choices=[("active", "Active"), ("winning", "Winning"), ("outbid", "Outbid"), ("cancelled", "Cancelled")], default="active", max_length=16)),
                ("payment_method", models.CharField(choices=[("card", "Card"), ("bidcoin", "BidCoin"), ("hybrid", "Hybrid")], max_length=16)),
                ("stripe_payment_intent_id", models.CharField(blank=True, max_length=255, null=True)),
                ("authorization_status", models.CharField(blank=True, choices=[("authorized", "Authorized"), ("captured", "Captured"), ("cancelled", "Cancelled")], max_length=16, null=True)),
                ("authorized_amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("bidcoin_hold", models.IntegerField(default=0, help_text="Coins debited from the bidder and not yet released")),
                ("holds_released", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("auction", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bids", to="auctions.auction")),
                ("bidder", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="bids", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "auctions_bid",
                "ordering": ["-amount", "created_at"],
                "indexes": [
                    models.Index(fields=["auction", "status", "-amount"], name="bid_auction_status_amount_idx"),
                    models.Index(fields=["bidder", "-created_at"], name="bid_bidder_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("status", "winning")), fields=("auction",), name="bid_single_winner_per_auction"),
                    models.CheckConstraint(condition=models.Q(("bidcoin_hold__gte", 0)), name="bid_bidcoin_hold_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SalePayment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("platform_fee", models.DecimalField(decimal_places=2, max_digits=12)),
                ("seller_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("payment_method", models.CharField(choices=[("card", "Card"), ("bidcoin", "BidCoin"), ("hybrid", "Hybrid")], max_length=16)),
                ("stripe_payment_intent_id", models.CharField(blank=True, max_length=255, null=True)),
                ("bidcoin_amount", models.IntegerField(default=0)),
                ("transfer_status", models.CharField(choices=[("automatic", "Automatic"), ("pending", "Pending"), ("completed", "Completed"), ("failed", "Failed"), ("not_required", "Not required")], max_length=16)),
                ("stripe_transfer_id", models.CharField(blank=True, max_length=255, null=True)),
                ("transfer_attempts", models.PositiveIntegerField(default=0)),
                ("last_transfer_error", models.TextField(blank=True, default="")),
                ("status", models.CharField(choices=[("completed", "Completed"), ("refunded", "Refunded"), ("partially_refunded", "Partially refunded")], default="completed", max_length=24)),
                ("refunded_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("auction", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="sale", to="auctions.auction")),
                ("buyer", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchases", to=settings.AUTH_USER_MODEL)),
                ("seller", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sales", to=settings.AUTH_USER_MODEL)),
                ("winning_bid", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="sale", to="auctions.bid")),
            ],
            options={
                "db_table": "auctions_sale_payment",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["transfer_status"], name="sale_transfer_status_idx"),
                    models.Index(fields=["seller", "-created_at"], name="sale_seller_created_idx"),
                ],
            },
        ),
    ]
