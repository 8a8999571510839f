import uuid

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
            name="UserBidcoinBalance",
            fields=[
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name="bidcoin_balance", serialize=False, to=settings.AUTH_USER_MODEL)),
                ("balance", models.IntegerField(default=0, help_text="Balance in coins (100 coins = 1.00 USD)")),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "bidcoins_user_balance",
                "verbose_name": "BidCoin balance",
                "verbose_name_plural": "BidCoin balances",
            },
        ),
        migrations.CreateModel(
            name="BidcoinTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("change", models.IntegerField(help_text="Signed coin amount; positive for credits, negative for debits")),
                ("balance_after", models.IntegerField(help_text="Balance snapshot right after this change was applied")),
                ("type", models.CharField(choices=[("signup_bonus", "Signup bonus"), ("referral", "Referral"), ("auction_sale", "Auction sale"), ("raffle_purchase", "Raffle purchase"), ("item_purchase", "Item purchase"), ("plan_purchase", "Plan purchase"), ("auction_purchase", "Auction purchase"), ("adjustment", "Adjustment")], max_length=32)),
                ("reference_id", models.CharField(blank=True, max_length=64, null=True)),
                ("reference_table", models.CharField(blank=True, max_length=64, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="bidcoin_transactions", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "bidcoins_transaction",
                "ordering": ["-created_at"],
                "verbose_name": "BidCoin transaction",
                "verbose_name_plural": "BidCoin transactions",
                "constraints": [
                    models.CheckConstraint(condition=~models.Q(change=0), name="bidcoin_transaction_non_zero"),
                ],
                "indexes": [
                    models.Index(fields=["user", "-created_at"], name="bidcoin_tx_user_created"),
                    models.Index(fields=["user", "type"], name="bidcoin_tx_user_type"),
                ],
            },
        ),
    ]
