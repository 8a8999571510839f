"""DRF serializers for BidCoin wallet and referral endpoints."""
from __future__ import annotations

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .models import BidcoinTransaction
from .services.ledger import coins_to_dollars

SPENDABLE_TYPES = (
    BidcoinTransaction.TransactionType.ITEM_PURCHASE,
    BidcoinTransaction.TransactionType.RAFFLE_PURCHASE,
    BidcoinTransaction.TransactionType.PLAN_PURCHASE,
)


class BidcoinTransactionSerializer(serializers.ModelSerializer):
    usd_value = serializers.SerializerMethodField()

    class Meta:
        model = BidcoinTransaction
        fields = (
            "id",
            "change",
            "balance_after",
            "type",
            "reference_id",
            "reference_table",
            "metadata",
            "usd_value",
            "created_at",
        )
        read_only_fields = fields

    def get_usd_value(self, obj) -> str:
        return str(coins_to_dollars(obj.change))


class BidcoinSpendSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)
    type = serializers.ChoiceField(choices=[(value, value) for value in SPENDABLE_TYPES])
    reference_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    reference_table = serializers.CharField(max_length=64, required=False, allow_blank=True)
    metadata = serializers.DictField(required=False)

    def validate_metadata(self, value):
        if value is not None and not isinstance(value, dict):
            raise serializers.ValidationError(_("Metadata must be an object."))
        return value or {}


class ReferralClaimSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=32, allow_blank=True, trim_whitespace=True)
