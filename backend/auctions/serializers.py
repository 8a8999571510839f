"""DRF serializers for auctions, bids and completed sales."""
from __future__ import annotations

from decimal import Decimal

from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .models import Auction, Bid, SalePayment
from .services.settlement import bid_increment, minimum_bid


class SalePaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = SalePayment
        fields = (
            "id",
            "auction",
            "winning_bid",
            "buyer",
            "seller",
            "amount",
            "platform_fee",
            "seller_amount",
            "payment_method",
            "bidcoin_amount",
            "transfer_status",
            "transfer_attempts",
            "status",
            "refunded_amount",
            "created_at",
        )
        read_only_fields = fields


class AuctionSerializer(serializers.ModelSerializer):
    seller = serializers.PrimaryKeyRelatedField(read_only=True)
    seller_username = serializers.CharField(source="seller.username", read_only=True)
    bid_increment = serializers.SerializerMethodField()
    min_bid = serializers.SerializerMethodField()
    reserve_met = serializers.BooleanField(read_only=True)
    bid_count = serializers.SerializerMethodField()

    class Meta:
        model = Auction
        fields = (
            "id",
            "seller",
            "seller_username",
            "title",
            "description",
            "starting_price",
            "reserve_price",
            "current_price",
            "bid_increment",
            "min_bid",
            "reserve_met",
            "bid_count",
            "status",
            "end_time",
            "ended_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "seller",
            "current_price",
            "status",
            "ended_at",
            "created_at",
            "updated_at",
        )

    def get_bid_increment(self, obj) -> str:
        return str(bid_increment(obj.current_price))

    def get_min_bid(self, obj) -> str:
        return str(minimum_bid(obj.current_price))

    def get_bid_count(self, obj) -> int:
        annotated = getattr(obj, "bid_count", None)
        if annotated is not None:
            return annotated
        return obj.bids.count()

    def validate_end_time(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError(_("End time must be in the future."))
        return value

    def validate(self, attrs):
        attrs = super().validate(attrs)
        reserve = attrs.get("reserve_price")
        starting = attrs.get("starting_price")
        if reserve is not None and starting is not None and reserve < starting:
            raise serializers.ValidationError(
                {"reserve_price": _("Reserve price cannot be lower than the starting price.")}
            )
        return attrs

    def create(self, validated_data):
        validated_data["seller"] = self.context["request"].user
        validated_data["current_price"] = validated_data["starting_price"]
        return super().create(validated_data)


class BidSerializer(serializers.ModelSerializer):
    bidder_username = serializers.CharField(source="bidder.username", read_only=True)

    class Meta:
        model = Bid
        fields = (
            "id",
            "auction",
            "bidder",
            "bidder_username",
            "amount",
            "status",
            "payment_method",
            "authorization_status",
            "bidcoin_hold",
            "holds_released",
            "created_at",
        )
        read_only_fields = fields


class BidCreateSerializer(serializers.Serializer):
    auction_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    payment_method = serializers.ChoiceField(choices=Bid.PaymentMethod.choices)
    payment_method_id = serializers.CharField(max_length=255, required=False, allow_blank=True)


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
        required=False,
        allow_null=True,
    )
    reason = serializers.ChoiceField(
        choices=["duplicate", "fraudulent", "requested_by_customer"],
        required=False,
        allow_null=True,
    )
