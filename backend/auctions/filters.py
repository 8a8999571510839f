"""FilterSet definitions for auction endpoints."""
from __future__ import annotations

import django_filters

from auctions.models import Auction, Bid


class AuctionFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    seller_id = django_filters.NumberFilter(field_name="seller_id")
    ends_after = django_filters.DateTimeFilter(field_name="end_time", lookup_expr="gte")
    ends_before = django_filters.DateTimeFilter(field_name="end_time", lookup_expr="lte")
    min_price = django_filters.NumberFilter(field_name="current_price", lookup_expr="gte")
    max_price = django_filters.NumberFilter(field_name="current_price", lookup_expr="lte")

    class Meta:
        model = Auction
        fields = ["status", "seller_id"]


class BidFilter(django_filters.FilterSet):
    auction_id = django_filters.UUIDFilter(field_name="auction_id")
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    payment_method = django_filters.CharFilter(field_name="payment_method", lookup_expr="iexact")

    class Meta:
        model = Bid
        fields = ["auction_id", "status", "payment_method"]
