"""Auction, bid and settlement endpoints."""
from __future__ import annotations

import logging

from django.db import DatabaseError
from django.db.models import Count
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics
from rest_framework.permissions import IsAuthenticated, IsAuthenticatedOrReadOnly
from rest_framework.views import APIView

from billing.observability.metrics import BILLING_REQUEST_LATENCY
from billing.views.payments import BillingMetricsMixin

from .filters import AuctionFilter, BidFilter
from .models import Auction, Bid
from .pagination import AuctionPagination
from .permissions import CanCompleteAuction, IsStaffOrCronToken, IsStaffUser
from .serializers import (
    AuctionSerializer,
    BidCreateSerializer,
    BidSerializer,
    RefundSerializer,
    SalePaymentSerializer,
)
from .services.completion import complete_expired_auctions, list_expired_auctions
from .services.settlement import (
    SettlementError,
    cancel_auction,
    complete_auction,
    place_bid,
    refund_sale,
)

logger = logging.getLogger(__name__)


class SettlementErrorMixin(BillingMetricsMixin):
    def _settlement_error(self, exc: SettlementError, *, auction_id=None, user_id=None):
        return self._error_response(
            status=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
            auction_id=auction_id,
            user_id=user_id,
        )

    def _validation_error(self, serializer, *, user_id=None):
        return self._error_response(
            status=400,
            code="invalid_request",
            message="Invalid request payload.",
            details=serializer.errors,
            user_id=user_id,
        )


class AuctionListCreateView(SettlementErrorMixin, generics.ListCreateAPIView):
    serializer_class = AuctionSerializer
    permission_classes = [IsAuthenticatedOrReadOnly]
    pagination_class = AuctionPagination
    filter_backends = [DjangoFilterBackend]
    filterset_class = AuctionFilter
    endpoint_label = "auctions.list"

    def get_queryset(self):
        return (
            Auction.objects.select_related("seller")
            .annotate(bid_count=Count("bids"))
            .order_by("end_time")
        )

    def create(self, request, *args, **kwargs):
        self.method = "POST"
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            serializer = self.get_serializer(data=request.data)
            if not serializer.is_valid():
                return self._validation_error(serializer, user_id=request.user.pk)
            auction = serializer.save()
            return self._success_response(
                self.get_serializer(auction).data,
                status=201,
                message="Auction created",
                auction_id=str(auction.pk),
                user_id=request.user.pk,
            )


class AuctionDetailView(SettlementErrorMixin, APIView):
    """Read an auction; the seller cancels it with DELETE."""

    permission_classes = [IsAuthenticatedOrReadOnly]
    endpoint_label = "auctions.detail"

    def get(self, request, auction_id):
        self.method = "GET"
        auction = Auction.objects.select_related("seller").filter(pk=auction_id).first()
        if auction is None:
            return self._error_response(status=404, code="auction_not_found", message="Auction not found.")
        payload = AuctionSerializer(auction).data
        sale = getattr(auction, "sale", None) if auction.status == Auction.Status.ENDED else None
        payload["sale"] = SalePaymentSerializer(sale).data if sale else None
        return self._success_response(payload, status=200, message="Auction viewed", auction_id=str(auction.pk))

    def delete(self, request, auction_id):
        self.method = "DELETE"
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            try:
                auction = cancel_auction(auction_id, request.user)
            except SettlementError as exc:
                return self._settlement_error(exc, auction_id=str(auction_id), user_id=request.user.pk)
            return self._success_response(
                AuctionSerializer(auction).data,
                status=200,
                message="Auction cancelled",
                auction_id=str(auction.pk),
                user_id=request.user.pk,
            )


class AuctionCompleteView(SettlementErrorMixin, APIView):
    permission_classes = [CanCompleteAuction]
    endpoint_label = "auctions.complete"

    def post(self, request, auction_id):
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            auction = Auction.objects.filter(pk=auction_id).first()
            if auction is None:
                return self._error_response(status=404, code="auction_not_found", message="Auction not found.")
            self.check_object_permissions(request, auction)

            try:
                result = complete_auction(auction.pk)
            except SettlementError as exc:
                return self._settlement_error(exc, auction_id=str(auction.pk))

            payload = {
                "success": True,
                "message": result.message,
                "already_completed": result.already_completed,
                "auction": AuctionSerializer(result.auction).data,
                "sale": SalePaymentSerializer(result.sale).data if result.sale else None,
                "transfer_status": result.transfer_status,
            }
            return self._success_response(
                payload,
                status=200,
                message="Auction completion requested",
                auction_id=str(auction.pk),
            )


class AuctionRefundView(SettlementErrorMixin, APIView):
    permission_classes = [IsStaffUser]
    endpoint_label = "auctions.refund"

    def post(self, request, auction_id):
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            serializer = RefundSerializer(data=request.data)
            if not serializer.is_valid():
                return self._validation_error(serializer, user_id=request.user.pk)

            try:
                sale = refund_sale(
                    auction_id,
                    serializer.validated_data.get("amount"),
                    reason=serializer.validated_data.get("reason"),
                )
            except SettlementError as exc:
                return self._settlement_error(exc, auction_id=str(auction_id), user_id=request.user.pk)

            return self._success_response(
                SalePaymentSerializer(sale).data,
                status=200,
                message="Sale refunded",
                auction_id=str(auction_id),
                user_id=request.user.pk,
            )


class ExpiredAuctionsView(SettlementErrorMixin, APIView):
    """List expired auctions (GET) or complete all of them (POST)."""

    permission_classes = [IsStaffOrCronToken]
    endpoint_label = "auctions.complete_expired"

    def get(self, request):
        self.method = "GET"
        try:
            auctions = list(list_expired_auctions())
        except DatabaseError as exc:
            logger.error("Failed to list expired auctions: %s", exc)
            return self._error_response(status=500, code="database_error", message="Failed to fetch expired auctions.")
        payload = {
            "count": len(auctions),
            "auctions": [
                {
                    "id": str(auction.pk),
                    "title": auction.title,
                    "end_time": auction.end_time.isoformat(),
                    "current_price": str(auction.current_price),
                }
                for auction in auctions
            ],
        }
        return self._success_response(payload, status=200, message="Expired auctions listed")

    def post(self, request):
        self.method = "POST"
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            try:
                report = complete_expired_auctions()
            except DatabaseError as exc:
                logger.error("Failed to fetch expired auctions: %s", exc)
                return self._error_response(
                    status=500, code="database_error", message="Failed to fetch expired auctions."
                )
            return self._success_response(report, status=200, message=report["message"])


class BidListCreateView(SettlementErrorMixin, generics.ListCreateAPIView):
    """
    GET lists bids on an auction (``?auction_id=``) or, without a filter, the
    caller's own bids. POST places a bid.
    """

    serializer_class = BidSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = AuctionPagination
    filter_backends = [DjangoFilterBackend]
    filterset_class = BidFilter
    endpoint_label = "auctions.bids"

    def get_queryset(self):
        queryset = Bid.objects.select_related("bidder", "auction")
        if not self.request.query_params.get("auction_id"):
            queryset = queryset.filter(bidder=self.request.user)
        return queryset.order_by("-amount", "created_at")

    def create(self, request, *args, **kwargs):
        self.method = "POST"
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            serializer = BidCreateSerializer(data=request.data)
            if not serializer.is_valid():
                return self._validation_error(serializer, user_id=request.user.pk)
            data = serializer.validated_data

            try:
                placement = place_bid(
                    data["auction_id"],
                    request.user,
                    data["amount"],
                    data["payment_method"],
                    payment_method_id=data.get("payment_method_id") or None,
                )
            except SettlementError as exc:
                return self._settlement_error(exc, auction_id=str(data["auction_id"]), user_id=request.user.pk)

            payload = {
                "success": True,
                "bid": BidSerializer(placement.bid).data,
                "new_current_price": str(placement.new_current_price),
                "payment_authorized": placement.payment_authorized,
                "bidcoin_hold": placement.bidcoin_hold,
            }
            return self._success_response(
                payload,
                status=201,
                message="Bid placed",
                auction_id=str(data["auction_id"]),
                user_id=request.user.pk,
            )
