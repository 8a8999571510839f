"""URL routes for auction and bid endpoints."""
from django.urls import path

from .views import (
    AuctionCompleteView,
    AuctionDetailView,
    AuctionListCreateView,
    AuctionRefundView,
    BidListCreateView,
    ExpiredAuctionsView,
)

app_name = "auctions"

urlpatterns = [
    path("auctions/", AuctionListCreateView.as_view(), name="auction-list"),
    path("auctions/complete-expired/", ExpiredAuctionsView.as_view(), name="auction-complete-expired"),
    path("auctions/<uuid:auction_id>/", AuctionDetailView.as_view(), name="auction-detail"),
    path("auctions/<uuid:auction_id>/complete/", AuctionCompleteView.as_view(), name="auction-complete"),
    path("auctions/<uuid:auction_id>/refund/", AuctionRefundView.as_view(), name="auction-refund"),
    path("bids/", BidListCreateView.as_view(), name="bid-list"),
]
