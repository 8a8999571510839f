"""URL routes for BidCoin wallet and referral endpoints."""
from django.urls import path

from .views import (
    BidcoinSpendView,
    BidcoinWalletView,
    ReferralClaimView,
    ReferralSummaryView,
    SignupBonusView,
)

app_name = "bidcoins"

urlpatterns = [
    path("bidcoins/me/", BidcoinWalletView.as_view(), name="wallet"),
    path("bidcoins/signup-bonus/", SignupBonusView.as_view(), name="signup-bonus"),
    path("bidcoins/spend/", BidcoinSpendView.as_view(), name="spend"),
    path("referrals/me/", ReferralSummaryView.as_view(), name="referral-summary"),
    path("referrals/claim/", ReferralClaimView.as_view(), name="referral-claim"),
]
