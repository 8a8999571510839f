"""BidCoin wallet and referral endpoints."""
from __future__ import annotations

import logging

from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from billing.observability.metrics import BILLING_REQUEST_LATENCY
from billing.views.payments import BillingMetricsMixin

from .serializers import BidcoinSpendSerializer, BidcoinTransactionSerializer, ReferralClaimSerializer
from .services.bonuses import BonusAlreadyClaimed, claim_signup_bonus
from .services.ledger import (
    InsufficientBidcoinBalance,
    LedgerError,
    coins_to_dollars,
    get_balance,
    list_transactions,
    spend_bidcoins,
)
from .services.referrals import ReferralError, claim_referral, referral_summary

logger = logging.getLogger(__name__)


class BidcoinWalletView(BillingMetricsMixin, APIView):
    """Current balance plus the most recent ledger rows."""

    permission_classes = [IsAuthenticated]
    endpoint_label = "bidcoins.wallet"
    method = "GET"

    def get(self, request):
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            try:
                limit = min(max(int(request.query_params.get("limit", 50)), 1), 200)
            except (TypeError, ValueError):
                limit = 50
            balance = get_balance(request.user.pk)
            payload = {
                "balance": balance,
                "usd_value": str(coins_to_dollars(balance)),
                "transactions": BidcoinTransactionSerializer(
                    list_transactions(request.user.pk, limit=limit), many=True
                ).data,
            }
            return self._success_response(
                payload, status=200, message="BidCoin wallet viewed", user_id=request.user.pk
            )


class SignupBonusView(BillingMetricsMixin, APIView):
    permission_classes = [IsAuthenticated]
    endpoint_label = "bidcoins.signup_bonus"

    def post(self, request):
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            user_id = request.user.pk
            try:
                balance = claim_signup_bonus(user_id)
            except BonusAlreadyClaimed as exc:
                return self._error_response(
                    status=409, code="bonus_already_claimed", message=str(exc), user_id=user_id
                )
            except ValueError as exc:
                return self._error_response(status=400, code="bonus_disabled", message=str(exc), user_id=user_id)
            except LedgerError as exc:
                logger.error("Signup bonus failed for user %s: %s", user_id, exc)
                return self._error_response(
                    status=503, code="ledger_unavailable", message="BidCoin ledger is unavailable.",
                    user_id=user_id,
                )
            return self._success_response(
                {"balance": balance}, status=201, message="Signup bonus granted", user_id=user_id
            )


class BidcoinSpendView(BillingMetricsMixin, APIView):
    permission_classes = [IsAuthenticated]
    endpoint_label = "bidcoins.spend"

    def post(self, request):
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            user_id = request.user.pk
            serializer = BidcoinSpendSerializer(data=request.data)
            if not serializer.is_valid():
                return self._error_response(
                    status=400,
                    code="invalid_request",
                    message="Invalid spend request.",
                    details=serializer.errors,
                    user_id=user_id,
                )
            data = serializer.validated_data
            try:
                balance = spend_bidcoins(
                    user_id,
                    data["amount"],
                    data["type"],
                    reference_id=data.get("reference_id") or None,
                    reference_table=data.get("reference_table") or None,
                    metadata=data.get("metadata") or {},
                )
            except InsufficientBidcoinBalance:
                return self._error_response(
                    status=400,
                    code="insufficient_balance",
                    message="Insufficient BidCoins.",
                    details={"balance": get_balance(user_id), "required": data["amount"]},
                    user_id=user_id,
                )
            except LedgerError as exc:
                logger.error("BidCoin spend failed for user %s: %s", user_id, exc)
                return self._error_response(
                    status=503, code="ledger_unavailable", message="BidCoin ledger is unavailable.",
                    user_id=user_id,
                )
            return self._success_response(
                {"balance": balance}, status=200, message="BidCoins spent", user_id=user_id
            )


class ReferralSummaryView(BillingMetricsMixin, APIView):
    permission_classes = [IsAuthenticated]
    endpoint_label = "referrals.me"
    method = "GET"

    def get(self, request):
        return self._success_response(
            referral_summary(request.user), status=200, message="Referral summary viewed", user_id=request.user.pk
        )


class ReferralClaimView(BillingMetricsMixin, APIView):
    permission_classes = [IsAuthenticated]
    endpoint_label = "referrals.claim"

    def post(self, request):
        user_id = request.user.pk
        serializer = ReferralClaimSerializer(data=request.data)
        if not serializer.is_valid():
            return self._error_response(
                status=400,
                code="invalid_request",
                message="Referral code is required.",
                details=serializer.errors,
                user_id=user_id,
            )
        try:
            result = claim_referral(user_id, serializer.validated_data["code"])
        except ReferralError as exc:
            details = {"retry_after": exc.retry_after} if exc.retry_after else {}
            return self._error_response(
                status=429 if exc.retry_after else 400,
                code="referral_rejected",
                message=exc.message,
                details=details,
                user_id=user_id,
            )
        return self._success_response(
            {"success": True, "bonus": result.bonus, "referrer_id": result.referrer_id},
            status=200,
            message="Referral claimed",
            user_id=user_id,
        )
