"""Shared response helpers and seller payment onboarding endpoints."""
from __future__ import annotations

import logging

from django.conf import settings
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.observability.logging import log_billing_event
from billing.observability.metrics import BILLING_REQUEST_COUNT, BILLING_REQUEST_LATENCY
from billing.services.stripe_payments import (
    StripeConfigurationError,
    StripeServiceError,
    create_account_link,
    ensure_account_capabilities,
    ensure_connected_account,
    retrieve_account,
)

logger = logging.getLogger(__name__)


class BillingMetricsMixin:
    endpoint_label: str = "billing"
    method: str = "POST"

    def _record_request(self, status: int) -> None:
        BILLING_REQUEST_COUNT.labels(
            endpoint=self.endpoint_label,
            method=self.method,
            status=str(status),
        ).inc()

    def _success_response(
        self,
        payload,
        *,
        status: int,
        message: str,
        auction_id: str | None = None,
        user_id: str | None = None,
    ):
        self._record_request(status)
        log_billing_event(message=message, auction_id=auction_id, user_id=user_id)
        return Response(payload, status=status)

    def _error_response(
        self,
        *,
        status: int,
        code: str,
        message: str,
        details: dict | None = None,
        auction_id: str | None = None,
        user_id: str | None = None,
    ):
        self._record_request(status)
        log_billing_event(
            message=message,
            auction_id=auction_id,
            user_id=user_id,
            extra={"code": code, "details": details or {}},
            level=logging.WARNING if status < 500 else logging.ERROR,
        )
        payload = {"code": code, "message": message, "details": details or {}}
        return Response(payload, status=status)


class StripeConnectView(BillingMetricsMixin, APIView):
    """Create or inspect the seller's connected payment account."""

    permission_classes = [IsAuthenticated]
    endpoint_label = "billing.stripe_connect"

    def get(self, request):
        self.method = "GET"
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            user = request.user
            if not user.stripe_account_id:
                return self._success_response(
                    {"connected": False, "account_id": None},
                    status=200,
                    message="Stripe connect status requested without account",
                    user_id=user.pk,
                )
            try:
                account = retrieve_account(user.stripe_account_id)
            except StripeConfigurationError as exc:
                return self._error_response(status=503, code="stripe_not_configured", message=str(exc),
                                            user_id=user.pk)
            except StripeServiceError as exc:
                return self._error_response(status=502, code="stripe_error", message=str(exc), user_id=user.pk)

            payload = {
                "connected": True,
                "account_id": user.stripe_account_id,
                "charges_enabled": bool(account.get("charges_enabled")),
                "payouts_enabled": bool(account.get("payouts_enabled")),
                "details_submitted": bool(account.get("details_submitted")),
                "capabilities": dict(account.get("capabilities") or {}),
            }
            return self._success_response(
                payload,
                status=200,
                message="Stripe connect status requested",
                user_id=user.pk,
            )

    def post(self, request):
        self.method = "POST"
        with BILLING_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            user = request.user
            try:
                account_id = ensure_connected_account(user)
                ensure_account_capabilities(account_id)
                link = create_account_link(
                    account_id,
                    refresh_url=request.data.get("refresh_url") or settings.STRIPE_CONNECT_REFRESH_URL,
                    return_url=request.data.get("return_url") or settings.STRIPE_CONNECT_RETURN_URL,
                )
            except StripeConfigurationError as exc:
                return self._error_response(status=503, code="stripe_not_configured", message=str(exc),
                                            user_id=user.pk)
            except StripeServiceError as exc:
                logger.error("Stripe connect onboarding failed for user %s: %s", user.pk, exc)
                return self._error_response(status=502, code="stripe_error", message=str(exc), user_id=user.pk)

            return self._success_response(
                {"account_id": account_id, "url": link["url"], "expires_at": link.get("expires_at")},
                status=201,
                message="Stripe connect onboarding link created",
                user_id=user.pk,
            )
