"""Stripe helpers for bid authorizations, captures and seller payouts."""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from django.conf import settings
import stripe

logger = logging.getLogger(__name__)

CAPTURABLE_STATUSES = frozenset({"requires_capture", "succeeded"})
TRANSFER_MODE_AUTOMATIC = "automatic"
TRANSFER_MODE_MANUAL = "manual"
REQUIRED_CAPABILITIES = ("card_payments", "transfers")


class StripeConfigurationError(RuntimeError):
    """Raised when mandatory Stripe configuration is missing."""


class StripeServiceError(RuntimeError):
    """Raised when Stripe returns an operational error."""

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


def _configure_stripe() -> None:
    secret_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not secret_key:
        raise StripeConfigurationError("STRIPE_SECRET_KEY is not configured.")

    stripe.api_key = secret_key
    api_version = getattr(settings, "STRIPE_API_VERSION", None)
    if api_version:
        stripe.api_version = api_version


def _currency() -> str:
    return getattr(settings, "STRIPE_CURRENCY", "usd")


def _stringify_metadata(values: Dict[str, Any]) -> Dict[str, str]:
    return {key: "" if value is None else str(value) for key, value in values.items()}


def _as_dict(obj) -> Dict[str, Any]:
    try:
        return obj.to_dict()
    except AttributeError:
        return dict(obj)


def _raise_service_error(action: str, target: str, exc: stripe.StripeError):
    logger.warning("Stripe %s failed for %s: %s", action, target, exc)
    raise StripeServiceError(str(exc), code=getattr(exc, "code", None)) from exc


def to_minor_units(amount) -> int:
    """Convert a dollar amount to cents using half-up rounding."""

    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * 100)


def platform_fee_rate(*, premium: bool) -> Decimal:
    if premium:
        return Decimal(str(getattr(settings, "PREMIUM_PLATFORM_FEE_RATE", "0.025")))
    return Decimal(str(getattr(settings, "PLATFORM_FEE_RATE", "0.05")))


def calculate_platform_fee(amount, *, premium: bool = False) -> Decimal:
    """Platform share of a sale in dollars, rounded to the cent."""

    fee = Decimal(str(amount)) * platform_fee_rate(premium=premium)
    return fee.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def card_transfer_mode() -> str:
    mode = getattr(settings, "AUCTION_CARD_TRANSFER_MODE", TRANSFER_MODE_AUTOMATIC)
    return TRANSFER_MODE_MANUAL if mode == TRANSFER_MODE_MANUAL else TRANSFER_MODE_AUTOMATIC


def ensure_customer(user) -> str:
    """Return the user's Stripe customer id, creating the customer on first use."""

    if user.stripe_customer_id:
        return user.stripe_customer_id

    _configure_stripe()
    try:
        customer = stripe.Customer.create(
            email=user.email or None,
            name=user.get_full_name() or user.username,
            metadata=_stringify_metadata({"user_id": user.pk}),
        )
    except stripe.StripeError as exc:
        _raise_service_error("customer creation", f"user {user.pk}", exc)

    user.stripe_customer_id = str(customer.get("id"))
    user.save(update_fields=["stripe_customer_id", "updated_at"])
    return user.stripe_customer_id


def ensure_connected_account(user) -> str:
    """Return the seller's connected account id, creating an Express account when missing."""

    if user.stripe_account_id:
        return user.stripe_account_id

    _configure_stripe()
    try:
        account = stripe.Account.create(
            type="express",
            email=user.email or None,
            capabilities={name: {"requested": True} for name in REQUIRED_CAPABILITIES},
            metadata=_stringify_metadata({"user_id": user.pk}),
        )
    except stripe.StripeError as exc:
        _raise_service_error("account creation", f"user {user.pk}", exc)

    user.stripe_account_id = str(account.get("id"))
    user.save(update_fields=["stripe_account_id", "updated_at"])
    logger.info("Created Stripe connected account %s for user %s", user.stripe_account_id, user.pk)
    return user.stripe_account_id


def retrieve_account(account_id: str) -> Dict[str, Any]:
    if not account_id:
        raise ValueError("account_id is required.")

    _configure_stripe()
    try:
        account = stripe.Account.retrieve(account_id)
    except stripe.StripeError as exc:
        _raise_service_error("account retrieval", account_id, exc)
    return _as_dict(account)


def ensure_account_capabilities(account_id: str) -> Dict[str, Any]:
    """Request any payout capabilities the connected account does not have yet."""

    account = retrieve_account(account_id)
    capabilities = account.get("capabilities") or {}
    missing = [name for name in REQUIRED_CAPABILITIES if capabilities.get(name) not in ("active", "pending")]
    if not missing:
        return account

    try:
        updated = stripe.Account.modify(
            account_id,
            capabilities={name: {"requested": True} for name in missing},
        )
    except stripe.StripeError as exc:
        _raise_service_error("capability update", account_id, exc)
    logger.info("Requested capabilities %s for Stripe account %s", missing, account_id)
    return _as_dict(updated)


def create_account_link(account_id: str, *, refresh_url: str, return_url: str) -> Dict[str, Any]:
    if not refresh_url or not return_url:
        raise StripeConfigurationError("Stripe connect refresh and return URLs must be configured.")

    _configure_stripe()
    try:
        link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
    except stripe.StripeError as exc:
        _raise_service_error("account link creation", account_id, exc)
    return _as_dict(link)


def create_authorization(
    *,
    amount,
    customer_id: str,
    seller_account_id: str,
    premium_seller: bool = False,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create a manual-capture payment intent holding ``amount`` on the bidder's card.

    In automatic transfer mode the platform fee is withheld and the remainder is
    routed to the seller's connected account at capture time. In manual mode the
    funds settle on the platform and the seller is paid by a separate transfer.
    """

    amount_minor = to_minor_units(amount)
    if amount_minor <= 0:
        raise ValueError("amount must be positive.")

    _configure_stripe()
    transfer_mode = card_transfer_mode()
    params: Dict[str, Any] = {
        "amount": amount_minor,
        "currency": _currency(),
        "customer": customer_id,
        "capture_method": "manual",
        "payment_method_types": ["card"],
        "metadata": _stringify_metadata(
            {**(metadata or {}), "transfer_type": transfer_mode, "seller_account_id": seller_account_id}
        ),
    }
    if transfer_mode == TRANSFER_MODE_AUTOMATIC:
        params["application_fee_amount"] = to_minor_units(calculate_platform_fee(amount, premium=premium_seller))
        params["transfer_data"] = {"destination": seller_account_id}

    try:
        intent = stripe.PaymentIntent.create(**params)
    except stripe.StripeError as exc:
        _raise_service_error("authorization", f"customer {customer_id}", exc)
    return _as_dict(intent)


def confirm_authorization(payment_intent_id: str, *, payment_method_id: str) -> Dict[str, Any]:
    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.confirm(payment_intent_id, payment_method=payment_method_id)
    except stripe.StripeError as exc:
        _raise_service_error("confirmation", payment_intent_id, exc)
    return _as_dict(intent)


def retrieve_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    if not payment_intent_id:
        raise ValueError("payment_intent_id is required.")

    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as exc:
        _raise_service_error("payment intent retrieval", payment_intent_id, exc)
    return _as_dict(intent)


def capture_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.capture(payment_intent_id)
    except stripe.StripeError as exc:
        _raise_service_error("capture", payment_intent_id, exc)
    return _as_dict(intent)


def cancel_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    _configure_stripe()
    try:
        intent = stripe.PaymentIntent.cancel(payment_intent_id)
    except stripe.StripeError as exc:
        _raise_service_error("cancellation", payment_intent_id, exc)
    return _as_dict(intent)


def create_refund(
    *,
    payment_intent: str,
    amount_minor: Optional[int] = None,
    reason: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    reverse_transfer: bool = False,
) -> Dict[str, Any]:
    """Create a Stripe refund for a captured payment intent; full refund when no amount is given.

    Destination charges pass ``reverse_transfer`` so the seller share is pulled
    back from the connected account together with the platform fee.
    """

    if not payment_intent:
        raise ValueError("payment_intent is required.")
    if amount_minor is not None and amount_minor <= 0:
        raise ValueError("amount_minor must be positive.")

    _configure_stripe()

    params: Dict[str, Any] = {"payment_intent": payment_intent}
    if amount_minor is not None:
        params["amount"] = amount_minor
    if reason:
        params["reason"] = reason
    if metadata:
        params["metadata"] = _stringify_metadata(metadata)
    if reverse_transfer:
        params["reverse_transfer"] = True
        params["refund_application_fee"] = True

    try:
        refund = stripe.Refund.create(**params)
    except stripe.StripeError as exc:
        _raise_service_error("refund", payment_intent, exc)
    return _as_dict(refund)


def create_transfer(
    *,
    amount,
    destination: str,
    auction_id,
    seller_id=None,
    attempt: int = 1,
) -> Dict[str, Any]:
    """Pay a seller from the platform balance.

    The idempotency key combines the auction and the attempt number. Stripe
    replays the stored response for a reused key, so a resend of the same attempt
    never pays twice while a retry after a failed attempt reaches the API again.
    """

    amount_minor = to_minor_units(amount)
    if amount_minor <= 0:
        raise ValueError("amount must be positive.")
    if not destination:
        raise ValueError("destination is required.")

    _configure_stripe()
    try:
        transfer = stripe.Transfer.create(
            amount=amount_minor,
            currency=_currency(),
            destination=destination,
            transfer_group=f"auction_{auction_id}",
            metadata=_stringify_metadata({"auction_id": auction_id, "seller_id": seller_id, "attempt": attempt}),
            idempotency_key=f"payout:{auction_id}:{attempt}",
        )
    except stripe.StripeError as exc:
        _raise_service_error("transfer", f"auction {auction_id}", exc)
    return _as_dict(transfer)
