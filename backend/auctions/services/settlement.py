"""Bid settlement: placing bids, releasing holds and settling finished auctions.

Every state change for an auction happens while its row is locked with
``select_for_update`` so concurrent bids observe a consistent ``current_price``.
Calls that cancel card authorizations are deferred until the transaction
commits; ledger movements happen inside it.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from auctions.models import Auction, Bid, SalePayment
from auctions.services import notifications, payouts
from bidcoins.services.ledger import (
    InsufficientBidcoinBalance,
    LedgerError,
    TransactionType,
    adjust_balance,
    award_bidcoins,
    dollars_to_coins,
    get_balance,
    spend_bidcoins,
)
from billing.observability.logging import log_billing_event
from billing.observability.metrics import (
    AUCTION_COMPLETION_COUNT,
    BID_PLACEMENT_COUNT,
    HOLD_RELEASE_COUNT,
)
from billing.services import stripe_payments
from billing.services.stripe_payments import StripeConfigurationError, StripeServiceError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# (threshold, increment) pairs checked from the highest tier down.
INCREMENT_SCHEDULE = (
    (Decimal("1000"), Decimal("25")),
    (Decimal("500"), Decimal("10")),
    (Decimal("100"), Decimal("5")),
)
BASE_INCREMENT = Decimal("1")


class SettlementError(Exception):
    """Base error for bid placement and auction settlement."""

    default_code = "settlement_error"
    status_code = 400

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


class BidRejected(SettlementError):
    default_code = "bid_rejected"


class SellerPaymentNotConfigured(SettlementError):
    default_code = "seller_payment_not_configured"


class PaymentAuthorizationFailed(SettlementError):
    default_code = "payment_authorization_failed"


class PaymentCaptureFailed(SettlementError):
    default_code = "payment_capture_failed"


class AuctionNotCompletable(SettlementError):
    default_code = "auction_not_completable"
    status_code = 409


class AuctionNotFound(SettlementError):
    default_code = "auction_not_found"
    status_code = 404


class RefundNotAllowed(SettlementError):
    default_code = "refund_not_allowed"
    status_code = 409


class NotAuctionOwner(SettlementError):
    default_code = "forbidden"
    status_code = 403


@dataclass
class BidPlacement:
    bid: Bid
    new_current_price: Decimal
    payment_method: str
    authorization_id: Optional[str] = None
    bidcoin_hold: int = 0

    @property
    def payment_authorized(self) -> bool:
        return self.payment_method == Bid.PaymentMethod.CARD


@dataclass
class CompletionResult:
    auction: Auction
    message: str
    already_completed: bool = False
    winning_bid: Optional[Bid] = None
    sale: Optional[SalePayment] = None
    released_bids: List[Bid] = field(default_factory=list)

    @property
    def transfer_status(self) -> Optional[str]:
        return self.sale.transfer_status if self.sale else None


# Money helpers


def to_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise BidRejected("Bid amount must be a positive number.", code="invalid_amount") from exc
    if not amount.is_finite() or amount <= 0:
        raise BidRejected("Bid amount must be a positive number.", code="invalid_amount")
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise BidRejected("Bid amount cannot have more than two decimal places.", code="invalid_amount")
    return amount.quantize(CENT)


def bid_increment(current_price) -> Decimal:
    price = Decimal(str(current_price))
    for threshold, increment in INCREMENT_SCHEDULE:
        if price >= threshold:
            return increment
    return BASE_INCREMENT


def minimum_bid(current_price) -> Decimal:
    price = Decimal(str(current_price))
    return (price + bid_increment(price)).quantize(CENT)


def seller_fee(auction: Auction, amount: Decimal) -> Decimal:
    return stripe_payments.calculate_platform_fee(amount, premium=auction.seller.is_premium_seller)


# Placement


def _lock_auction(auction_id) -> Auction:
    try:
        return Auction.objects.select_for_update().select_related("seller").get(pk=auction_id)
    except (Auction.DoesNotExist, ValueError) as exc:
        raise AuctionNotFound("Auction not found.") from exc


def _get_auction(auction_id) -> Auction:
    try:
        return Auction.objects.select_related("seller").get(pk=auction_id)
    except (Auction.DoesNotExist, ValueError) as exc:
        raise AuctionNotFound("Auction not found.") from exc


def _validate_bid(auction: Auction, bidder, amount: Decimal) -> None:
    if auction.seller_id == bidder.pk:
        raise BidRejected("Cannot bid on your own auction.", code="own_auction")
    if auction.status != Auction.Status.ACTIVE or auction.has_expired:
        raise BidRejected("Auction has ended.", code="auction_ended")

    increment = bid_increment(auction.current_price)
    required = minimum_bid(auction.current_price)
    if amount < required:
        raise BidRejected(
            f"Minimum bid increment is ${increment}. Your bid must be at least ${required}.",
            code="min_increment_not_met",
            details={
                "current_price": str(auction.current_price),
                "min_bid": str(required),
                "increment": str(increment),
            },
        )


def _authorize_card(auction: Auction, bidder, amount: Decimal, payment_method_id: Optional[str]) -> str:
    """Create and confirm a manual-capture authorization; returns the payment intent id."""

    if not payment_method_id:
        raise BidRejected(
            "Payment method is required to place a card bid.",
            code="payment_method_required",
        )

    seller = auction.seller
    if not seller.stripe_account_id:
        raise SellerPaymentNotConfigured(
            "Cannot place bid: the seller has not completed their payment setup.",
            details={"seller_id": seller.pk},
        )

    try:
        stripe_payments.ensure_account_capabilities(seller.stripe_account_id)
    except (StripeServiceError, StripeConfigurationError) as exc:
        logger.error("Seller %s account capabilities check failed: %s", seller.pk, exc)
        raise SellerPaymentNotConfigured(
            "Seller account needs to complete payment onboarding before accepting card bids.",
            details={"seller_id": seller.pk},
        ) from exc

    intent_id = None
    try:
        customer_id = stripe_payments.ensure_customer(bidder)
        intent = stripe_payments.create_authorization(
            amount=amount,
            customer_id=customer_id,
            seller_account_id=seller.stripe_account_id,
            premium_seller=seller.is_premium_seller,
            metadata={"auction_id": auction.pk, "bidder_id": bidder.pk, "bid_amount": amount},
        )
        intent_id = intent["id"]
        confirmed = stripe_payments.confirm_authorization(intent_id, payment_method_id=payment_method_id)
    except (StripeServiceError, StripeConfigurationError) as exc:
        logger.error("Payment authorization failed for bidder %s on auction %s: %s", bidder.pk, auction.pk, exc)
        if intent_id:
            _cancel_authorization_quietly(intent_id)
        raise PaymentAuthorizationFailed(
            "Payment authorization failed. Please check your payment method.",
            details={"reason": str(exc)},
        ) from exc

    status = confirmed.get("status")
    if status not in stripe_payments.CAPTURABLE_STATUSES:
        _cancel_authorization_quietly(intent_id)
        raise PaymentAuthorizationFailed(
            "Payment authorization failed. Please check your payment method.",
            details={"status": status},
        )
    return intent_id


def place_bid(
    auction_id,
    bidder,
    amount,
    payment_method: str,
    payment_method_id: Optional[str] = None,
) -> BidPlacement:
    """Validate a bid, take its hold, and make it the auction's standing bid.

    The previous standing bid is marked outbid and its hold released. The
    request-time checks are repeated against the locked auction row so two
    concurrent bids can never both be accepted at the same price.
    """

    amount = to_amount(amount)
    if payment_method not in (Bid.PaymentMethod.CARD, Bid.PaymentMethod.BIDCOIN):
        BID_PLACEMENT_COUNT.labels(payment_method=str(payment_method), outcome="rejected").inc()
        raise BidRejected(
            f"Payment method '{payment_method}' is not supported for bids.",
            code="unsupported_payment_method",
        )

    try:
        placement = _place_bid(auction_id, bidder, amount, payment_method, payment_method_id)
    except SettlementError as exc:
        BID_PLACEMENT_COUNT.labels(payment_method=payment_method, outcome=exc.code).inc()
        raise

    BID_PLACEMENT_COUNT.labels(payment_method=payment_method, outcome="accepted").inc()
    log_billing_event(
        message="Bid placed",
        auction_id=placement.bid.auction_id,
        user_id=bidder.pk,
        extra={
            "bid_id": str(placement.bid.pk),
            "amount": str(amount),
            "payment_method": payment_method,
            "authorization_id": placement.authorization_id,
            "bidcoin_hold": placement.bidcoin_hold,
        },
    )
    return placement


def _place_bid(auction_id, bidder, amount: Decimal, payment_method: str, payment_method_id) -> BidPlacement:
    auction = _get_auction(auction_id)
    _validate_bid(auction, bidder, amount)

    coins_required = 0
    intent_id = None
    if payment_method == Bid.PaymentMethod.BIDCOIN:
        coins_required = dollars_to_coins(amount)
        balance = get_balance(bidder.pk)
        if balance < coins_required:
            raise BidRejected(
                "Insufficient BidCoins for this bid. Please top up or use card.",
                code="insufficient_balance",
                details={"balance": balance, "required": coins_required},
            )
    else:
        intent_id = _authorize_card(auction, bidder, amount, payment_method_id)

    try:
        bid, released = _commit_bid(auction.pk, bidder, amount, payment_method, intent_id, coins_required)
    except LedgerError as exc:
        if intent_id:
            _cancel_authorization_quietly(intent_id)
        logger.error("Ledger failure while placing bid on auction %s: %s", auction.pk, exc)
        raise BidRejected("Failed to reserve BidCoins for this bid.", code="ledger_unavailable") from exc
    except Exception:
        if intent_id:
            _cancel_authorization_quietly(intent_id)
        raise

    logger.info(
        "Accepted bid %s on auction %s (%s via %s); released %s previous holds",
        bid.pk,
        auction.pk,
        amount,
        payment_method,
        len(released),
    )
    return BidPlacement(
        bid=bid,
        new_current_price=amount,
        payment_method=payment_method,
        authorization_id=intent_id,
        bidcoin_hold=coins_required,
    )


def _commit_bid(auction_id, bidder, amount, payment_method, intent_id, coins_required):
    bid_id = uuid.uuid4()
    with transaction.atomic():
        auction = _lock_auction(auction_id)
        _validate_bid(auction, bidder, amount)

        if coins_required:
            try:
                spend_bidcoins(
                    bidder.pk,
                    coins_required,
                    TransactionType.AUCTION_PURCHASE,
                    reference_id=bid_id,
                    reference_table="bids",
                    metadata={"hold": True, "auction_id": str(auction.pk)},
                )
            except InsufficientBidcoinBalance as exc:
                raise BidRejected(
                    "Insufficient BidCoins for this bid. Please top up or use card.",
                    code="insufficient_balance",
                    details={"balance": get_balance(bidder.pk), "required": coins_required},
                ) from exc

        bid = Bid.objects.create(
            id=bid_id,
            auction=auction,
            bidder=bidder,
            amount=amount,
            status=Bid.Status.ACTIVE,
            payment_method=payment_method,
            stripe_payment_intent_id=intent_id,
            authorization_status=Bid.AuthorizationStatus.AUTHORIZED if intent_id else None,
            authorized_amount=amount if intent_id else None,
            bidcoin_hold=coins_required,
            holds_released=False,
        )

        released = _release_bids(
            Bid.objects.select_for_update().filter(auction=auction, status=Bid.Status.ACTIVE).exclude(pk=bid.pk),
            new_status=Bid.Status.OUTBID,
            reason="outbid",
        )

        swapped = Auction.objects.filter(pk=auction.pk, current_price=auction.current_price).update(
            current_price=amount,
            updated_at=timezone.now(),
        )
        if swapped != 1:
            raise BidRejected("Auction price changed; please bid again.", code="price_changed")

    return bid, released


# Hold release


def release_hold(bid: Bid, *, reason: str) -> Optional[str]:
    """Release the hold backing ``bid`` at most once.

    BidCoin holds are credited back immediately. For card holds the bid is
    marked cancelled and the payment intent id is returned so the caller can
    cancel it after commit. The bid is not saved here.
    """

    if bid.payment_method == Bid.PaymentMethod.BIDCOIN:
        if bid.holds_released or bid.bidcoin_hold <= 0:
            return None
        adjust_balance(
            bid.bidder_id,
            bid.bidcoin_hold,
            TransactionType.ADJUSTMENT,
            reference_id=bid.pk,
            reference_table="bids",
            metadata={"hold_release": True, "reason": reason, "auction_id": str(bid.auction_id)},
        )
        HOLD_RELEASE_COUNT.labels(payment_method=bid.payment_method, outcome="released").inc()
        bid.holds_released = True
        bid.bidcoin_hold = 0
        return None

    if bid.authorization_status != Bid.AuthorizationStatus.AUTHORIZED or not bid.stripe_payment_intent_id:
        return None
    bid.authorization_status = Bid.AuthorizationStatus.CANCELLED
    bid.holds_released = True
    return bid.stripe_payment_intent_id


def _release_bids(queryset, *, new_status: str, reason: str) -> List[Bid]:
    released: List[Bid] = []
    intents: List[str] = []
    for bid in queryset:
        intent_id = release_hold(bid, reason=reason)
        if intent_id:
            intents.append(intent_id)
        bid.status = new_status
        bid.save(update_fields=["status", "authorization_status", "bidcoin_hold", "holds_released", "updated_at"])
        released.append(bid)

    if intents:
        transaction.on_commit(lambda: cancel_authorizations(intents))
    return released


def cancel_authorizations(intent_ids) -> None:
    for intent_id in intent_ids:
        _cancel_authorization_quietly(intent_id)


def _cancel_authorization_quietly(intent_id: str) -> None:
    try:
        stripe_payments.cancel_payment_intent(intent_id)
    except (StripeServiceError, StripeConfigurationError) as exc:
        HOLD_RELEASE_COUNT.labels(payment_method=Bid.PaymentMethod.CARD, outcome="failed").inc()
        logger.error("Failed to cancel payment authorization %s: %s", intent_id, exc)
        return
    HOLD_RELEASE_COUNT.labels(payment_method=Bid.PaymentMethod.CARD, outcome="released").inc()


# Completion


def complete_auction(auction_id) -> CompletionResult:
    """Settle an auction: capture the winning hold and record the sale.

    Completing an auction that has already ended returns a no-op result.
    """

    try:
        result = _complete_auction(auction_id)
    except SettlementError as exc:
        AUCTION_COMPLETION_COUNT.labels(outcome=exc.code).inc()
        log_billing_event(
            message="Auction completion failed",
            auction_id=auction_id,
            extra={"code": exc.code, "error": exc.message},
            level=logging.WARNING,
        )
        raise

    if result.already_completed:
        AUCTION_COMPLETION_COUNT.labels(outcome="already_completed").inc()
        return result

    AUCTION_COMPLETION_COUNT.labels(outcome="sold" if result.sale else "no_bids").inc()
    if result.sale:
        _award_completion_bonuses(result.auction, result.sale)
        log_billing_event(
            message="Auction completed",
            auction_id=result.auction.pk,
            user_id=result.sale.buyer_id,
            extra={
                "amount": str(result.sale.amount),
                "platform_fee": str(result.sale.platform_fee),
                "seller_amount": str(result.sale.seller_amount),
                "payment_method": result.sale.payment_method,
                "transfer_status": result.sale.transfer_status,
            },
        )
    return result


def _complete_auction(auction_id) -> CompletionResult:
    with transaction.atomic():
        auction = _lock_auction(auction_id)
        if auction.status == Auction.Status.ENDED:
            return CompletionResult(auction=auction, message="Auction is already completed.", already_completed=True)
        if auction.status != Auction.Status.ACTIVE:
            raise AuctionNotCompletable(
                f"Auction cannot be completed. Current status: {auction.status}",
                details={"status": auction.status},
            )

        active_bids = list(
            Bid.objects.select_for_update()
            .filter(auction=auction, status=Bid.Status.ACTIVE)
            .order_by("-amount", "created_at")
        )
        now = timezone.now()
        if not active_bids:
            auction.status = Auction.Status.ENDED
            auction.ended_at = now
            auction.save(update_fields=["status", "ended_at", "updated_at"])
            return CompletionResult(auction=auction, message="Auction ended with no bids.")

        winner, others = active_bids[0], active_bids[1:]
        transfer_type = _capture_winning_hold(winner)

        winner.status = Bid.Status.WINNING
        if winner.payment_method == Bid.PaymentMethod.CARD:
            winner.authorization_status = Bid.AuthorizationStatus.CAPTURED
        winner.holds_released = True
        bidcoin_amount = winner.bidcoin_hold if winner.payment_method == Bid.PaymentMethod.BIDCOIN else 0
        if winner.payment_method == Bid.PaymentMethod.BIDCOIN:
            winner.bidcoin_hold = 0
        winner.save(update_fields=["status", "authorization_status", "holds_released", "bidcoin_hold", "updated_at"])

        released = _release_bids(others, new_status=Bid.Status.OUTBID, reason="auction_completed")

        fee = seller_fee(auction, winner.amount)
        seller_amount = winner.amount - fee
        transfer_status, transfer_error = _initial_transfer_status(auction, winner, transfer_type)
        sale = SalePayment.objects.create(
            auction=auction,
            winning_bid=winner,
            buyer_id=winner.bidder_id,
            seller_id=auction.seller_id,
            amount=winner.amount,
            platform_fee=fee,
            seller_amount=seller_amount,
            payment_method=winner.payment_method,
            stripe_payment_intent_id=winner.stripe_payment_intent_id,
            bidcoin_amount=bidcoin_amount,
            transfer_status=transfer_status,
            last_transfer_error=transfer_error,
        )

        auction.status = Auction.Status.ENDED
        auction.ended_at = now
        auction.save(update_fields=["status", "ended_at", "updated_at"])

        if transfer_status == SalePayment.TransferStatus.PENDING:
            transaction.on_commit(lambda: payouts.enqueue_payout(sale.pk))
        transaction.on_commit(lambda: notifications.notify_seller_of_sale(sale.pk))

    return CompletionResult(
        auction=auction,
        message=_completion_message(sale),
        winning_bid=winner,
        sale=sale,
        released_bids=released,
    )


def _capture_winning_hold(bid: Bid) -> str:
    """Capture a card authorization, or accept an already-debited BidCoin hold.

    Returns how the seller share is routed: ``automatic``, ``manual`` or ``bidcoin``.
    """

    if bid.payment_method == Bid.PaymentMethod.BIDCOIN:
        return "bidcoin"

    if not bid.stripe_payment_intent_id:
        raise PaymentCaptureFailed("No payment authorization found for winning bid.")

    try:
        intent = stripe_payments.retrieve_payment_intent(bid.stripe_payment_intent_id)
        status = intent.get("status")
        if status == "requires_capture":
            intent = stripe_payments.capture_payment_intent(bid.stripe_payment_intent_id)
            status = intent.get("status")
    except (StripeServiceError, StripeConfigurationError) as exc:
        logger.error("Payment capture error for bid %s: %s", bid.pk, exc)
        raise PaymentCaptureFailed("Failed to capture payment.", details={"reason": str(exc)}) from exc

    if status != "succeeded":
        raise PaymentCaptureFailed(f"Payment capture failed: {status}", details={"status": status})

    metadata = intent.get("metadata") or {}
    return metadata.get("transfer_type") or stripe_payments.card_transfer_mode()


def _initial_transfer_status(auction: Auction, winner: Bid, transfer_type: str):
    if transfer_type == stripe_payments.TRANSFER_MODE_AUTOMATIC:
        return SalePayment.TransferStatus.AUTOMATIC, ""
    if not auction.seller.stripe_account_id:
        logger.error(
            "Seller %s has no payment account for auction %s; payout needs manual follow-up",
            auction.seller_id,
            auction.pk,
        )
        return SalePayment.TransferStatus.FAILED, "Seller payment account not configured"
    return SalePayment.TransferStatus.PENDING, ""


def _completion_message(sale: SalePayment) -> str:
    captured = f"Auction completed! ${sale.amount} captured."
    if sale.transfer_status == SalePayment.TransferStatus.AUTOMATIC:
        return (
            f"{captured} ${sale.seller_amount} routed to the seller automatically; "
            f"${sale.platform_fee} platform fee retained."
        )
    if sale.payment_method == Bid.PaymentMethod.BIDCOIN:
        prefix = f"{captured} Paid using BidCoins."
    else:
        prefix = captured
    if sale.transfer_status == SalePayment.TransferStatus.PENDING:
        return f"{prefix} Seller payout of ${sale.seller_amount} queued; ${sale.platform_fee} platform fee retained."
    return f"{prefix} Seller payout of ${sale.seller_amount} requires manual transfer."


def _award_completion_bonuses(auction: Auction, sale: SalePayment) -> None:
    seller_rate = Decimal(str(getattr(settings, "BIDCOIN_AUCTION_SELLER_RATE", 0)))
    winner_rate = Decimal(str(getattr(settings, "BIDCOIN_AUCTION_WINNER_RATE", 0)))
    final_price_coins = dollars_to_coins(sale.amount)
    metadata = {"auction_id": str(auction.pk), "amount": str(sale.amount)}

    try:
        seller_bonus = int((final_price_coins * seller_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        award_bidcoins(
            sale.seller_id,
            seller_bonus,
            TransactionType.AUCTION_SALE,
            reference_id=auction.pk,
            reference_table="auctions",
            metadata=metadata,
        )
        winner_bonus = int((final_price_coins * winner_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        award_bidcoins(
            sale.buyer_id,
            winner_bonus,
            TransactionType.AUCTION_PURCHASE,
            reference_id=auction.pk,
            reference_table="auctions",
            metadata=metadata,
        )
    except LedgerError as exc:
        logger.error("Failed to award BidCoins for auction %s: %s", auction.pk, exc)


# Cancellation and refunds


def cancel_auction(auction_id, actor) -> Auction:
    """Cancel an auction on behalf of its seller, releasing every open hold."""

    with transaction.atomic():
        auction = _lock_auction(auction_id)
        if auction.seller_id != actor.pk:
            raise NotAuctionOwner("Only the auction owner can cancel this auction.")
        if auction.status == Auction.Status.CANCELLED:
            return auction
        if auction.status != Auction.Status.ACTIVE:
            raise AuctionNotCompletable(
                f"Auction cannot be cancelled. Current status: {auction.status}",
                details={"status": auction.status},
            )

        released = _release_bids(
            Bid.objects.select_for_update().filter(auction=auction, status=Bid.Status.ACTIVE),
            new_status=Bid.Status.CANCELLED,
            reason="auction_cancelled",
        )
        auction.status = Auction.Status.CANCELLED
        auction.ended_at = timezone.now()
        auction.save(update_fields=["status", "ended_at", "updated_at"])

    log_billing_event(
        message="Auction cancelled",
        auction_id=auction.pk,
        user_id=actor.pk,
        extra={"released_bids": len(released)},
    )
    return auction


def refund_sale(auction_id, amount=None, *, reason: Optional[str] = None) -> SalePayment:
    """Refund all or part of a completed sale to the buyer on the rail it was paid with."""

    with transaction.atomic():
        sale = (
            SalePayment.objects.select_for_update()
            .select_related("auction", "buyer")
            .filter(auction_id=auction_id)
            .first()
        )
        if sale is None:
            if not Auction.objects.filter(pk=auction_id).exists():
                raise AuctionNotFound("Auction not found.")
            raise RefundNotAllowed("Auction has no completed sale to refund.")
        if sale.status == SalePayment.Status.REFUNDED:
            raise RefundNotAllowed("Sale has already been fully refunded.")

        refundable = sale.refundable_amount
        refund_amount = refundable if amount is None else Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
        if refund_amount <= 0 or refund_amount > refundable:
            raise RefundNotAllowed(
                "Refund amount must be positive and no more than the refundable balance.",
                details={"refundable": str(refundable)},
            )

        if sale.payment_method == Bid.PaymentMethod.CARD:
            try:
                stripe_payments.create_refund(
                    payment_intent=sale.stripe_payment_intent_id,
                    amount_minor=stripe_payments.to_minor_units(refund_amount),
                    reason=reason,
                    metadata={"auction_id": sale.auction_id, "sale_id": sale.pk},
                    reverse_transfer=sale.transfer_status == SalePayment.TransferStatus.AUTOMATIC,
                )
            except (StripeServiceError, StripeConfigurationError, ValueError) as exc:
                logger.error("Refund failed for auction %s: %s", sale.auction_id, exc)
                raise SettlementError("Refund failed.", code="refund_failed", details={"reason": str(exc)}) from exc
        else:
            adjust_balance(
                sale.buyer_id,
                dollars_to_coins(refund_amount),
                TransactionType.ADJUSTMENT,
                reference_id=sale.pk,
                reference_table="sale_payments",
                metadata={"refund": True, "auction_id": str(sale.auction_id), "reason": reason or ""},
            )

        sale.refunded_amount += refund_amount
        sale.status = (
            SalePayment.Status.REFUNDED
            if sale.refunded_amount >= sale.amount
            else SalePayment.Status.PARTIALLY_REFUNDED
        )
        sale.save(update_fields=["refunded_amount", "status", "updated_at"])

    log_billing_event(
        message="Sale refunded",
        auction_id=sale.auction_id,
        user_id=sale.buyer_id,
        extra={"amount": str(refund_amount), "payment_method": sale.payment_method, "status": sale.status},
    )
    return sale
