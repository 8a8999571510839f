from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.db import DatabaseError, IntegrityError, transaction
from django.test import override_settings

from auctions.models import Auction, Bid, SalePayment
from auctions.services import settlement
from auctions.services.settlement import (
    AuctionNotCompletable,
    BidRejected,
    NotAuctionOwner,
    PaymentAuthorizationFailed,
    PaymentCaptureFailed,
    RefundNotAllowed,
    SellerPaymentNotConfigured,
    bid_increment,
    cancel_auction,
    complete_auction,
    minimum_bid,
    place_bid,
    refund_sale,
)
from bidcoins.models import BidcoinTransaction
from bidcoins.services.ledger import get_balance

pytestmark = pytest.mark.django_db


@pytest.mark.parametrize(
    "price,increment",
    [
        ("0.01", "1"),
        ("99.99", "1"),
        ("100", "5"),
        ("499.99", "5"),
        ("500", "10"),
        ("999.99", "10"),
        ("1000", "25"),
        ("25000", "25"),
    ],
)
def test_bid_increment_tiers(price, increment):
    assert bid_increment(Decimal(price)) == Decimal(increment)


def test_minimum_bid_adds_increment():
    assert minimum_bid(Decimal("90")) == Decimal("91.00")
    assert minimum_bid(Decimal("100")) == Decimal("105.00")
    assert minimum_bid(Decimal("1000")) == Decimal("1025.00")


def test_bid_below_minimum_reports_required_amount(make_auction, make_user):
    auction = make_auction(price="100.00")
    bidder = make_user("alice", coins=50000)

    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, bidder, "104.99", "bidcoin")

    assert excinfo.value.code == "min_increment_not_met"
    assert excinfo.value.details == {"current_price": "100.00", "min_bid": "105.00", "increment": "5"}
    assert get_balance(bidder.pk) == 50000
    assert not Bid.objects.exists()


def test_seller_cannot_bid_on_own_auction(make_auction, seller):
    auction = make_auction()
    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, seller, "95", "bidcoin")
    assert excinfo.value.code == "own_auction"


def test_expired_auction_rejects_bids(make_auction, make_user):
    auction = make_auction(ends_in=timedelta(seconds=-1))
    bidder = make_user("alice", coins=50000)
    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, bidder, "95", "bidcoin")
    assert excinfo.value.code == "auction_ended"


def test_hybrid_payment_is_rejected(make_auction, make_user):
    auction = make_auction()
    bidder = make_user("alice", coins=50000)
    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, bidder, "95", "hybrid")
    assert excinfo.value.code == "unsupported_payment_method"


def test_bidcoin_bid_requires_sufficient_balance(make_auction, make_user):
    auction = make_auction()
    bidder = make_user("alice", coins=9000)

    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, bidder, "95", "bidcoin")

    assert excinfo.value.code == "insufficient_balance"
    assert excinfo.value.details == {"balance": 9000, "required": 9500}
    assert get_balance(bidder.pk) == 9000


def test_bidcoin_bid_takes_hold_and_moves_price(make_auction, make_user):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)

    placement = place_bid(auction.pk, bidder, "95.00", "bidcoin")

    auction.refresh_from_db()
    assert auction.current_price == Decimal("95.00")
    assert placement.bidcoin_hold == 9500
    assert placement.bid.status == Bid.Status.ACTIVE
    assert get_balance(bidder.pk) == 5500
    hold = BidcoinTransaction.objects.get(user=bidder, reference_id=str(placement.bid.pk))
    assert hold.change == -9500
    assert hold.type == BidcoinTransaction.TransactionType.AUCTION_PURCHASE
    assert hold.metadata["hold"] is True


def test_outbid_bidcoin_hold_is_returned_once(make_auction, make_user):
    auction = make_auction()
    alice = make_user("alice", coins=15000)
    bob = make_user("bob", coins=15000)

    first = place_bid(auction.pk, alice, "95", "bidcoin")
    place_bid(auction.pk, bob, "100", "bidcoin")
    place_bid(auction.pk, alice, "105", "bidcoin")

    first.bid.refresh_from_db()
    assert first.bid.status == Bid.Status.OUTBID
    assert first.bid.holds_released is True
    assert first.bid.bidcoin_hold == 0
    assert get_balance(bob.pk) == 15000
    assert get_balance(alice.pk) == 15000 - 10500
    releases = BidcoinTransaction.objects.filter(user=alice, reference_id=str(first.bid.pk), change__gt=0)
    assert releases.count() == 1
    assert releases.get().metadata["hold_release"] is True
    assert Bid.objects.filter(auction=auction, status=Bid.Status.ACTIVE).count() == 1


def test_seller_without_payment_account_blocks_card_bids(make_auction, make_user, fake_stripe):
    seller = make_user("nopay")
    auction = make_auction(owner=seller)
    bidder = make_user("alice")

    with pytest.raises(SellerPaymentNotConfigured):
        place_bid(auction.pk, bidder, "95", "card", payment_method_id="pm_card")

    assert fake_stripe.intents == {}


def test_card_bid_requires_payment_method(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice")
    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, bidder, "95", "card")
    assert excinfo.value.code == "payment_method_required"


def test_failed_card_authorization_is_cancelled(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice")
    fake_stripe.confirm_status = "requires_payment_method"

    with pytest.raises(PaymentAuthorizationFailed):
        place_bid(auction.pk, bidder, "95", "card", payment_method_id="pm_declined")

    assert fake_stripe.cancelled == ["pi_1"]
    assert not Bid.objects.exists()
    auction.refresh_from_db()
    assert auction.current_price == Decimal("90.00")


def test_card_bid_outbid_by_bidcoin_then_sold(make_auction, make_user, fake_stripe, django_capture_on_commit_callbacks):
    auction = make_auction(price="90.00")
    alice = make_user("alice")
    bob = make_user("bob", coins=15000)

    card = place_bid(auction.pk, alice, "95", "card", payment_method_id="pm_card")
    assert card.authorization_id == "pi_1"
    assert card.payment_authorized is True

    with django_capture_on_commit_callbacks(execute=True):
        place_bid(auction.pk, bob, "100", "bidcoin")

    assert fake_stripe.cancelled == ["pi_1"]
    card.bid.refresh_from_db()
    assert card.bid.status == Bid.Status.OUTBID
    assert card.bid.authorization_status == Bid.AuthorizationStatus.CANCELLED
    assert get_balance(bob.pk) == 5000
    auction.refresh_from_db()
    assert auction.current_price == Decimal("100.00")

    with django_capture_on_commit_callbacks(execute=True):
        result = complete_auction(auction.pk)

    assert result.winning_bid.bidder_id == bob.pk
    assert get_balance(bob.pk) == 5000
    sale = SalePayment.objects.get(auction=auction)
    assert sale.amount == Decimal("100.00")
    assert sale.platform_fee == Decimal("5.00")
    assert sale.seller_amount == Decimal("95.00")
    assert sale.bidcoin_amount == 10000
    assert sale.transfer_status == SalePayment.TransferStatus.COMPLETED
    assert sale.stripe_transfer_id == "tr_1"
    assert fake_stripe.transfers == [
        {"amount": Decimal("95.00"), "destination": "acct_seller", "auction_id": str(auction.pk)}
    ]


@override_settings(AUCTION_CARD_TRANSFER_MODE="automatic")
def test_card_winner_is_captured_with_automatic_routing(make_auction, make_user, fake_stripe,
                                                         django_capture_on_commit_callbacks):
    auction = make_auction(price="100.00")
    alice = make_user("alice")
    bob = make_user("bob")
    place_bid(auction.pk, alice, "105", "card", payment_method_id="pm_a")
    place_bid(auction.pk, bob, "110", "card", payment_method_id="pm_b")

    with django_capture_on_commit_callbacks(execute=True):
        result = complete_auction(auction.pk)

    assert fake_stripe.captured == ["pi_2"]
    assert result.sale.transfer_status == SalePayment.TransferStatus.AUTOMATIC
    assert result.sale.platform_fee == Decimal("5.50")
    assert fake_stripe.transfers == []
    assert Bid.objects.filter(auction=auction, status=Bid.Status.WINNING).count() == 1
    auction.refresh_from_db()
    assert auction.status == Auction.Status.ENDED
    assert auction.ended_at is not None


@override_settings(AUCTION_CARD_TRANSFER_MODE="manual")
def test_manual_card_routing_queues_seller_transfer(make_auction, make_user, fake_stripe,
                                                    django_capture_on_commit_callbacks):
    auction = make_auction(price="100.00")
    alice = make_user("alice")
    place_bid(auction.pk, alice, "200", "card", payment_method_id="pm_a")

    with django_capture_on_commit_callbacks(execute=True):
        result = complete_auction(auction.pk)

    result.sale.refresh_from_db()
    assert result.sale.transfer_status == SalePayment.TransferStatus.COMPLETED
    assert fake_stripe.transfers[0]["amount"] == Decimal("190.00")


def test_premium_seller_pays_reduced_fee(make_auction, make_user, fake_stripe):
    seller = make_user("premium", stripe_account_id="acct_p", subscription_plan="premium")
    auction = make_auction(owner=seller, price="100.00")
    bidder = make_user("alice", coins=20000)
    place_bid(auction.pk, bidder, "200", "bidcoin")

    result = complete_auction(auction.pk)

    assert seller.is_premium_seller
    assert result.sale.platform_fee == Decimal("5.00")
    assert result.sale.seller_amount == Decimal("195.00")


def test_capture_failure_leaves_auction_active(make_auction, make_user, fake_stripe):
    auction = make_auction()
    alice = make_user("alice")
    place_bid(auction.pk, alice, "95", "card", payment_method_id="pm_a")
    fake_stripe.intents["pi_1"]["status"] = "canceled"

    with pytest.raises(PaymentCaptureFailed):
        complete_auction(auction.pk)

    auction.refresh_from_db()
    assert auction.status == Auction.Status.ACTIVE
    assert not SalePayment.objects.exists()
    assert Bid.objects.get().status == Bid.Status.ACTIVE


def test_completion_is_idempotent(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "95", "bidcoin")

    first = complete_auction(auction.pk)
    second = complete_auction(auction.pk)

    assert first.already_completed is False
    assert second.already_completed is True
    assert SalePayment.objects.filter(auction=auction).count() == 1
    assert get_balance(bidder.pk) == 5500


def test_completion_without_bids_just_ends(make_auction):
    auction = make_auction()

    result = complete_auction(auction.pk)

    assert result.sale is None
    assert result.message == "Auction ended with no bids."
    auction.refresh_from_db()
    assert auction.status == Auction.Status.ENDED


def test_seller_without_account_gets_failed_transfer(make_auction, make_user, fake_stripe):
    seller = make_user("nopay")
    auction = make_auction(owner=seller)
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "95", "bidcoin")

    result = complete_auction(auction.pk)

    assert result.sale.transfer_status == SalePayment.TransferStatus.FAILED
    assert result.sale.last_transfer_error
    assert fake_stripe.transfers == []


@override_settings(BIDCOIN_AUCTION_SELLER_RATE="0.01", BIDCOIN_AUCTION_WINNER_RATE="0.02")
def test_completion_awards_configured_bonuses(make_auction, make_user, seller, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "100", "bidcoin")

    complete_auction(auction.pk)

    assert get_balance(seller.pk) == 100
    assert get_balance(bidder.pk) == 5000 + 200


def test_cancelled_auction_cannot_be_completed(make_auction, seller):
    auction = make_auction()
    cancel_auction(auction.pk, seller)
    with pytest.raises(AuctionNotCompletable):
        complete_auction(auction.pk)


def test_cancel_releases_every_hold(make_auction, make_user, seller, fake_stripe, django_capture_on_commit_callbacks):
    auction = make_auction()
    alice = make_user("alice")
    bob = make_user("bob", coins=15000)
    place_bid(auction.pk, alice, "95", "card", payment_method_id="pm_a")
    place_bid(auction.pk, bob, "100", "bidcoin")

    with django_capture_on_commit_callbacks(execute=True):
        cancel_auction(auction.pk, seller)

    auction.refresh_from_db()
    assert auction.status == Auction.Status.CANCELLED
    assert get_balance(bob.pk) == 15000
    assert set(Bid.objects.values_list("status", flat=True)) == {Bid.Status.OUTBID, Bid.Status.CANCELLED}
    assert not any(bid.has_open_hold for bid in Bid.objects.all())


def test_only_seller_can_cancel(make_auction, make_user):
    auction = make_auction()
    with pytest.raises(NotAuctionOwner):
        cancel_auction(auction.pk, make_user("mallory"))


def test_single_winner_is_enforced_by_database(make_auction, make_user):
    auction = make_auction()
    alice = make_user("alice")
    Bid.objects.create(auction=auction, bidder=alice, amount="95", status=Bid.Status.WINNING, payment_method="card")
    with pytest.raises(IntegrityError), transaction.atomic():
        Bid.objects.create(auction=auction, bidder=alice, amount="96", status=Bid.Status.WINNING, payment_method="card")


def test_partial_then_full_bidcoin_refund(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "95", "bidcoin")
    complete_auction(auction.pk)

    sale = refund_sale(auction.pk, Decimal("20.00"))
    assert sale.status == SalePayment.Status.PARTIALLY_REFUNDED
    assert get_balance(bidder.pk) == 5500 + 2000

    sale = refund_sale(auction.pk)
    assert sale.status == SalePayment.Status.REFUNDED
    assert sale.refunded_amount == Decimal("95.00")
    assert get_balance(bidder.pk) == 15000

    with pytest.raises(RefundNotAllowed):
        refund_sale(auction.pk)


@override_settings(AUCTION_CARD_TRANSFER_MODE="automatic")
def test_card_refund_reverses_destination_transfer(make_auction, make_user, fake_stripe):
    auction = make_auction()
    alice = make_user("alice")
    place_bid(auction.pk, alice, "95", "card", payment_method_id="pm_a")
    complete_auction(auction.pk)

    refund_sale(auction.pk, Decimal("10.00"), reason="requested_by_customer")

    assert fake_stripe.refunds[0]["amount_minor"] == 1000
    assert fake_stripe.refunds[0]["payment_intent"] == "pi_1"
    assert fake_stripe.refunds[0]["reverse_transfer"] is True


def test_refund_over_refundable_amount_is_rejected(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "95", "bidcoin")
    complete_auction(auction.pk)

    with pytest.raises(RefundNotAllowed):
        refund_sale(auction.pk, Decimal("95.01"))


@pytest.mark.parametrize("amount", ["90.995", "91.001"])
def test_sub_cent_amounts_are_rejected(make_auction, make_user, amount):
    auction = make_auction(price="90.00")
    bidder = make_user("alice", coins=50000)

    with pytest.raises(BidRejected) as excinfo:
        place_bid(auction.pk, bidder, amount, "bidcoin")

    assert excinfo.value.code == "invalid_amount"
    assert not Bid.objects.exists()


def test_trailing_zero_amount_is_accepted(make_auction, make_user):
    auction = make_auction(price="90.00")
    bidder = make_user("alice", coins=50000)

    placement = place_bid(auction.pk, bidder, "91.000", "bidcoin")

    assert placement.new_current_price == Decimal("91.00")


def test_database_failure_cancels_card_authorization(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice")

    with mock.patch.object(Bid.objects, "create", side_effect=DatabaseError("disk full")):
        with pytest.raises(DatabaseError):
            place_bid(auction.pk, bidder, "95", "card", payment_method_id="pm_ok")

    assert fake_stripe.cancelled == ["pi_1"]
    assert fake_stripe.intents["pi_1"]["status"] == "canceled"
    assert not Bid.objects.exists()
    auction.refresh_from_db()
    assert auction.current_price == Decimal("90.00")


def _stale_copy(auction, new_price):
    stale = Auction.objects.select_related("seller").get(pk=auction.pk)
    Auction.objects.filter(pk=auction.pk).update(current_price=Decimal(new_price))
    return stale


def test_bid_is_revalidated_against_locked_price(make_auction, make_user, fake_stripe):
    auction = make_auction(price="90.00")
    bidder = make_user("alice", coins=15000)
    stale = _stale_copy(auction, "120.00")

    with mock.patch.object(settlement, "_get_auction", return_value=stale):
        with pytest.raises(BidRejected) as card_error:
            place_bid(auction.pk, bidder, "95", "card", payment_method_id="pm_ok")
        with pytest.raises(BidRejected) as coin_error:
            place_bid(auction.pk, bidder, "95", "bidcoin")

    assert card_error.value.code == "min_increment_not_met"
    assert card_error.value.details["current_price"] == "120.00"
    assert coin_error.value.code == "min_increment_not_met"
    assert fake_stripe.cancelled == ["pi_1"]
    assert not Bid.objects.exists()
    assert get_balance(bidder.pk) == 15000
    auction.refresh_from_db()
    assert auction.current_price == Decimal("120.00")


def test_lost_price_swap_rolls_back_hold_and_bid(make_auction, make_user, fake_stripe):
    auction = make_auction(price="90.00")
    bidder = make_user("alice", coins=15000)
    stale = _stale_copy(auction, "92.00")

    with mock.patch.object(settlement, "_lock_auction", return_value=stale):
        with pytest.raises(BidRejected) as coin_error:
            place_bid(auction.pk, bidder, "95", "bidcoin")
        with pytest.raises(BidRejected) as card_error:
            place_bid(auction.pk, bidder, "95", "card", payment_method_id="pm_ok")

    assert coin_error.value.code == "price_changed"
    assert card_error.value.code == "price_changed"
    assert fake_stripe.cancelled == ["pi_1"]
    assert not Bid.objects.exists()
    assert get_balance(bidder.pk) == 15000
    assert not BidcoinTransaction.objects.filter(
        user=bidder, type=BidcoinTransaction.TransactionType.AUCTION_PURCHASE
    ).exists()
    auction.refresh_from_db()
    assert auction.current_price == Decimal("92.00")


def test_bidcoin_winner_has_no_card_authorization_status(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "95", "bidcoin")

    result = complete_auction(auction.pk)

    result.winning_bid.refresh_from_db()
    assert result.winning_bid.status == Bid.Status.WINNING
    assert result.winning_bid.authorization_status is None
