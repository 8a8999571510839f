from decimal import Decimal
from io import StringIO

import pytest
from django.core import mail
from django.core.management import call_command
from django.test import override_settings

from auctions.models import SalePayment
from auctions.services.notifications import notify_seller_of_sale
from auctions.services.payouts import enqueue_payout, requeue_pending_payouts
from auctions.services.settlement import complete_auction, place_bid
from auctions.tasks import requeue_seller_payouts_task
from billing.services.stripe_payments import StripeServiceError

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending_sale(make_auction, make_user, fake_stripe):
    auction = make_auction()
    bidder = make_user("alice", coins=15000)
    place_bid(auction.pk, bidder, "100", "bidcoin")
    result = complete_auction(auction.pk)
    assert result.sale.transfer_status == SalePayment.TransferStatus.PENDING
    return result.sale


@override_settings(TRANSFER_QUEUE_MAX_RETRIES=3)
def test_failed_payout_is_marked_after_retries(pending_sale, fake_stripe):
    fake_stripe.transfer_error = StripeServiceError("insufficient platform balance", code="balance_insufficient")

    assert enqueue_payout(pending_sale.pk) is True

    pending_sale.refresh_from_db()
    assert pending_sale.transfer_status == SalePayment.TransferStatus.FAILED
    assert pending_sale.transfer_attempts == 3
    assert pending_sale.last_transfer_error == "insufficient platform balance"
    assert fake_stripe.transfer_attempts == [1, 2, 3]

    fake_stripe.transfer_error = None
    assert requeue_pending_payouts() == {"queued": 1, "skipped": 0}

    pending_sale.refresh_from_db()
    assert fake_stripe.transfer_attempts == [1, 2, 3, 4]
    assert pending_sale.transfer_status == SalePayment.TransferStatus.COMPLETED
    assert pending_sale.transfer_attempts == 4


def test_requeue_retries_failed_payouts(pending_sale, fake_stripe):
    SalePayment.objects.filter(pk=pending_sale.pk).update(transfer_status=SalePayment.TransferStatus.FAILED)

    stats = requeue_pending_payouts()

    assert stats == {"queued": 1, "skipped": 0}
    pending_sale.refresh_from_db()
    assert pending_sale.transfer_status == SalePayment.TransferStatus.COMPLETED
    assert pending_sale.stripe_transfer_id == "tr_1"
    assert fake_stripe.transfers[0]["amount"] == Decimal("95.00")


def test_completed_payout_is_never_requeued(pending_sale, fake_stripe):
    enqueue_payout(pending_sale.pk)

    assert enqueue_payout(pending_sale.pk) is False
    assert requeue_seller_payouts_task() == {"queued": 0, "skipped": 0}
    assert len(fake_stripe.transfers) == 1


def test_payout_without_seller_account_fails_fast(pending_sale, fake_stripe):
    pending_sale.seller.stripe_account_id = ""
    pending_sale.seller.save(update_fields=["stripe_account_id"])

    assert enqueue_payout(pending_sale.pk) is False

    pending_sale.refresh_from_db()
    assert pending_sale.transfer_status == SalePayment.TransferStatus.FAILED
    assert fake_stripe.transfers == []


def test_requeue_command_dry_run_leaves_sales_untouched(pending_sale, fake_stripe):
    out = StringIO()

    call_command("requeue_seller_payouts", "--dry-run", stdout=out)

    assert "1 payouts would be retried" in out.getvalue()
    assert fake_stripe.transfers == []


def test_requeue_command_queues_pending_payouts(pending_sale, fake_stripe):
    out = StringIO()

    call_command("requeue_seller_payouts", "--auction-id", str(pending_sale.auction_id), stdout=out)

    assert "Queued 1 of 1 payouts." in out.getvalue()
    pending_sale.refresh_from_db()
    assert pending_sale.transfer_status == SalePayment.TransferStatus.COMPLETED


def test_seller_is_notified_of_sale(pending_sale):
    assert notify_seller_of_sale(pending_sale.pk) is True

    assert len(mail.outbox) == 1
    message = mail.outbox[0]
    assert message.to == ["seller@example.com"]
    assert "sold for $100.00" in message.body
    assert "$95.00" in message.body
