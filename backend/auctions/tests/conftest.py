from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from auctions.models import Auction
from bidcoins.services.ledger import TransactionType, adjust_balance
from billing.services import stripe_payments
from billing.services.transfer_queue import get_transfer_queue


class FakeStripe:
    """Stands in for the Stripe helpers used by settlement and payouts."""

    def __init__(self):
        self.intents = {}
        self.cancelled = []
        self.captured = []
        self.refunds = []
        self.transfers = []
        self.transfer_attempts = []
        self.confirm_status = "requires_capture"
        self.transfer_error = None
        self._counter = 0

    def ensure_customer(self, user):
        return f"cus_{user.pk}"

    def ensure_account_capabilities(self, account_id):
        return {"id": account_id, "capabilities": {"card_payments": "active", "transfers": "active"}}

    def create_authorization(self, *, amount, customer_id, seller_account_id, premium_seller=False, metadata=None):
        self._counter += 1
        intent_id = f"pi_{self._counter}"
        self.intents[intent_id] = {
            "id": intent_id,
            "amount": stripe_payments.to_minor_units(amount),
            "status": "requires_confirmation",
            "metadata": {"transfer_type": stripe_payments.card_transfer_mode()},
        }
        return dict(self.intents[intent_id])

    def confirm_authorization(self, payment_intent_id, *, payment_method_id):
        self.intents[payment_intent_id]["status"] = self.confirm_status
        return dict(self.intents[payment_intent_id])

    def retrieve_payment_intent(self, payment_intent_id):
        return dict(self.intents[payment_intent_id])

    def capture_payment_intent(self, payment_intent_id):
        self.captured.append(payment_intent_id)
        self.intents[payment_intent_id]["status"] = "succeeded"
        return dict(self.intents[payment_intent_id])

    def cancel_payment_intent(self, payment_intent_id):
        self.cancelled.append(payment_intent_id)
        self.intents[payment_intent_id]["status"] = "canceled"
        return dict(self.intents[payment_intent_id])

    def create_refund(self, **kwargs):
        self.refunds.append(kwargs)
        return {"id": f"re_{len(self.refunds)}", **kwargs}

    def create_transfer(self, *, amount, destination, auction_id, seller_id=None, attempt=1):
        self.transfer_attempts.append(attempt)
        if self.transfer_error is not None:
            raise self.transfer_error
        self.transfers.append({"amount": Decimal(str(amount)), "destination": destination, "auction_id": auction_id})
        return {"id": f"tr_{len(self.transfers)}"}


@pytest.fixture
def fake_stripe():
    fake = FakeStripe()
    names = (
        "ensure_customer",
        "ensure_account_capabilities",
        "create_authorization",
        "confirm_authorization",
        "retrieve_payment_intent",
        "capture_payment_intent",
        "cancel_payment_intent",
        "create_refund",
        "create_transfer",
    )
    patchers = [mock.patch.object(stripe_payments, name, getattr(fake, name)) for name in names]
    for patcher in patchers:
        patcher.start()
    yield fake
    for patcher in patchers:
        patcher.stop()


@pytest.fixture(autouse=True)
def empty_transfer_queue():
    queue = get_transfer_queue()
    queue.clear()
    yield queue
    queue.clear()


@pytest.fixture
def make_user(db):
    User = get_user_model()

    def factory(username, *, coins=0, **fields):
        user = User.objects.create_user(username=username, email=f"{username}@example.com", password="pw", **fields)
        if coins:
            adjust_balance(user.pk, coins, TransactionType.ADJUSTMENT)
        return user

    return factory


@pytest.fixture
def seller(make_user):
    return make_user("seller", stripe_account_id="acct_seller")


@pytest.fixture
def make_auction(seller):
    def factory(*, price="90.00", owner=None, ends_in=timedelta(hours=1), **fields):
        return Auction.objects.create(
            seller=owner or seller,
            title=fields.pop("title", "Vintage camera"),
            starting_price=Decimal(price),
            end_time=timezone.now() + ends_in,
            **fields,
        )

    return factory
