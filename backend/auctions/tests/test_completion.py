from datetime import timedelta
from unittest import mock

import pytest
import requests
from django.test import override_settings

from auctions.models import Auction
from auctions.services import completion
from auctions.services.completion import complete_expired_auctions, list_expired_auctions
from auctions.services.settlement import place_bid

pytestmark = pytest.mark.django_db


def test_only_expired_active_auctions_are_listed(make_auction, seller):
    expired = make_auction(title="expired", ends_in=timedelta(minutes=-5))
    make_auction(title="running", ends_in=timedelta(hours=2))
    make_auction(title="cancelled", ends_in=timedelta(minutes=-5), status=Auction.Status.CANCELLED)

    assert [auction.pk for auction in list_expired_auctions()] == [expired.pk]


def test_sweep_reports_each_outcome(make_auction, make_user, fake_stripe):
    bidder = make_user("alice", coins=20000)
    sold = make_auction(title="sold")
    broken = make_auction(title="broken")
    place_bid(sold.pk, bidder, "95", "bidcoin")
    place_bid(broken.pk, make_user("bob"), "95", "card", payment_method_id="pm_b")
    fake_stripe.intents["pi_1"]["status"] = "canceled"
    Auction.objects.update(end_time=sold.end_time - timedelta(hours=2))

    report = complete_expired_auctions()

    assert report["success"] is True
    assert report["completed"] == 1
    assert report["failed"] == 1
    assert report["message"] == "Processed 2 expired auctions. 1 completed, 1 failed."
    by_title = {item["title"]: item for item in report["results"]}
    assert by_title["sold"]["status"] == "completed"
    assert by_title["sold"]["auctionId"] == str(sold.pk)
    assert by_title["broken"]["status"] == "failed"
    assert "Payment capture failed" in by_title["broken"]["error"]
    broken.refresh_from_db()
    assert broken.status == Auction.Status.ACTIVE


def test_unexpected_errors_are_reported_and_do_not_stop_the_sweep(make_auction):
    make_auction(title="first", ends_in=timedelta(minutes=-10))
    make_auction(title="second", ends_in=timedelta(minutes=-5))

    outcomes = [RuntimeError("boom"), mock.Mock(message="Auction ended with no bids.")]
    with mock.patch.object(completion, "complete_auction", side_effect=outcomes):
        report = complete_expired_auctions()

    assert [item["status"] for item in report["results"]] == ["error", "completed"]
    assert report["results"][0]["error"] == "boom"
    assert report["failed"] == 1


def test_empty_sweep():
    report = complete_expired_auctions()
    assert report == {
        "success": True,
        "message": "Processed 0 expired auctions. 0 completed, 0 failed.",
        "completed": 0,
        "failed": 0,
        "results": [],
    }


@override_settings(AUCTION_SELF_CALL_BASE_URL="https://auctions.internal/", AUCTION_CRON_TOKEN="cron-secret")
def test_self_call_mode_posts_to_completion_endpoint(make_auction):
    ok = make_auction(title="ok", ends_in=timedelta(minutes=-10))
    rejected = make_auction(title="rejected", ends_in=timedelta(minutes=-5))
    unreachable = make_auction(title="unreachable", ends_in=timedelta(minutes=-1))

    def fake_post(url, json, headers, timeout):
        if str(unreachable.pk) in url:
            raise requests.ConnectionError("connection refused")
        response = mock.Mock()
        if str(ok.pk) in url:
            response.status_code = 200
            response.json.return_value = {"message": "Auction completed!"}
        else:
            response.status_code = 409
            response.json.return_value = {"code": "auction_not_completable", "message": "Auction cannot be completed."}
        return response

    with mock.patch.object(completion.requests, "post", side_effect=fake_post) as post:
        report = complete_expired_auctions()

    first_call = post.call_args_list[0]
    assert first_call.args[0] == f"https://auctions.internal/api/auctions/{ok.pk}/complete/"
    assert first_call.kwargs["headers"]["X-Cron-Token"] == "cron-secret"
    assert [item["status"] for item in report["results"]] == ["completed", "failed", "error"]
    assert report["results"][0]["message"] == "Auction completed!"
    assert report["results"][1]["error"] == "Auction cannot be completed."
    assert "connection refused" in report["results"][2]["error"]
    assert report["completed"] == 1
    assert report["failed"] == 2
    assert Auction.objects.filter(pk=rejected.pk, status=Auction.Status.ACTIVE).exists()
