"""Sweep that completes every active auction whose end time has passed."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

import requests
from django.conf import settings
from django.utils import timezone

from auctions.models import Auction
from auctions.services.settlement import SettlementError, complete_auction

logger = logging.getLogger(__name__)

SELF_CALL_TIMEOUT_SECONDS = 30


def list_expired_auctions():
    return (
        Auction.objects.filter(status=Auction.Status.ACTIVE, end_time__lte=timezone.now())
        .select_related("seller")
        .order_by("end_time")
    )


def complete_expired_auctions() -> Dict[str, Any]:
    """Complete expired auctions one by one and report an outcome for each.

    A failure on one auction never stops the sweep. When
    ``AUCTION_SELF_CALL_BASE_URL`` is configured each auction is completed
    through the HTTP endpoint instead of in process.
    """

    auctions = list(list_expired_auctions())
    base_url = (getattr(settings, "AUCTION_SELF_CALL_BASE_URL", "") or "").rstrip("/")
    logger.info("Found %s expired auctions to complete", len(auctions))

    results: List[Dict[str, Any]] = []
    for auction in auctions:
        if base_url:
            results.append(_complete_via_http(base_url, auction))
        else:
            results.append(_complete_in_process(auction))

    completed = sum(1 for item in results if item["status"] == "completed")
    failed = len(results) - completed
    return {
        "success": True,
        "message": f"Processed {len(results)} expired auctions. {completed} completed, {failed} failed.",
        "completed": completed,
        "failed": failed,
        "results": results,
    }


def _complete_in_process(auction: Auction) -> Dict[str, Any]:
    item: Dict[str, Any] = {"auctionId": str(auction.pk), "title": auction.title}
    try:
        result = complete_auction(auction.pk)
    except SettlementError as exc:
        logger.warning("Failed to complete auction %s: %s", auction.pk, exc.message)
        item.update(status="failed", error=exc.message)
        return item
    except Exception as exc:
        logger.exception("Error completing auction %s", auction.pk)
        item.update(status="error", error=str(exc))
        return item

    item.update(status="completed", message=result.message)
    return item


def _complete_via_http(base_url: str, auction: Auction) -> Dict[str, Any]:
    item: Dict[str, Any] = {"auctionId": str(auction.pk), "title": auction.title}
    url = f"{base_url}/api/auctions/{auction.pk}/complete/"
    headers = {"Content-Type": "application/json"}
    token = getattr(settings, "AUCTION_CRON_TOKEN", "")
    if token:
        headers["X-Cron-Token"] = token

    try:
        response = requests.post(url, json={}, headers=headers, timeout=SELF_CALL_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        logger.error("Error completing auction %s via %s: %s", auction.pk, url, exc)
        item.update(status="error", error=str(exc))
        return item

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if 200 <= response.status_code < 300:
        item.update(status="completed", message=payload.get("message", "Auction completed."))
    else:
        error = payload.get("message") or payload.get("error") or f"HTTP {response.status_code}"
        logger.warning("Failed to complete auction %s: %s", auction.pk, error)
        item.update(status="failed", error=error)
    return item
