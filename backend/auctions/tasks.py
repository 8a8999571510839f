"""Celery tasks for auction completion and seller payouts."""
from __future__ import annotations

import logging
from typing import Any, Dict

from celery import shared_task

from auctions.services.completion import complete_expired_auctions
from auctions.services.payouts import requeue_pending_payouts

logger = logging.getLogger(__name__)


@shared_task
def complete_expired_auctions_task() -> Dict[str, Any]:
    """Complete every active auction whose end time has passed."""

    report = complete_expired_auctions()
    logger.info(report["message"])
    return {"completed": report["completed"], "failed": report["failed"]}


@shared_task
def requeue_seller_payouts_task() -> Dict[str, int]:
    """Queue payouts left pending or failed by earlier attempts."""

    stats = requeue_pending_payouts()
    logger.info("Seller payout requeue finished: %s", stats)
    return stats
