"""Seller payouts for sales whose funds settle on the platform balance."""
from __future__ import annotations

import logging
from typing import Dict

from django.db.models import F
from django.utils import timezone

from auctions.models import SalePayment
from billing.observability.logging import log_billing_event
from billing.services.transfer_queue import TransferJob, get_transfer_queue

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (SalePayment.TransferStatus.PENDING, SalePayment.TransferStatus.FAILED)


def enqueue_payout(sale_id) -> bool:
    """Queue the seller transfer for a sale. Returns ``True`` when a job was queued."""

    sale = SalePayment.objects.select_related("seller").filter(pk=sale_id).first()
    if sale is None:
        logger.warning("Sale %s not found; payout not queued", sale_id)
        return False
    if sale.transfer_status not in RETRYABLE_STATUSES:
        logger.info("Sale %s has transfer status %s; payout not queued", sale.pk, sale.transfer_status)
        return False

    account_id = sale.seller.stripe_account_id
    if not account_id:
        SalePayment.objects.filter(pk=sale.pk).update(
            transfer_status=SalePayment.TransferStatus.FAILED,
            last_transfer_error="Seller payment account not configured",
            updated_at=timezone.now(),
        )
        logger.error("Seller %s has no payment account; payout for auction %s failed", sale.seller_id, sale.auction_id)
        return False

    if sale.transfer_status != SalePayment.TransferStatus.PENDING:
        SalePayment.objects.filter(pk=sale.pk).update(
            transfer_status=SalePayment.TransferStatus.PENDING,
            updated_at=timezone.now(),
        )

    get_transfer_queue().enqueue(
        auction_id=sale.auction_id,
        seller_id=sale.seller_id,
        seller_account_id=account_id,
        amount=sale.seller_amount,
        prior_attempts=sale.transfer_attempts,
    )
    return True


def requeue_pending_payouts() -> Dict[str, int]:
    """Queue every payout left pending or failed, e.g. after a process restart."""

    stats = {"queued": 0, "skipped": 0}
    sale_ids = SalePayment.objects.filter(transfer_status__in=RETRYABLE_STATUSES).values_list("pk", flat=True)
    for sale_id in list(sale_ids):
        if enqueue_payout(sale_id):
            stats["queued"] += 1
        else:
            stats["skipped"] += 1
    return stats


def record_transfer_success(job: TransferJob, transfer) -> None:
    SalePayment.objects.filter(auction_id=job.auction_id).update(
        transfer_status=SalePayment.TransferStatus.COMPLETED,
        stripe_transfer_id=transfer.get("id"),
        transfer_attempts=F("transfer_attempts") + 1,
        last_transfer_error="",
        updated_at=timezone.now(),
    )


def record_transfer_failure(job: TransferJob, exc: Exception) -> None:
    SalePayment.objects.filter(auction_id=job.auction_id).update(
        transfer_attempts=F("transfer_attempts") + 1,
        last_transfer_error=str(exc)[:1000],
        updated_at=timezone.now(),
    )


def record_transfer_exhausted(job: TransferJob, exc: Exception) -> None:
    SalePayment.objects.filter(auction_id=job.auction_id).update(
        transfer_status=SalePayment.TransferStatus.FAILED,
        updated_at=timezone.now(),
    )
    log_billing_event(
        message="Seller payout marked failed",
        auction_id=job.auction_id,
        user_id=job.seller_id,
        extra={"attempts": job.retries, "error": job.last_error},
        level=logging.ERROR,
    )


def register_queue_callbacks(queue=None) -> None:
    (queue or get_transfer_queue()).register_callbacks(
        on_success=record_transfer_success,
        on_failure=record_transfer_failure,
        on_exhausted=record_transfer_exhausted,
    )
