"""Management command to retry seller payouts that are pending or failed."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from auctions.models import SalePayment
from auctions.services.payouts import RETRYABLE_STATUSES, enqueue_payout
from billing.services.transfer_queue import get_transfer_queue


class Command(BaseCommand):
    help = "Re-enqueue seller transfers for sales whose payout is pending or failed."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--auction-id",
            dest="auction_ids",
            action="append",
            help="Retry only the payout for the given auction id. Can be supplied multiple times.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the payouts that would be retried without queueing them.",
        )
        parser.add_argument(
            "--wait",
            type=float,
            default=None,
            help="Seconds to wait for the transfer queue to drain before exiting.",
        )

    def handle(self, *args, **options) -> None:
        queryset = SalePayment.objects.filter(transfer_status__in=RETRYABLE_STATUSES).order_by("created_at")
        if options.get("auction_ids"):
            queryset = queryset.filter(auction_id__in=options["auction_ids"])

        total = queryset.count()
        if total == 0:
            self.stdout.write(self.style.WARNING("No pending or failed payouts matched."))
            return

        queued = 0
        for sale in queryset:
            self.stdout.write(f"Payout for auction {sale.auction_id}: ${sale.seller_amount} ({sale.transfer_status})")
            if options.get("dry_run"):
                continue
            if enqueue_payout(sale.pk):
                queued += 1

        if options.get("dry_run"):
            self.stdout.write(self.style.WARNING(f"Dry run complete. {total} payouts would be retried."))
            return

        wait = options.get("wait")
        if wait and not get_transfer_queue().wait_until_idle(timeout=wait):
            self.stdout.write(self.style.WARNING("Transfer queue still busy after waiting."))

        self.stdout.write(self.style.SUCCESS(f"Queued {queued} of {total} payouts."))
