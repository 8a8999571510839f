"""In-process FIFO queue that retries seller payout transfers.

Jobs are processed one at a time by a single daemon worker thread. The head of
the queue stays in place while it is retried, so a failing payout delays every
job behind it until it either succeeds or runs out of attempts.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

from django.conf import settings
from django.db import connections

from billing.observability.logging import log_billing_event
from billing.observability.metrics import TRANSFER_ATTEMPT_COUNT, TRANSFER_QUEUE_DEPTH

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_MS = 5000
DEFAULT_MAX_RETRIES = 3

Callback = Callable[..., None]


@dataclass
class TransferJob:
    auction_id: str
    seller_id: Any
    seller_account_id: str
    amount: Decimal
    retries: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    prior_attempts: int = 0
    last_error: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @property
    def exhausted(self) -> bool:
        return self.retries >= self.max_retries

    @property
    def attempt_number(self) -> int:
        return self.prior_attempts + self.retries + 1


def _default_transfer(job: TransferJob) -> Dict[str, Any]:
    from billing.services.stripe_payments import create_transfer

    return create_transfer(
        amount=job.amount,
        destination=job.seller_account_id,
        auction_id=job.auction_id,
        seller_id=job.seller_id,
        attempt=job.attempt_number,
    )


class TransferQueue:
    def __init__(
        self,
        *,
        transfer_func: Optional[Callable[[TransferJob], Dict[str, Any]]] = None,
        retry_delay_ms: Optional[int] = None,
        run_inline: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._transfer_func = transfer_func or _default_transfer
        self._retry_delay_ms = None if retry_delay_ms is None else max(0, int(retry_delay_ms))
        self._run_inline = run_inline
        self._sleep = sleep
        self._jobs: Deque[TransferJob] = deque()
        self._processing = False
        self._condition = threading.Condition()
        self._worker: Optional[threading.Thread] = None
        self._callbacks: Dict[str, List[Callback]] = {"success": [], "failure": [], "exhausted": []}

    # Configuration

    @property
    def retry_delay_ms(self) -> int:
        if self._retry_delay_ms is not None:
            return self._retry_delay_ms
        return max(0, int(getattr(settings, "TRANSFER_QUEUE_RETRY_DELAY_MS", DEFAULT_RETRY_DELAY_MS)))

    def set_retry_delay(self, ms: int) -> None:
        self._retry_delay_ms = max(0, int(ms))

    @property
    def run_inline(self) -> bool:
        if self._run_inline is not None:
            return self._run_inline
        return bool(getattr(settings, "TRANSFER_QUEUE_RUN_INLINE", False))

    def register_callbacks(
        self,
        *,
        on_success: Optional[Callback] = None,
        on_failure: Optional[Callback] = None,
        on_exhausted: Optional[Callback] = None,
    ) -> None:
        for name, callback in (("success", on_success), ("failure", on_failure), ("exhausted", on_exhausted)):
            if callback is not None and callback not in self._callbacks[name]:
                self._callbacks[name].append(callback)

    # Introspection

    def size(self) -> int:
        with self._condition:
            return len(self._jobs)

    def is_processing(self) -> bool:
        with self._condition:
            return self._processing

    def jobs(self) -> List[TransferJob]:
        with self._condition:
            return list(self._jobs)

    # Mutation

    def enqueue(
        self,
        *,
        auction_id,
        seller_id,
        seller_account_id: str,
        amount,
        max_retries: Optional[int] = None,
        prior_attempts: int = 0,
    ) -> TransferJob:
        if max_retries is None:
            max_retries = int(getattr(settings, "TRANSFER_QUEUE_MAX_RETRIES", DEFAULT_MAX_RETRIES))

        with self._condition:
            for queued in self._jobs:
                if queued.auction_id == str(auction_id):
                    logger.info("Transfer for auction %s is already queued", auction_id)
                    return queued

            job = TransferJob(
                auction_id=str(auction_id),
                seller_id=seller_id,
                seller_account_id=seller_account_id,
                amount=Decimal(str(amount)),
                max_retries=max(1, int(max_retries)),
                prior_attempts=max(0, int(prior_attempts)),
            )
            self._jobs.append(job)
            TRANSFER_QUEUE_DEPTH.set(len(self._jobs))
            should_start = not self._processing
            if should_start:
                self._processing = True

        logger.info("Added transfer job to queue: auction=%s amount=%s", job.auction_id, job.amount)
        if should_start:
            self._start()
        return job

    def clear(self) -> None:
        with self._condition:
            self._jobs.clear()
            TRANSFER_QUEUE_DEPTH.set(0)
            self._condition.notify_all()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: not self._processing and not self._jobs, timeout=timeout)

    def run_until_empty(self) -> None:
        """Drain the queue in the calling thread unless a worker is already active."""

        with self._condition:
            if self._processing:
                return
            self._processing = True
        self._process()

    # Worker

    def _start(self) -> None:
        if self.run_inline:
            self._process()
            return
        self._worker = threading.Thread(target=self._run_worker, name="transfer-queue", daemon=True)
        self._worker.start()

    def _run_worker(self) -> None:
        try:
            self._process()
        finally:
            connections.close_all()

    def _process(self) -> None:
        logger.info("Starting transfer queue processing (%s jobs)", self.size())
        try:
            while True:
                with self._condition:
                    if not self._jobs:
                        self._processing = False
                        self._condition.notify_all()
                        break
                    job = self._jobs[0]
                self._attempt(job)
        except BaseException:
            with self._condition:
                self._processing = False
                self._condition.notify_all()
            raise
        logger.info("Transfer queue processing complete")

    def _attempt(self, job: TransferJob) -> None:
        logger.info("Processing transfer: %s -> %s (auction %s)", job.amount, job.seller_account_id, job.auction_id)
        try:
            transfer = self._transfer_func(job)
        except Exception as exc:
            self._handle_failure(job, exc)
            return

        self._remove(job)
        TRANSFER_ATTEMPT_COUNT.labels(outcome="success").inc()
        log_billing_event(
            message="Seller transfer succeeded",
            auction_id=job.auction_id,
            user_id=job.seller_id,
            extra={"transfer_id": transfer.get("id"), "amount": str(job.amount), "attempt": job.retries + 1},
        )
        self._notify("success", job, transfer)

    def _handle_failure(self, job: TransferJob, exc: Exception) -> None:
        job.retries += 1
        job.last_error = str(exc)
        TRANSFER_ATTEMPT_COUNT.labels(outcome="failure").inc()
        logger.error(
            "Transfer failed (attempt %s/%s) for auction %s: %s [code=%s]",
            job.retries,
            job.max_retries,
            job.auction_id,
            exc,
            getattr(exc, "code", None),
        )
        self._notify("failure", job, exc)

        if job.exhausted:
            self._remove(job)
            TRANSFER_ATTEMPT_COUNT.labels(outcome="exhausted").inc()
            log_billing_event(
                message="Max transfer retries reached; manual intervention needed",
                auction_id=job.auction_id,
                user_id=job.seller_id,
                extra={"amount": str(job.amount), "error": job.last_error},
                level=logging.ERROR,
            )
            self._notify("exhausted", job, exc)
            return

        delay = self.retry_delay_ms
        if delay:
            self._sleep(delay / 1000)

    def _remove(self, job: TransferJob) -> None:
        with self._condition:
            if self._jobs and self._jobs[0] is job:
                self._jobs.popleft()
            TRANSFER_QUEUE_DEPTH.set(len(self._jobs))

    def _notify(self, name: str, job: TransferJob, payload) -> None:
        for callback in list(self._callbacks[name]):
            try:
                callback(job, payload)
            except Exception:
                logger.exception("Transfer queue %s callback failed for auction %s", name, job.auction_id)


_queue: Optional[TransferQueue] = None
_queue_lock = threading.Lock()


def get_transfer_queue() -> TransferQueue:
    global _queue
    with _queue_lock:
        if _queue is None:
            _queue = TransferQueue()
        return _queue
