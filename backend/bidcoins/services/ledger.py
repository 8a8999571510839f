"""BidCoin ledger helpers built on the atomic adjustment primitive."""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from bidcoins.models import BidcoinTransaction, UserBidcoinBalance
from bidcoins.services.ledger_store import (
    Adjustment,
    BidcoinAccountNotFound,
    InsufficientBidcoinBalance,
    LedgerError,
    LedgerUnavailable,
    get_ledger_store,
)
from billing.observability.metrics import LEDGER_ADJUSTMENT_COUNT

logger = logging.getLogger(__name__)

COINS_PER_DOLLAR = 100
DEFAULT_HISTORY_LIMIT = 50

TransactionType = BidcoinTransaction.TransactionType

__all__ = [
    "BidcoinAccountNotFound",
    "InsufficientBidcoinBalance",
    "LedgerError",
    "LedgerUnavailable",
    "TransactionType",
    "adjust_balance",
    "award_bidcoins",
    "coins_to_dollars",
    "dollars_to_coins",
    "get_balance",
    "list_transactions",
    "spend_bidcoins",
]


def adjust_balance(
    user_id,
    change: int,
    transaction_type: str,
    *,
    reference_id: Optional[Any] = None,
    reference_table: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    allow_negative: bool = True,
) -> int:
    """Apply a signed change to a user's balance and append the ledger row.

    Returns the balance after the change. The balance row is created with zero
    when it does not exist yet.
    """

    if isinstance(change, bool) or not isinstance(change, int) or change == 0:
        raise ValueError("Change must be a non-zero integer.")
    if transaction_type not in TransactionType.values:
        raise ValueError(f"Unknown BidCoin transaction type: {transaction_type!r}")

    adjustment = Adjustment(
        user_id=user_id,
        change=change,
        transaction_type=transaction_type,
        reference_id=reference_id,
        reference_table=reference_table,
        metadata=metadata,
        allow_negative=allow_negative,
    )
    try:
        new_balance = get_ledger_store().adjust(adjustment)
    except LedgerError as exc:
        LEDGER_ADJUSTMENT_COUNT.labels(type=transaction_type, outcome=type(exc).__name__).inc()
        raise
    LEDGER_ADJUSTMENT_COUNT.labels(type=transaction_type, outcome="applied").inc()
    logger.info(
        "BidCoin balance adjusted user=%s change=%s type=%s balance=%s",
        user_id,
        change,
        transaction_type,
        new_balance,
    )
    return new_balance


def award_bidcoins(
    user_id,
    amount: int,
    transaction_type: str,
    *,
    reference_id: Optional[Any] = None,
    reference_table: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Credit coins to a user; non-positive amounts leave the ledger untouched."""

    if amount <= 0:
        return get_balance(user_id)
    return adjust_balance(
        user_id,
        int(amount),
        transaction_type,
        reference_id=reference_id,
        reference_table=reference_table,
        metadata=metadata,
    )


def spend_bidcoins(
    user_id,
    amount: int,
    transaction_type: str,
    *,
    reference_id: Optional[Any] = None,
    reference_table: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    """Debit coins from a user, refusing to take the balance below zero."""

    if amount <= 0:
        raise ValueError("Amount must be a positive integer for spend operations.")
    return adjust_balance(
        user_id,
        -int(amount),
        transaction_type,
        reference_id=reference_id,
        reference_table=reference_table,
        metadata=metadata,
        allow_negative=False,
    )


def get_balance(user_id) -> int:
    balance = (
        UserBidcoinBalance.objects.filter(user_id=user_id)
        .values_list("balance", flat=True)
        .first()
    )
    return balance or 0


def list_transactions(user_id, limit: int = DEFAULT_HISTORY_LIMIT) -> List[BidcoinTransaction]:
    return list(
        BidcoinTransaction.objects.filter(user_id=user_id).order_by("-created_at")[:limit]
    )


def coins_to_dollars(coins: int) -> Decimal:
    return (Decimal(coins) / COINS_PER_DOLLAR).quantize(Decimal("0.01"))


def dollars_to_coins(amount) -> int:
    """Convert a dollar amount to whole coins, rounding half up."""

    coins = (Decimal(str(amount)) * COINS_PER_DOLLAR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(coins)
