"""Storage backends performing the atomic BidCoin read-modify-append operation.

Both stores change the balance row and append the matching ledger row in a
single database transaction, so concurrent adjustments for the same user are
serialized by the row lock and ``balance_after`` values form a total order.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, ProgrammingError, connection, transaction
from django.utils.module_loading import import_string

from bidcoins.models import BidcoinTransaction, UserBidcoinBalance

logger = logging.getLogger(__name__)

ADJUST_FUNCTION = "bidcoin_adjust_balance_v2"
LEGACY_ADJUST_FUNCTION = "bidcoin_adjust_balance"
UNDEFINED_FUNCTION_SQLSTATE = "42883"
INSUFFICIENT_BALANCE_MARKER = "Insufficient BidCoins"

User = get_user_model()


class LedgerError(Exception):
    """Base exception for BidCoin ledger operations."""


class LedgerUnavailable(LedgerError):
    """Raised when the atomic adjustment cannot be executed by the store."""


class BidcoinAccountNotFound(LedgerError):
    """Raised when the user owning the wallet does not exist."""


class InsufficientBidcoinBalance(LedgerError):
    """Raised when a debit would take the balance below zero."""


@dataclass(frozen=True)
class Adjustment:
    user_id: Any
    change: int
    transaction_type: str
    reference_id: Optional[str] = None
    reference_table: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    allow_negative: bool = True


class OrmLedgerStore:
    """Applies adjustments with ``select_for_update`` inside ``transaction.atomic``."""

    def adjust(self, adjustment: Adjustment) -> int:
        if not User.objects.filter(pk=adjustment.user_id).exists():
            raise BidcoinAccountNotFound(f"User {adjustment.user_id} does not exist.")

        try:
            with transaction.atomic():
                UserBidcoinBalance.objects.get_or_create(user_id=adjustment.user_id)
                wallet = UserBidcoinBalance.objects.select_for_update().get(user_id=adjustment.user_id)

                new_balance = wallet.balance + adjustment.change
                if not adjustment.allow_negative and new_balance < 0:
                    raise InsufficientBidcoinBalance(
                        f"{INSUFFICIENT_BALANCE_MARKER}: balance {wallet.balance}, requested {-adjustment.change}."
                    )

                wallet.balance = new_balance
                wallet.save(update_fields=["balance", "updated_at"])

                BidcoinTransaction.objects.create(
                    user_id=adjustment.user_id,
                    change=adjustment.change,
                    balance_after=new_balance,
                    type=adjustment.transaction_type,
                    reference_id=_as_reference(adjustment.reference_id),
                    reference_table=adjustment.reference_table or None,
                    metadata=adjustment.metadata or {},
                )
        except DatabaseError as exc:
            logger.error("BidCoin adjustment failed for user %s: %s", adjustment.user_id, exc)
            raise LedgerUnavailable("BidCoin ledger is unavailable.") from exc

        return new_balance


class DatabaseFunctionLedgerStore:
    """Delegates the adjustment to a database-side function.

    The versioned entry point is tried first; the legacy one is used only when
    the database reports that the versioned function does not exist.
    """

    entry_point = ADJUST_FUNCTION
    legacy_entry_point = LEGACY_ADJUST_FUNCTION

    def adjust(self, adjustment: Adjustment) -> int:
        try:
            return self._call(self.entry_point, adjustment, include_guard=True)
        except ProgrammingError as exc:
            if not _is_undefined_function(exc):
                raise LedgerUnavailable("BidCoin ledger is unavailable.") from exc
            logger.warning(
                "%s is not installed; falling back to %s for user %s",
                self.entry_point,
                self.legacy_entry_point,
                adjustment.user_id,
            )

        if not adjustment.allow_negative:
            logger.warning(
                "%s cannot enforce non-negative balances; relying on caller pre-check for user %s",
                self.legacy_entry_point,
                adjustment.user_id,
            )

        try:
            return self._call(self.legacy_entry_point, adjustment, include_guard=False)
        except ProgrammingError as exc:
            raise LedgerUnavailable("BidCoin ledger is unavailable.") from exc

    def _call(self, function_name: str, adjustment: Adjustment, *, include_guard: bool) -> int:
        params = [
            adjustment.user_id,
            adjustment.change,
            adjustment.transaction_type,
            _as_reference(adjustment.reference_id),
            adjustment.reference_table or None,
            json.dumps(adjustment.metadata or {}),
        ]
        placeholders = "%s, %s, %s, %s, %s, %s::jsonb"
        if include_guard:
            params.append(adjustment.allow_negative)
            placeholders = f"{placeholders}, %s"

        try:
            with transaction.atomic(), connection.cursor() as cursor:
                cursor.execute(f"SELECT new_balance FROM {function_name}({placeholders})", params)
                row = cursor.fetchone()
        except ProgrammingError:
            raise
        except DatabaseError as exc:
            if INSUFFICIENT_BALANCE_MARKER in str(exc):
                raise InsufficientBidcoinBalance(str(exc)) from exc
            logger.error("%s failed for user %s: %s", function_name, adjustment.user_id, exc)
            raise LedgerUnavailable("BidCoin ledger is unavailable.") from exc

        return int(row[0]) if row else 0


_STORES = {
    "orm": "bidcoins.services.ledger_store.OrmLedgerStore",
    "database_function": "bidcoins.services.ledger_store.DatabaseFunctionLedgerStore",
}


def get_ledger_store():
    backend = getattr(settings, "BIDCOIN_LEDGER_BACKEND", "orm")
    path = _STORES.get(backend, backend)
    return import_string(path)()


def _is_undefined_function(exc: ProgrammingError) -> bool:
    cause = exc.__cause__
    code = getattr(cause, "pgcode", None) or getattr(cause, "sqlstate", None)
    if code == UNDEFINED_FUNCTION_SQLSTATE:
        return True
    return "does not exist" in str(exc) and ADJUST_FUNCTION in str(exc)


def _as_reference(value) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)
