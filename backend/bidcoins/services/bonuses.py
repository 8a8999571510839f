"""One-off BidCoin grants."""
from __future__ import annotations

import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction

from bidcoins.models import BidcoinTransaction
from bidcoins.services.ledger import LedgerError, TransactionType, adjust_balance

logger = logging.getLogger(__name__)

User = get_user_model()


class BonusAlreadyClaimed(LedgerError):
    """Raised when a one-time bonus has already been granted to the user."""


def claim_signup_bonus(user_id) -> int:
    """Grant the signup bonus exactly once per user and return the new balance."""

    amount = int(getattr(settings, "BIDCOIN_SIGNUP_BONUS", 0))
    if amount <= 0:
        raise ValueError("Signup bonus is disabled.")

    with transaction.atomic():
        # Serialize concurrent claims for the same user on the user row.
        User.objects.select_for_update().filter(pk=user_id).first()
        already_claimed = BidcoinTransaction.objects.filter(
            user_id=user_id, type=TransactionType.SIGNUP_BONUS
        ).exists()
        if already_claimed:
            raise BonusAlreadyClaimed("Signup bonus already claimed.")

        balance = adjust_balance(
            user_id,
            amount,
            TransactionType.SIGNUP_BONUS,
            reference_table="user",
            reference_id=user_id,
            metadata={"reason": "signup"},
        )

    logger.info("Signup bonus of %s coins granted to user %s", amount, user_id)
    return balance
