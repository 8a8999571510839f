"""Referral code claims that reward both the referrer and the new user."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from bidcoins.models import BidcoinTransaction
from bidcoins.services.ledger import LedgerError, TransactionType, adjust_balance

logger = logging.getLogger(__name__)

User = get_user_model()

DEFAULT_COOLDOWN_SECONDS = 60
DEFAULT_REFERRAL_BONUS = 200


class ReferralError(Exception):
    """Raised when a referral claim is rejected; the message is user-facing."""

    def __init__(self, message: str, *, retry_after: int | None = None):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


@dataclass(frozen=True)
class ReferralClaimResult:
    referrer_id: int
    bonus: int


def normalize_code(code) -> str:
    return (code or "").strip().lower()


def claim_referral(user_id, code) -> ReferralClaimResult:
    """Attach ``user_id`` to the owner of ``code`` and reward both of them."""

    normalized = normalize_code(code)
    if not normalized:
        raise ReferralError("Referral code is required.")

    cooldown = timedelta(
        seconds=int(getattr(settings, "BIDCOIN_REFERRAL_COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS))
    )
    bonus = int(getattr(settings, "BIDCOIN_REFERRAL_BONUS", DEFAULT_REFERRAL_BONUS))

    # The attempt timestamp is committed on its own so a rejected claim still
    # starts the cooldown.
    with transaction.atomic():
        try:
            user = User.objects.select_for_update().get(pk=user_id)
        except User.DoesNotExist as exc:
            raise ReferralError("User not found.") from exc

        now = timezone.now()
        last_attempt = user.referral_last_attempt_at
        if last_attempt is not None and now - last_attempt < cooldown:
            seconds_left = math.ceil((cooldown - (now - last_attempt)).total_seconds())
            raise ReferralError(
                f"Please wait {seconds_left}s before trying another referral code.",
                retry_after=seconds_left,
            )

        user.referral_last_attempt_at = now
        user.save(update_fields=["referral_last_attempt_at"])

    with transaction.atomic():
        user = User.objects.select_for_update().get(pk=user_id)
        if user.referred_by_id is not None:
            raise ReferralError("Referral already claimed.")

        referrer = User.objects.filter(referral_code=normalized).first()
        if referrer is None:
            raise ReferralError("Invalid referral code.")
        if referrer.pk == user.pk:
            raise ReferralError("Cannot use your own referral code.")

        user.referred_by = referrer
        user.save(update_fields=["referred_by"])

    try:
        _reward(referrer, user, normalized, bonus)
    except LedgerError:
        logger.exception("Referral bonus failed for user=%s referrer=%s", user.pk, referrer.pk)
    else:
        _notify_referrer(referrer, user, bonus)

    logger.info("Referral claimed: user=%s referrer=%s bonus=%s", user.pk, referrer.pk, bonus)
    return ReferralClaimResult(referrer_id=referrer.pk, bonus=bonus)


def referral_summary(user) -> Dict[str, Any]:
    """Referral code, referred users and coins earned as a referrer."""

    referrals: List[Dict[str, Any]] = [
        {
            "id": referred.pk,
            "username": referred.username,
            "email": referred.email,
            "joined_at": referred.created_at,
        }
        for referred in user.referrals.order_by("-created_at")
    ]
    earned = (
        BidcoinTransaction.objects.filter(
            user=user,
            type=TransactionType.REFERRAL,
            metadata__direction="referrer",
        ).aggregate(total=Sum("change"))["total"]
        or 0
    )
    return {
        "referral_code": user.referral_code,
        "referred_by": user.referred_by_id,
        "referrals": referrals,
        "total_coins_earned": earned,
    }


def _reward(referrer, user, code: str, bonus: int) -> None:
    if bonus <= 0:
        return
    adjust_balance(
        referrer.pk,
        bonus,
        TransactionType.REFERRAL,
        reference_id=user.pk,
        reference_table="user",
        metadata={"direction": "referrer", "code": code},
    )
    adjust_balance(
        user.pk,
        bonus,
        TransactionType.REFERRAL,
        reference_id=referrer.pk,
        reference_table="user",
        metadata={"direction": "referee", "code": code},
    )


def _notify_referrer(referrer, user, bonus: int) -> None:
    if not referrer.email:
        return
    referee_name = user.get_full_name() or user.email or "A new member"
    try:
        send_mail(
            subject="Your referral bonus has been credited",
            message=(
                f"{referee_name} used your referral code {referrer.referral_code}. "
                f"{bonus} BidCoins have been added to your wallet."
            ),
            from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
            recipient_list=[referrer.email],
            fail_silently=False,
        )
    except Exception:
        logger.exception("Failed to send referral email to user %s", referrer.pk)
