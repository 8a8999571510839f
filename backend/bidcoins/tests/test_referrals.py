from datetime import timedelta

import pytest
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import override_settings
from django.utils import timezone

from bidcoins.models import BidcoinTransaction
from bidcoins.services.bonuses import BonusAlreadyClaimed, claim_signup_bonus
from bidcoins.services.ledger import get_balance
from bidcoins.services.referrals import ReferralError, claim_referral, referral_summary


@pytest.fixture
def referrer(db):
    User = get_user_model()
    return User.objects.create_user(username="referrer", email="referrer@example.com", password="pw")


@pytest.fixture
def newcomer(db):
    User = get_user_model()
    return User.objects.create_user(username="newcomer", email="newcomer@example.com", password="pw")


@pytest.mark.django_db
def test_users_get_unique_referral_codes(referrer, newcomer):
    assert referrer.referral_code
    assert newcomer.referral_code
    assert referrer.referral_code != newcomer.referral_code


@pytest.mark.django_db
@override_settings(BIDCOIN_REFERRAL_BONUS=200)
def test_claim_rewards_both_parties(referrer, newcomer):
    result = claim_referral(newcomer.pk, f"  {referrer.referral_code.upper()} ")

    newcomer.refresh_from_db()
    assert newcomer.referred_by_id == referrer.pk
    assert result.referrer_id == referrer.pk
    assert get_balance(newcomer.pk) == 200
    assert get_balance(referrer.pk) == 200
    directions = set(
        BidcoinTransaction.objects.filter(type="referral").values_list("metadata__direction", flat=True)
    )
    assert directions == {"referrer", "referee"}
    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == ["referrer@example.com"]


@pytest.mark.django_db
def test_claim_requires_code(newcomer):
    with pytest.raises(ReferralError, match="required"):
        claim_referral(newcomer.pk, "   ")

    newcomer.refresh_from_db()
    assert newcomer.referral_last_attempt_at is None


@pytest.mark.django_db
def test_invalid_code_starts_cooldown(newcomer):
    with pytest.raises(ReferralError, match="Invalid"):
        claim_referral(newcomer.pk, "nope0000")

    newcomer.refresh_from_db()
    assert newcomer.referral_last_attempt_at is not None

    with pytest.raises(ReferralError) as exc:
        claim_referral(newcomer.pk, "nope0000")
    assert exc.value.retry_after is not None
    assert 0 < exc.value.retry_after <= 60


@pytest.mark.django_db
def test_own_code_is_rejected(newcomer):
    with pytest.raises(ReferralError, match="own"):
        claim_referral(newcomer.pk, newcomer.referral_code)


@pytest.mark.django_db
def test_second_claim_is_rejected_after_cooldown(referrer, newcomer):
    claim_referral(newcomer.pk, referrer.referral_code)
    get_user_model().objects.filter(pk=newcomer.pk).update(
        referral_last_attempt_at=timezone.now() - timedelta(minutes=5)
    )

    with pytest.raises(ReferralError, match="already"):
        claim_referral(newcomer.pk, referrer.referral_code)

    assert BidcoinTransaction.objects.filter(type="referral").count() == 2


@pytest.mark.django_db
@override_settings(BIDCOIN_REFERRAL_BONUS=200)
def test_referral_summary_reports_earnings(referrer, newcomer):
    claim_referral(newcomer.pk, referrer.referral_code)

    summary = referral_summary(referrer)
    assert summary["referral_code"] == referrer.referral_code
    assert summary["total_coins_earned"] == 200
    assert [item["username"] for item in summary["referrals"]] == ["newcomer"]


@pytest.mark.django_db
@override_settings(BIDCOIN_SIGNUP_BONUS=500)
def test_signup_bonus_is_granted_once(newcomer):
    assert claim_signup_bonus(newcomer.pk) == 500

    with pytest.raises(BonusAlreadyClaimed):
        claim_signup_bonus(newcomer.pk)

    assert get_balance(newcomer.pk) == 500
