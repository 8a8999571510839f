"""
Auction permission classes.

Completion endpoints are called by the seller, by staff, or by the scheduler
presenting the shared cron token in the ``X-Cron-Token`` header.
"""
import hmac

from django.conf import settings
from rest_framework import permissions

CRON_TOKEN_HEADER = "HTTP_X_CRON_TOKEN"


def has_valid_cron_token(request) -> bool:
    """Check the scheduler token against ``AUCTION_CRON_TOKEN``"""
    expected = getattr(settings, "AUCTION_CRON_TOKEN", "") or ""
    supplied = request.META.get(CRON_TOKEN_HEADER, "") or ""
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode(), supplied.encode())


def is_staff(request) -> bool:
    user = request.user
    return bool(user and user.is_authenticated and user.is_staff)


class IsStaffOrCronToken(permissions.BasePermission):
    """Staff users or the scheduler."""

    def has_permission(self, request, view):
        return is_staff(request) or has_valid_cron_token(request)


class CanCompleteAuction(permissions.BasePermission):
    """
    Permission for completing a single auction.

    Authenticated users reach the object check, where only the seller or staff
    pass. The scheduler token bypasses both checks.
    """

    def has_permission(self, request, view):
        if has_valid_cron_token(request):
            return True
        return bool(request.user and request.user.is_authenticated)

    def has_object_permission(self, request, view, obj):
        if has_valid_cron_token(request) or is_staff(request):
            return True
        return obj.seller_id == request.user.pk


class IsStaffUser(permissions.BasePermission):
    def has_permission(self, request, view):
        return is_staff(request)
