from django.contrib import admin

from .models import BidcoinTransaction, UserBidcoinBalance


@admin.register(UserBidcoinBalance)
class UserBidcoinBalanceAdmin(admin.ModelAdmin):
    """Read-only view of wallet balances; changes go through the ledger."""

    list_display = ("user", "balance", "updated_at")
    search_fields = ("user__username", "user__email")
    readonly_fields = ("user", "balance", "updated_at")
    list_select_related = ("user",)
    ordering = ("-updated_at",)

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(BidcoinTransaction)
class BidcoinTransactionAdmin(admin.ModelAdmin):
    """Append-only ledger rows."""

    list_display = ("id", "user", "type", "change", "balance_after", "reference_table", "reference_id", "created_at")
    list_filter = ("type", "created_at")
    search_fields = ("id", "user__username", "user__email", "reference_id")
    readonly_fields = (
        "id",
        "user",
        "type",
        "change",
        "balance_after",
        "reference_id",
        "reference_table",
        "metadata",
        "created_at",
    )
    list_select_related = ("user",)
    ordering = ("-created_at",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
