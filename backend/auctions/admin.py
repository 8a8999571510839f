from django.contrib import admin

from .models import Auction, Bid, SalePayment


class BidInline(admin.TabularInline):
    model = Bid
    extra = 0
    can_delete = False
    fields = ("bidder", "amount", "status", "payment_method", "authorization_status", "bidcoin_hold", "holds_released")
    readonly_fields = fields
    ordering = ("-amount",)


@admin.register(Auction)
class AuctionAdmin(admin.ModelAdmin):
    list_display = ("title", "seller", "status", "starting_price", "current_price", "end_time", "ended_at")
    list_filter = ("status", "end_time")
    search_fields = ("title", "seller__username", "seller__email")
    readonly_fields = ("id", "current_price", "ended_at", "created_at", "updated_at")
    list_select_related = ("seller",)
    inlines = [BidInline]


@admin.register(Bid)
class BidAdmin(admin.ModelAdmin):
    list_display = ("id", "auction", "bidder", "amount", "status", "payment_method", "authorization_status")
    list_filter = ("status", "payment_method", "authorization_status")
    search_fields = ("id", "auction__title", "bidder__username", "stripe_payment_intent_id")
    list_select_related = ("auction", "bidder")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(SalePayment)
class SalePaymentAdmin(admin.ModelAdmin):
    """Sales and their payout state; payouts are retried with requeue_seller_payouts."""

    list_display = (
        "auction",
        "buyer",
        "seller",
        "amount",
        "platform_fee",
        "seller_amount",
        "payment_method",
        "transfer_status",
        "transfer_attempts",
        "status",
    )
    list_filter = ("payment_method", "transfer_status", "status")
    search_fields = ("auction__title", "buyer__username", "seller__username", "stripe_transfer_id")
    readonly_fields = [field.name for field in SalePayment._meta.fields]
    list_select_related = ("auction", "buyer", "seller")

    def has_add_permission(self, request):
        return False
