from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    User admin configuration
    """
    list_display = (
        'username', 'email', 'is_active', 'subscription_plan',
        'stripe_account_id', 'referral_code', 'created_at'
    )
    list_filter = (
        'is_active', 'is_staff', 'is_superuser', 'subscription_plan',
        'created_at'
    )
    search_fields = (
        'username', 'email', 'first_name', 'last_name',
        'referral_code', 'stripe_customer_id', 'stripe_account_id'
    )
    ordering = ('-created_at',)
    readonly_fields = ('created_at', 'updated_at', 'referral_last_attempt_at')
    raw_id_fields = ('referred_by',)

    # Extend the default fieldsets to include marketplace fields
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Payments', {
            'fields': ('stripe_customer_id', 'stripe_account_id')
        }),
        ('Subscription', {
            'fields': ('subscription_plan', 'subscription_expires_at')
        }),
        ('Referrals', {
            'fields': ('referral_code', 'referred_by', 'referral_last_attempt_at')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Contact', {
            'fields': ('email',)
        }),
    )
