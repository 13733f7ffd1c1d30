from django.contrib import admin

from voicelink.models import CallRate, CallRecord, Subscriber, Transaction


class ReadOnlyAdminMixin:
    """
    Keeps ledger-backed models browsable but immutable from the admin:
    balances and call outcomes only change through the billing services.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Subscriber)
class SubscriberAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "uuid", "phone", "balance", "is_verified", "created_at")
    search_fields = ("uuid", "phone")
    list_filter = ("is_verified",)


@admin.register(CallRate)
class CallRateAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "prefix",
        "country_code",
        "description",
        "rate_per_minute",
        "is_active",
        "updated_at",
    )
    list_filter = ("is_active", "country_code")
    search_fields = ("prefix", "description")
    ordering = ("prefix", "id")


@admin.register(CallRecord)
class CallRecordAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "subscriber",
        "kind",
        "destination_number",
        "status",
        "provider_status",
        "duration_seconds",
        "cost",
        "created_at",
    )
    list_filter = ("kind", "status")
    search_fields = ("subscriber__phone", "destination_number", "provider_call_sid")


@admin.register(Transaction)
class TransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "subscriber",
        "transaction_type",
        "amount",
        "payment_method",
        "call_record",
        "created_at",
    )
    list_filter = ("transaction_type", "payment_method")
    search_fields = ("subscriber__uuid", "subscriber__phone", "reference_id")
