from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import Customer, LedgerEntry


class LedgerEntryInline(admin.TabularInline):
    """Inline for a customer's ledger history."""

    model = LedgerEntry
    extra = 0
    can_delete = False
    fields = ["date", "type", "amount", "balance_after", "payment_mode", "remark", "sale"]
    readonly_fields = fields
    ordering = ["-date"]

    def has_add_permission(self, request, obj=None):
        return False  # Entries are written by the billing services only


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    """Admin interface for Customer model."""

    list_display = ["name", "shop_name", "tenant", "phone", "due_amount", "sales_link", "is_active"]

    list_filter = ["is_active", "tenant"]

    search_fields = ["name", "shop_name", "phone", "tenant__company_name"]

    readonly_fields = ["id", "due_amount", "created_at", "updated_at"]

    fieldsets = (
        (None, {"fields": ("id", "tenant", "name", "shop_name", "is_active")}),
        ("Contact", {"fields": ("phone", "address")}),
        ("Balance", {"fields": ("due_amount",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at"), "classes": ("collapse",)}),
    )

    inlines = [LedgerEntryInline]

    def sales_link(self, obj):
        """Link to this customer's sales."""
        count = obj.sales.count()
        if count > 0:
            url = reverse("admin:sales_sale_changelist") + f"?customer__id__exact={obj.id}"
            return format_html('<a href="{}">{} sales</a>', url, count)
        return "0 sales"

    sales_link.short_description = "Sales"


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """Read-only view of the ledger, including expenses."""

    list_display = ["date", "tenant", "customer", "type", "amount", "balance_after", "source"]

    list_filter = ["type", "source", "payment_mode", "date"]

    search_fields = ["customer__name", "remark", "note", "category"]

    date_hierarchy = "date"

    readonly_fields = [
        "id",
        "tenant",
        "customer",
        "sale",
        "type",
        "amount",
        "balance_after",
        "payment_mode",
        "source",
        "remark",
        "note",
        "category",
        "received_by",
        "date",
        "created_at",
    ]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
