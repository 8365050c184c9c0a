"""
Admin configuration for inventory models.
"""

from django.contrib import admin

from .models import Product, Purchase, PurchaseItem


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    """Admin interface for Product. Stock is read-only."""

    list_display = [
        "name",
        "sku",
        "tenant",
        "base_unit",
        "selling_price",
        "last_purchase_cost",
        "stock",
        "min_stock_alert",
        "is_active",
    ]
    list_filter = ["is_active", "tenant", "created_at"]
    search_fields = ["name", "sku"]
    readonly_fields = ["id", "stock", "last_purchase_cost", "created_at", "updated_at"]
    fieldsets = (
        (
            "Basic Information",
            {
                "fields": ("id", "tenant", "name", "sku", "is_active"),
            },
        ),
        (
            "Units & Pricing",
            {
                "fields": ("base_unit", "packaging_levels", "default_prices", "selling_price"),
            },
        ),
        (
            "Stock",
            {
                "fields": ("stock", "min_stock_alert", "last_purchase_cost"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
                "classes": ("collapse",),
            },
        ),
    )


class PurchaseItemInline(admin.TabularInline):
    """Inline admin for purchase lines."""

    model = PurchaseItem
    extra = 0
    can_delete = False
    fields = [
        "product_name",
        "unit",
        "quantity",
        "cost_price",
        "total_cost",
        "converted_base_quantity",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    """Admin interface for Purchase."""

    list_display = ["id", "tenant", "supplier_name", "invoice_number", "total_amount", "created_at"]
    list_filter = ["tenant", "created_at"]
    search_fields = ["supplier_name", "invoice_number"]
    readonly_fields = ["id", "tenant", "total_amount", "created_by", "created_at"]
    inlines = [PurchaseItemInline]

    def has_add_permission(self, request):
        return False
