"""
Django admin configuration for sales models.

Balances only change through ``SaleService``, so the admin is read-only for
money fields and history records.
"""

from django.contrib import admin

from .models import Adjustment, InvoiceSequence, Payment, Return, ReturnItem, Sale, SaleItem


class ReadOnlyAdminMixin:
    """Records are created by the billing services, never from the admin."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class SaleItemInline(ReadOnlyAdminMixin, admin.TabularInline):
    """Inline admin for SaleItem model."""

    model = SaleItem
    extra = 0
    can_delete = False
    fields = [
        "product_name",
        "unit",
        "quantity",
        "unit_price",
        "line_total",
        "converted_base_quantity",
        "returned_qty",
    ]
    readonly_fields = fields


class PaymentInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = ["amount", "method", "note", "received_by", "created_at"]
    readonly_fields = fields


@admin.register(Sale)
class SaleAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Admin interface for Sale model."""

    list_display = [
        "invoice_number",
        "tenant",
        "customer_name",
        "final_amount",
        "paid_amount",
        "pending_amount",
        "status",
        "due_date",
        "created_at",
    ]
    list_filter = ["status", "created_at", "due_date"]
    search_fields = ["invoice_number", "customer_name", "shop_name", "phone"]
    readonly_fields = [
        "id",
        "tenant",
        "invoice_number",
        "customer",
        "total_amount",
        "discount",
        "final_amount",
        "paid_amount",
        "pending_amount",
        "adjustments",
        "returns_amount",
        "status",
        "idempotency_key",
        "cancelled_at",
        "created_by",
        "created_at",
        "updated_at",
    ]
    inlines = [SaleItemInline, PaymentInline]
    fieldsets = [
        (
            "Basic Information",
            {
                "fields": ["id", "tenant", "invoice_number", "status", "idempotency_key"],
            },
        ),
        (
            "Customer",
            {
                "fields": [
                    "customer",
                    "customer_name",
                    "shop_name",
                    "phone",
                    "address",
                    "delivery_address",
                ],
            },
        ),
        (
            "Financial Details",
            {
                "fields": [
                    "total_amount",
                    "discount",
                    "final_amount",
                    "paid_amount",
                    "adjustments",
                    "returns_amount",
                    "pending_amount",
                    "due_date",
                ],
            },
        ),
        (
            "Timestamps",
            {
                "fields": ["created_by", "created_at", "updated_at", "cancelled_at"],
            },
        ),
    ]


class ReturnItemInline(ReadOnlyAdminMixin, admin.TabularInline):
    model = ReturnItem
    extra = 0
    can_delete = False
    fields = ["sale_item", "quantity", "price_at_sale", "restored_base_quantity"]
    readonly_fields = fields


@admin.register(Return)
class ReturnAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["sale", "customer", "return_type", "total_return_amount", "created_at"]
    list_filter = ["return_type", "created_at"]
    search_fields = ["sale__invoice_number", "customer__name"]
    readonly_fields = [
        "id",
        "tenant",
        "sale",
        "customer",
        "return_type",
        "total_return_amount",
        "note",
        "created_by",
        "created_at",
    ]
    inlines = [ReturnItemInline]


@admin.register(Adjustment)
class AdjustmentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["sale", "reason", "amount", "created_by", "created_at"]
    list_filter = ["reason", "created_at"]
    search_fields = ["sale__invoice_number", "note"]
    readonly_fields = [
        "id",
        "tenant",
        "sale",
        "amount",
        "reason",
        "note",
        "created_by",
        "created_at",
    ]


@admin.register(InvoiceSequence)
class InvoiceSequenceAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["tenant", "last_value"]
    readonly_fields = ["tenant", "last_value"]
