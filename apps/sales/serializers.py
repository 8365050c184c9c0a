"""
Serializers for the sales app.

Input serializers only check request shape; pricing, stock and balance rules
are enforced by ``SaleService`` inside the transaction. Output serializers
expose ``balanceAmount``/``dueAmount`` as read-only aliases of
``pending_amount``.
"""

from rest_framework import serializers

from apps.core.serializers import CamelCaseInputMixin

from .models import Adjustment, Payment, Return, ReturnItem, Sale, SaleItem


class SaleLineInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    product_id = serializers.CharField()
    unit = serializers.CharField(required=False)
    selling_unit = serializers.CharField(required=False, write_only=True)
    quantity = serializers.CharField()

    def validate(self, attrs):
        # Older clients send the unit as ``sellingUnit``
        selling_unit = attrs.pop("selling_unit", None)
        if not attrs.get("unit"):
            if not selling_unit:
                raise serializers.ValidationError({"unit": "This field is required."})
            attrs["unit"] = selling_unit
        return attrs


class SaleCreateSerializer(CamelCaseInputMixin, serializers.Serializer):
    """
    Body of ``POST /api/sales/``.

    Amounts are taken as strings and parsed by the service so that bad numbers
    get the same error codes as every other money input.
    """

    items = SaleLineInputSerializer(many=True, allow_empty=True)
    customer_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    discount = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    payment_received = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    idempotency_key = serializers.CharField(required=False, allow_blank=True, default="")
    delivery_address = serializers.CharField(required=False, allow_blank=True, default="")
    due_date = serializers.DateField(required=False, allow_null=True)


class PaymentInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    amount = serializers.CharField()
    method = serializers.CharField(required=False, allow_blank=True, default="cash")
    note = serializers.CharField(required=False, allow_blank=True, default="")
    customer_id = serializers.CharField(required=False, allow_null=True)


class SalePaymentInputSerializer(PaymentInputSerializer):
    """Body of ``POST /api/payments/``, which names the sale in the body."""

    sale_id = serializers.CharField()


class ReturnLineInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    sale_item_id = serializers.CharField(required=False)
    product_id = serializers.CharField(required=False)
    quantity = serializers.CharField()

    def validate(self, attrs):
        if not attrs.get("sale_item_id") and not attrs.get("product_id"):
            raise serializers.ValidationError("Each return item needs a product or sale item")
        return attrs


class ReturnInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    items = ReturnLineInputSerializer(many=True, allow_empty=True)
    return_type = serializers.CharField(required=False, allow_blank=True, default="")
    adjust_amount = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    note = serializers.CharField(required=False, allow_blank=True, default="")


class AdjustmentInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    sale_id = serializers.CharField()
    amount = serializers.CharField()
    reason = serializers.CharField()
    note = serializers.CharField(required=False, allow_blank=True, default="")


class SaleItemSerializer(serializers.ModelSerializer):
    returnable_qty = serializers.DecimalField(max_digits=12, decimal_places=3, read_only=True)

    class Meta:
        model = SaleItem
        fields = [
            "id",
            "product",
            "product_name",
            "unit",
            "quantity",
            "unit_price",
            "line_total",
            "cost_price_at_sale",
            "converted_base_quantity",
            "conversion_factor_at_sale",
            "base_unit_at_sale",
            "returned_qty",
            "returnable_qty",
        ]


class SaleListSerializer(serializers.ModelSerializer):
    """Serializer for sale list."""

    customer_display = serializers.SerializerMethodField()

    class Meta:
        model = Sale
        fields = [
            "id",
            "invoice_number",
            "customer",
            "customer_display",
            "final_amount",
            "paid_amount",
            "pending_amount",
            "status",
            "due_date",
            "created_at",
        ]

    def get_customer_display(self, obj):
        """Customer name or 'Walk-in' if no customer."""
        return obj.customer_name if obj.customer_id else "Walk-in"


class SaleDetailSerializer(serializers.ModelSerializer):
    """Full sale with lines and the legacy balance aliases."""

    items = SaleItemSerializer(many=True, read_only=True)
    balanceAmount = serializers.DecimalField(
        source="balance_amount", max_digits=12, decimal_places=2, read_only=True
    )
    dueAmount = serializers.DecimalField(
        source="due_amount", max_digits=12, decimal_places=2, read_only=True
    )
    net_total_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    net_final_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    payment_status = serializers.CharField(read_only=True)

    class Meta:
        model = Sale
        fields = [
            "id",
            "invoice_number",
            "customer",
            "customer_name",
            "shop_name",
            "phone",
            "address",
            "delivery_address",
            "items",
            "total_amount",
            "discount",
            "final_amount",
            "net_total_amount",
            "net_final_amount",
            "paid_amount",
            "pending_amount",
            "balanceAmount",
            "dueAmount",
            "adjustments",
            "returns_amount",
            "status",
            "payment_status",
            "due_date",
            "cancelled_at",
            "created_at",
        ]


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ["id", "sale", "customer", "amount", "method", "note", "created_at"]


class ReturnItemSerializer(serializers.ModelSerializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = ReturnItem
        fields = [
            "sale_item",
            "product",
            "quantity",
            "price_at_sale",
            "amount",
            "restored_base_quantity",
        ]


class ReturnSerializer(serializers.ModelSerializer):
    items = ReturnItemSerializer(many=True, read_only=True)

    class Meta:
        model = Return
        fields = [
            "id",
            "sale",
            "customer",
            "return_type",
            "total_return_amount",
            "note",
            "items",
            "created_at",
        ]


class AdjustmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Adjustment
        fields = ["id", "sale", "amount", "reason", "note", "created_at"]


class ReturnableItemSerializer(serializers.Serializer):
    sale_item_id = serializers.IntegerField(read_only=True)
    product_id = serializers.UUIDField(read_only=True)
    product_name = serializers.CharField(read_only=True)
    unit = serializers.CharField(read_only=True)
    sold_qty = serializers.DecimalField(max_digits=12, decimal_places=3, read_only=True)
    returned_qty = serializers.DecimalField(max_digits=12, decimal_places=3, read_only=True)
    returnable_qty = serializers.DecimalField(max_digits=12, decimal_places=3, read_only=True)
    price_at_sale = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
