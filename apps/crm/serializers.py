"""
Serializers for customers, their ledger and shop expenses.
"""

from rest_framework import serializers

from apps.core.serializers import CamelCaseInputMixin

from .models import Customer, LedgerEntry


class CustomerSerializer(CamelCaseInputMixin, serializers.ModelSerializer):
    """Serializer for customer create/update. The due is never writable."""

    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "shop_name",
            "phone",
            "address",
            "due_amount",
            "is_active",
            "created_at",
        ]
        read_only_fields = ["id", "due_amount", "created_at"]


class LedgerEntrySerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(
        source="sale.invoice_number", read_only=True, allow_null=True
    )
    opening_balance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "type",
            "amount",
            "opening_balance",
            "balance_after",
            "payment_mode",
            "source",
            "remark",
            "note",
            "sale",
            "invoice_number",
            "date",
        ]


class StatementSerializer(serializers.Serializer):
    customer = CustomerSerializer(read_only=True)
    date_from = serializers.DateField(read_only=True, allow_null=True)
    date_to = serializers.DateField(read_only=True, allow_null=True)
    opening_balance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    closing_balance = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    entries = LedgerEntrySerializer(many=True, read_only=True)


class CustomerPaymentInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    amount = serializers.CharField()
    method = serializers.CharField(required=False, allow_blank=True, default="cash")
    note = serializers.CharField(required=False, allow_blank=True, default="")


class ExpenseSerializer(CamelCaseInputMixin, serializers.ModelSerializer):
    """Shop expense. Category is free text; the usual ones are listed on the model."""

    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    date = serializers.DateTimeField(required=False)

    class Meta:
        model = LedgerEntry
        fields = ["id", "amount", "category", "payment_mode", "note", "date"]
        read_only_fields = ["id"]
