"""
Serializers for products and purchases.
"""

from decimal import Decimal

from rest_framework import serializers

from apps.core.serializers import CamelCaseInputMixin
from apps.core.utils import money

from . import units
from .models import Product, Purchase, PurchaseItem


class ProductSerializer(CamelCaseInputMixin, serializers.ModelSerializer):
    """
    Serializer for creating, updating and listing products.

    ``stock`` is read-only: it changes through purchases, sales, returns and
    cancellations only. ``opening_stock`` may be given once, on create.
    """

    opening_stock = serializers.DecimalField(
        max_digits=14,
        decimal_places=3,
        min_value=Decimal("0"),
        required=False,
        write_only=True,
    )
    available_units = serializers.SerializerMethodField()
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "sku",
            "base_unit",
            "packaging_levels",
            "default_prices",
            "selling_price",
            "last_purchase_cost",
            "stock",
            "opening_stock",
            "min_stock_alert",
            "is_active",
            "available_units",
            "is_low_stock",
            "created_at",
        ]
        read_only_fields = ["id", "stock", "last_purchase_cost", "created_at"]
        extra_kwargs = {"selling_price": {"required": False}}

    def get_available_units(self, obj):
        return [
            {
                "unit": unit["unit"],
                "factor": str(unit["factor"]),
                "price": str(unit["price"]) if unit["price"] is not None else None,
            }
            for unit in units.available_units(obj)
        ]

    def validate(self, data):
        """Validate the unit configuration and keep the base price in sync."""
        base_unit = data.get("base_unit", self.instance.base_unit if self.instance else None)
        if self.instance and units.normalize_unit(base_unit) != self.instance.base_unit:
            raise serializers.ValidationError({"base_unit": "Base unit cannot be changed."})

        levels = data.get(
            "packaging_levels", self.instance.packaging_levels if self.instance else []
        )
        prices = list(
            data.get("default_prices", self.instance.default_prices if self.instance else [])
        )
        selling_price = data.get(
            "selling_price", self.instance.selling_price if self.instance else None
        )

        base = units.normalize_unit(base_unit)
        has_base_price = any(units.normalize_unit(p.get("unit")) == base for p in prices)
        if "selling_price" in data or not has_base_price:
            if selling_price is None:
                raise serializers.ValidationError({"selling_price": "Base unit price is required."})
            prices = [p for p in prices if units.normalize_unit(p.get("unit")) != base]
            prices.insert(0, {"unit": base, "price": str(money(selling_price))})

        data["base_unit"], data["packaging_levels"], data["default_prices"] = (
            units.validate_unit_definitions(base_unit, levels, prices)
        )
        if "selling_price" not in data:
            data["selling_price"] = next(
                Decimal(entry["price"]) for entry in data["default_prices"] if entry["unit"] == base
            )
        return data

    def create(self, validated_data):
        opening_stock = validated_data.pop("opening_stock", None)
        if opening_stock is not None:
            validated_data["stock"] = opening_stock
        return super().create(validated_data)

    def update(self, instance, validated_data):
        validated_data.pop("opening_stock", None)
        return super().update(instance, validated_data)


class PurchaseLineInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    product_id = serializers.CharField()
    unit = serializers.CharField()
    quantity = serializers.CharField()
    cost_price = serializers.CharField()


class PurchaseInputSerializer(CamelCaseInputMixin, serializers.Serializer):
    supplier_name = serializers.CharField(required=False, allow_blank=True, default="")
    invoice_number = serializers.CharField(required=False, allow_blank=True, default="")
    items = PurchaseLineInputSerializer(many=True, allow_empty=True)


class PurchaseItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = PurchaseItem
        fields = [
            "product",
            "product_name",
            "unit",
            "quantity",
            "cost_price",
            "total_cost",
            "converted_base_quantity",
            "conversion_factor",
        ]


class PurchaseSerializer(serializers.ModelSerializer):
    items = PurchaseItemSerializer(many=True, read_only=True)

    class Meta:
        model = Purchase
        fields = ["id", "supplier_name", "invoice_number", "total_amount", "items", "created_at"]
