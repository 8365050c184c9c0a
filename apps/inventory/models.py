"""
Inventory models for the udhaar billing platform.

- Product: stock counter in base units with a packaging hierarchy and unit prices
- Purchase / PurchaseItem: goods received from suppliers, which add stock
"""

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from apps.core.exceptions import LedgerError
from apps.core.models import Tenant, User

from . import units


class Product(models.Model):
    """
    Sellable product.

    Stock is always held in ``base_unit``. ``packaging_levels`` declares larger
    units in ascending order and ``default_prices`` prices them. ``selling_price``
    is the authoritative base-unit price.

    Stock is only changed through ``apps.inventory.stock.StockLedger`` inside a
    unit of work.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the product",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="products",
        help_text="Tenant that owns this product",
    )

    name = models.CharField(max_length=255, help_text="Product name")

    sku = models.CharField(max_length=100, blank=True, help_text="Optional stock keeping unit")

    base_unit = models.CharField(
        max_length=50, help_text="Smallest stock-tracking unit (e.g. piece, gram)"
    )

    packaging_levels = models.JSONField(
        default=list,
        blank=True,
        help_text="Ordered list of {name, quantity} packaging levels, smallest first",
    )

    default_prices = models.JSONField(
        default=list,
        blank=True,
        help_text="List of {unit, price} entries; the base unit entry is required",
    )

    selling_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Current price of one base unit",
    )

    last_purchase_cost = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Cost of one base unit at the most recent purchase",
    )

    stock = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0.000"),
        validators=[MinValueValidator(Decimal("0.000"))],
        help_text="Quantity on hand in base units",
    )

    min_stock_alert = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0.000"),
        help_text="Stock level at or below which the product is reported as low",
    )

    is_active = models.BooleanField(default=True, help_text="Whether the product can be sold")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "inventory_products"
        ordering = ["name"]
        verbose_name = "Product"
        verbose_name_plural = "Products"
        indexes = [
            models.Index(fields=["tenant", "is_active"], name="product_tenant_active_idx"),
            models.Index(fields=["tenant", "name"], name="product_tenant_name_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0), name="product_stock_non_negative"
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.base_unit})"

    def clean(self):
        """Validate and normalize the unit configuration."""
        try:
            self.normalize_units()
        except LedgerError as exc:
            raise ValidationError({"default_prices": exc.message})

    def normalize_units(self):
        (
            self.base_unit,
            self.packaging_levels,
            self.default_prices,
        ) = units.validate_unit_definitions(
            self.base_unit, self.packaging_levels, self.default_prices
        )

    def is_low_stock(self):
        """Check if stock is at or below the alert level."""
        return self.stock <= self.min_stock_alert


class Purchase(models.Model):
    """
    Goods received from a supplier.

    Receiving a purchase adds each line's base quantity to stock and updates the
    product's last purchase cost.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the purchase",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="purchases",
        help_text="Tenant that owns this purchase",
    )

    supplier_name = models.CharField(max_length=255, blank=True, help_text="Supplier name")

    invoice_number = models.CharField(
        max_length=100, blank=True, help_text="Supplier's invoice number"
    )

    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Sum of line costs",
    )

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="purchases_received",
        help_text="User who recorded the purchase",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "inventory_purchases"
        ordering = ["-created_at"]
        verbose_name = "Purchase"
        verbose_name_plural = "Purchases"
        indexes = [
            models.Index(fields=["tenant", "-created_at"], name="purchase_tenant_created_idx"),
        ]

    def __str__(self):
        return f"Purchase {self.invoice_number or self.id} - {self.supplier_name}"


class PurchaseItem(models.Model):
    """Line item of a purchase, with the conversion used to add stock."""

    purchase = models.ForeignKey(
        Purchase,
        on_delete=models.CASCADE,
        related_name="items",
        help_text="Purchase this line belongs to",
    )

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="purchase_items",
        help_text="Product received",
    )

    product_name = models.CharField(max_length=255, help_text="Product name at purchase time")

    unit = models.CharField(max_length=50, help_text="Unit the goods were purchased in")

    quantity = models.DecimalField(
        max_digits=12, decimal_places=3, help_text="Quantity in the purchase unit"
    )

    cost_price = models.DecimalField(
        max_digits=12, decimal_places=2, help_text="Cost of one purchase unit"
    )

    total_cost = models.DecimalField(max_digits=12, decimal_places=2, help_text="Line cost")

    converted_base_quantity = models.DecimalField(
        max_digits=14, decimal_places=3, help_text="Quantity added to stock in base units"
    )

    conversion_factor = models.DecimalField(
        max_digits=14, decimal_places=3, help_text="Base units per purchase unit"
    )

    class Meta:
        db_table = "inventory_purchase_items"
        verbose_name = "Purchase Item"
        verbose_name_plural = "Purchase Items"

    def __str__(self):
        return f"{self.product_name} x {self.quantity} {self.unit}"
