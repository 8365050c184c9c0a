"""
Sales models for the udhaar billing platform.

- Sale: one invoice, its balances and its payment state machine
- SaleItem: priced line with cost and unit-conversion snapshots
- Payment: money received against a specific sale
- Return / ReturnItem: immutable record of goods returned or a price adjustment
- Adjustment: non-return reduction of a sale's pending amount
- InvoiceSequence: per-tenant counter behind invoice numbers

Balance rule kept by every operation on a sale::

    pending_amount == final_amount - paid_amount - adjustments - returns_amount >= 0
"""

import uuid
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from apps.core.exceptions import (
    AdjustmentExceedsBalance,
    CustomerRequired,
    PaymentExceedsBalance,
    ReturnExceedsPending,
    SaleAlreadyCancelled,
)
from apps.core.models import AppendOnlyModel, Tenant, User
from apps.crm.models import Customer, LedgerEntry
from apps.inventory.models import Product

ZERO = Decimal("0.00")


def default_due_date():
    return timezone.localdate() + timedelta(days=getattr(settings, "SALES_DEFAULT_DUE_DAYS", 7))


class Sale(models.Model):
    """
    One invoice.

    ``pending_amount`` is the only stored outstanding balance. ``balance_amount``
    and ``due_amount`` are read-only aliases kept for older API consumers.

    State transitions::

        OPEN -> PARTIAL -> PAID      (as pending_amount falls)
        OPEN | PARTIAL | PAID -> CANCELLED   (terminal)

    A sale without a customer is a walk-in sale. Later payments, returns and
    ledger-affecting adjustments require a customer; ``require_customer``
    guards those operations.
    """

    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

    STATUS_CHOICES = [
        (OPEN, "Open"),
        (PARTIAL, "Partially Paid"),
        (PAID, "Paid"),
        (CANCELLED, "Cancelled"),
    ]

    # Fields written whenever the balances move
    BALANCE_FIELDS = [
        "paid_amount",
        "pending_amount",
        "adjustments",
        "returns_amount",
        "status",
        "cancelled_at",
        "updated_at",
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the sale",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="sales",
        help_text="Tenant that owns this sale",
    )

    invoice_number = models.CharField(
        max_length=50,
        help_text="Invoice number, unique per tenant",
    )

    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="sales",
        help_text="Credit customer (empty for walk-in sales)",
    )

    # Customer snapshot at billing time
    customer_name = models.CharField(max_length=255, blank=True)
    shop_name = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    address = models.TextField(blank=True)
    delivery_address = models.TextField(blank=True)

    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(ZERO)],
        help_text="Sum of line totals as billed",
    )

    discount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)],
        help_text="Discount applied at billing",
    )

    final_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(ZERO)],
        help_text="Payable amount as billed (total minus discount)",
    )

    paid_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)],
        help_text="Total received against this sale",
    )

    pending_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)],
        help_text="Outstanding balance on this sale",
    )

    adjustments = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Cumulative non-return reductions",
    )

    returns_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Cumulative return reductions",
    )

    status = FSMField(
        default=OPEN,
        choices=STATUS_CHOICES,
        help_text="Payment state of the sale",
    )

    due_date = models.DateField(default=default_due_date, help_text="Date payment is due")

    idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Client token that makes sale creation safe to retry",
    )

    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sales_created",
        help_text="User who billed the sale",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "sales"
        ordering = ["-created_at"]
        verbose_name = "Sale"
        verbose_name_plural = "Sales"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "invoice_number"], name="sale_unique_invoice_per_tenant"
            ),
            models.UniqueConstraint(
                fields=["tenant", "idempotency_key"],
                condition=~Q(idempotency_key=""),
                name="sale_unique_idempotency_key",
            ),
            models.CheckConstraint(
                condition=Q(pending_amount__gte=0), name="sale_pending_non_negative"
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "-created_at"], name="sale_tenant_created_idx"),
            models.Index(fields=["tenant", "status"], name="sale_tenant_status_idx"),
            models.Index(fields=["tenant", "customer", "created_at"], name="sale_customer_idx"),
            models.Index(fields=["tenant", "due_date"], name="sale_due_date_idx"),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.final_amount}"

    # Legacy aliases

    @property
    def balance_amount(self):
        return self.pending_amount

    @property
    def due_amount(self):
        return self.pending_amount

    @property
    def payment_status(self):
        """Status implied by the amounts alone, ignoring cancellation."""
        return self.derived_status()

    @property
    def net_total_amount(self):
        return self.total_amount - self.returns_amount

    @property
    def net_final_amount(self):
        return self.final_amount - self.returns_amount

    # Guards

    def require_customer(self, message=None):
        """Return the sale's customer, or raise ``CustomerRequired`` for walk-in sales."""
        if self.customer_id is None:
            raise CustomerRequired(message or "Customer required for this sale")
        return self.customer

    def ensure_not_cancelled(self):
        if self.status == self.CANCELLED:
            raise SaleAlreadyCancelled()

    def balance_is_consistent(self):
        expected = self.final_amount - self.paid_amount - self.adjustments - self.returns_amount
        return self.pending_amount == expected and self.pending_amount >= 0

    # State machine

    def derived_status(self):
        if self.pending_amount <= 0:
            return self.PAID
        if self.paid_amount > 0:
            return self.PARTIAL
        return self.OPEN

    @transition(field=status, source=OPEN, target=PARTIAL)
    def mark_partial(self):
        """Some money received, balance still outstanding."""

    @transition(field=status, source=[OPEN, PARTIAL], target=PAID)
    def mark_paid(self):
        """Nothing further owed."""

    @transition(field=status, source=[OPEN, PARTIAL, PAID], target=CANCELLED)
    def cancel(self):
        self.cancelled_at = timezone.now()

    def sync_status(self):
        """Move ``status`` to the state implied by the current amounts."""
        target = self.derived_status()
        if target == self.status:
            return
        if target == self.PARTIAL:
            self.mark_partial()
        elif target == self.PAID:
            self.mark_paid()

    # Balance mutations

    def apply_payment(self, amount):
        if amount > self.pending_amount:
            raise PaymentExceedsBalance()
        self.paid_amount += amount
        self.pending_amount -= amount
        self.sync_status()

    def apply_return(self, amount):
        if amount > self.pending_amount:
            raise ReturnExceedsPending()
        self.returns_amount += amount
        self.pending_amount -= amount
        self.sync_status()

    def apply_adjustment(self, amount):
        if amount > self.pending_amount:
            raise AdjustmentExceedsBalance()
        self.adjustments += amount
        self.pending_amount -= amount
        self.sync_status()

    def write_off_pending(self):
        """
        Clear the outstanding balance into ``adjustments``.

        Returns:
            Decimal: the amount written off
        """
        written_off = self.pending_amount
        self.adjustments += written_off
        self.pending_amount = ZERO
        self.sync_status()
        return written_off


class SaleItem(models.Model):
    """Sale line with the price, cost and conversion in force when it was billed."""

    sale = models.ForeignKey(
        Sale,
        on_delete=models.CASCADE,
        related_name="items",
        help_text="Sale this line belongs to",
    )

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="sale_items",
        help_text="Product sold",
    )

    product_name = models.CharField(max_length=255, help_text="Product name at sale time")

    unit = models.CharField(max_length=50, help_text="Unit the line was sold in")

    quantity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal("0.001"))],
        help_text="Quantity in the selling unit",
    )

    unit_price = models.DecimalField(
        max_digits=12, decimal_places=2, help_text="Price of one selling unit at sale time"
    )

    line_total = models.DecimalField(max_digits=12, decimal_places=2, help_text="quantity x price")

    cost_price_at_sale = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        help_text="Cost of one selling unit at sale time",
    )

    converted_base_quantity = models.DecimalField(
        max_digits=14, decimal_places=3, help_text="Quantity deducted from stock in base units"
    )

    conversion_factor_at_sale = models.DecimalField(
        max_digits=14, decimal_places=3, help_text="Base units per selling unit at sale time"
    )

    base_unit_at_sale = models.CharField(max_length=50, help_text="Product base unit at sale time")

    returned_qty = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=Decimal("0.000"),
        help_text="Quantity already returned, in the selling unit",
    )

    class Meta:
        db_table = "sale_items"
        ordering = ["id"]
        verbose_name = "Sale Item"
        verbose_name_plural = "Sale Items"
        constraints = [
            models.CheckConstraint(
                condition=Q(returned_qty__lte=F("quantity")), name="sale_item_returned_lte_sold"
            ),
        ]

    def __str__(self):
        return f"{self.product_name} x {self.quantity} {self.unit}"

    @property
    def returnable_qty(self):
        return self.quantity - self.returned_qty

    @property
    def cost_total(self):
        return self.cost_price_at_sale * self.quantity


class Payment(AppendOnlyModel):
    """Money received against a specific sale."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the payment",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="payments",
        help_text="Tenant that owns this payment",
    )

    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Customer who paid",
    )

    sale = models.ForeignKey(
        Sale,
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Sale the payment was applied to",
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
        help_text="Amount received",
    )

    method = models.CharField(
        max_length=10,
        choices=LedgerEntry.METHOD_CHOICES,
        default=LedgerEntry.METHOD_CASH,
        help_text="Payment method",
    )

    note = models.TextField(blank=True)

    received_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments_received",
        help_text="User who received the money",
    )

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "sale_payments"
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["tenant", "-created_at"], name="payment_tenant_created_idx"),
            models.Index(fields=["tenant", "customer"], name="payment_tenant_customer_idx"),
        ]

    def __str__(self):
        return f"{self.amount} ({self.method}) for {self.sale_id}"


class Return(AppendOnlyModel):
    """
    Goods returned against a sale, or a price adjustment on sold items.

    STOCK_RETURN puts the returned quantity back into stock. PRICE_ADJUSTMENT
    credits the customer an agreed amount and leaves stock untouched.
    """

    STOCK_RETURN = "STOCK_RETURN"
    PRICE_ADJUSTMENT = "PRICE_ADJUSTMENT"

    TYPE_CHOICES = [
        (STOCK_RETURN, "Stock Return"),
        (PRICE_ADJUSTMENT, "Price Adjustment"),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the return",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="returns",
        help_text="Tenant that owns this return",
    )

    sale = models.ForeignKey(
        Sale,
        on_delete=models.PROTECT,
        related_name="returns",
        help_text="Sale the items were returned against",
    )

    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name="returns",
        help_text="Customer credited",
    )

    return_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=STOCK_RETURN)

    total_return_amount = models.DecimalField(
        max_digits=12, decimal_places=2, help_text="Amount credited to the customer"
    )

    note = models.TextField(blank=True)

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="returns_recorded",
    )

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "sale_returns"
        ordering = ["created_at"]
        verbose_name = "Return"
        verbose_name_plural = "Returns"
        indexes = [
            models.Index(fields=["tenant", "created_at"], name="return_tenant_created_idx"),
        ]

    def __str__(self):
        return f"{self.get_return_type_display()} {self.total_return_amount} on {self.sale_id}"


class ReturnItem(AppendOnlyModel):
    """One returned line."""

    sale_return = models.ForeignKey(
        Return,
        on_delete=models.CASCADE,
        related_name="items",
    )

    sale_item = models.ForeignKey(
        SaleItem,
        on_delete=models.PROTECT,
        related_name="return_items",
    )

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="return_items")

    quantity = models.DecimalField(max_digits=12, decimal_places=3)

    price_at_sale = models.DecimalField(max_digits=12, decimal_places=2)

    restored_base_quantity = models.DecimalField(
        max_digits=14,
        decimal_places=3,
        default=Decimal("0.000"),
        help_text="Base units put back into stock (zero for price adjustments)",
    )

    class Meta:
        db_table = "sale_return_items"
        verbose_name = "Return Item"
        verbose_name_plural = "Return Items"

    @property
    def amount(self):
        return self.price_at_sale * self.quantity


class Adjustment(AppendOnlyModel):
    """Audit record of a non-return reduction of a sale's pending amount."""

    RETURN = "RETURN"
    RATE_FIX = "RATE_FIX"
    DAMAGE = "DAMAGE"

    REASON_CHOICES = [
        (RETURN, "Return"),
        (RATE_FIX, "Rate Fix"),
        (DAMAGE, "Damage"),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the adjustment",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="adjustments",
        help_text="Tenant that owns this adjustment",
    )

    sale = models.ForeignKey(
        Sale,
        on_delete=models.PROTECT,
        related_name="adjustment_records",
        help_text="Sale whose pending amount was reduced",
    )

    amount = models.DecimalField(
        max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0.01"))]
    )

    reason = models.CharField(max_length=20, choices=REASON_CHOICES)

    note = models.TextField(blank=True)

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="adjustments_recorded",
    )

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "sale_adjustments"
        ordering = ["created_at"]
        verbose_name = "Adjustment"
        verbose_name_plural = "Adjustments"

    def __str__(self):
        return f"{self.reason} {self.amount} on {self.sale_id}"


class InvoiceSequence(models.Model):
    """Per-tenant invoice counter. Incremented atomically inside the sale transaction."""

    tenant = models.OneToOneField(
        Tenant,
        on_delete=models.CASCADE,
        related_name="invoice_sequence",
    )

    last_value = models.PositiveBigIntegerField(default=0)

    class Meta:
        db_table = "sale_invoice_sequences"
        verbose_name = "Invoice Sequence"
        verbose_name_plural = "Invoice Sequences"

    def __str__(self):
        return f"{self.tenant_id}: {self.last_value}"

    @classmethod
    def next_invoice_number(cls, tenant):
        """
        Reserve the next invoice number for ``tenant``.

        Each call returns a new number exactly once. Numbers taken by a transaction
        that later rolls back are released with it, so gaps are possible across
        aborted sales but duplicates are not.
        """
        sequence, _ = cls.objects.select_for_update().get_or_create(tenant=tenant)
        cls.objects.filter(pk=sequence.pk).update(last_value=F("last_value") + 1)
        sequence.refresh_from_db(fields=["last_value"])
        prefix = getattr(settings, "SALES_INVOICE_PREFIX", "INV")
        return f"{prefix}-{sequence.last_value:08d}"
