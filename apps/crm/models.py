"""
CRM models for the udhaar billing platform.

- Customer: contact details and the cached running due (udhaar) balance
- LedgerEntry: append-only history of every balance-affecting event, plus
  shop expenses
"""

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from apps.core.models import AppendOnlyModel, Tenant, User


class Customer(models.Model):
    """
    Credit customer of a shop.

    ``due_amount`` is a cached projection of the customer's ledger: it always
    equals the ``balance_after`` of the newest ledger entry. Only
    ``apps.crm.ledger.CustomerDueLedger`` changes it.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the customer",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="customers",
        help_text="Tenant that owns this customer",
    )

    name = models.CharField(max_length=255, help_text="Customer name")

    shop_name = models.CharField(max_length=255, blank=True, help_text="Customer's shop name")

    phone = models.CharField(max_length=20, blank=True, help_text="Contact phone number")

    address = models.TextField(blank=True, help_text="Billing address")

    due_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Amount currently owed to the shop",
    )

    is_active = models.BooleanField(default=True, help_text="Whether the customer is active")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "crm_customers"
        ordering = ["name"]
        verbose_name = "Customer"
        verbose_name_plural = "Customers"
        indexes = [
            models.Index(fields=["tenant", "is_active"], name="customer_tenant_active_idx"),
            models.Index(fields=["tenant", "phone"], name="customer_tenant_phone_idx"),
        ]

    def __str__(self):
        if self.shop_name:
            return f"{self.name} ({self.shop_name})"
        return self.name


class LedgerEntry(AppendOnlyModel):
    """
    Immutable record of a balance-affecting event.

    Customer entries carry the customer's due immediately after the event in
    ``balance_after``; the first entry in a date range and its amount give the
    opening balance for that range. EXPENSE entries have no customer.
    """

    SALE = "SALE"
    PAYMENT = "PAYMENT"
    RETURN = "RETURN"
    SALE_RETURN = "SALE_RETURN"
    ADJUSTMENT = "ADJUSTMENT"
    EXPENSE = "EXPENSE"

    TYPE_CHOICES = [
        (SALE, "Sale"),
        (PAYMENT, "Payment"),
        (RETURN, "Return"),
        (SALE_RETURN, "Sale Return"),
        (ADJUSTMENT, "Adjustment"),
        (EXPENSE, "Expense"),
    ]

    METHOD_CASH = "cash"
    METHOD_UPI = "upi"
    METHOD_BANK = "bank"

    METHOD_CHOICES = [
        (METHOD_CASH, "Cash"),
        (METHOD_UPI, "UPI"),
        (METHOD_BANK, "Bank Transfer"),
    ]

    SOURCE_BILLING = "BILLING"
    SOURCE_DUE_REPORT = "DUE_REPORT"
    SOURCE_MANUAL = "MANUAL"

    SOURCE_CHOICES = [
        (SOURCE_BILLING, "Billing"),
        (SOURCE_DUE_REPORT, "Due Report"),
        (SOURCE_MANUAL, "Manual"),
    ]

    # Entry types that lower the customer due
    REDUCING_TYPES = [PAYMENT, RETURN, SALE_RETURN, ADJUSTMENT]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the ledger entry",
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="ledger_entries",
        help_text="Tenant that owns this entry",
    )

    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="ledger_entries",
        help_text="Customer whose balance this entry affects (empty for expenses)",
    )

    sale = models.ForeignKey(
        "sales.Sale",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="ledger_entries",
        help_text="Sale the entry relates to, if any",
    )

    type = models.CharField(max_length=20, choices=TYPE_CHOICES, help_text="Entry type")

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Absolute amount of the event",
    )

    balance_after = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Customer due immediately after this entry",
    )

    payment_mode = models.CharField(
        max_length=10,
        choices=METHOD_CHOICES,
        default=METHOD_CASH,
        help_text="How money moved, for payments and expenses",
    )

    source = models.CharField(
        max_length=20,
        choices=SOURCE_CHOICES,
        default=SOURCE_BILLING,
        help_text="Screen or flow that produced this entry",
    )

    remark = models.CharField(max_length=255, blank=True, help_text="Short description")

    note = models.TextField(blank=True, help_text="Free-form note")

    category = models.CharField(max_length=50, blank=True, help_text="Expense category")

    received_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="ledger_entries",
        help_text="User who recorded the entry",
    )

    date = models.DateTimeField(default=timezone.now, help_text="When the event happened")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "crm_ledger_entries"
        ordering = ["date", "created_at"]
        verbose_name = "Ledger Entry"
        verbose_name_plural = "Ledger Entries"
        indexes = [
            models.Index(fields=["tenant", "customer", "date"], name="ledger_customer_date_idx"),
            models.Index(fields=["tenant", "type", "date"], name="ledger_type_date_idx"),
        ]

    def __str__(self):
        return f"{self.type} {self.amount} (balance {self.balance_after})"

    def clean(self):
        if self.type != self.EXPENSE and self.customer_id is None:
            raise ValidationError({"customer": "Customer is required for non-expense entries"})

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)

    @property
    def opening_balance(self):
        """Customer due immediately before this entry."""
        if self.type in self.REDUCING_TYPES:
            return self.balance_after + self.amount
        return self.balance_after - self.amount
