"""
Customer due ledger.

``Customer.due_amount`` is a cached projection; the ``LedgerEntry`` rows are the
history it is derived from. Every change to a due goes through
``CustomerDueLedger.apply_delta``, which writes the new due and appends one
entry carrying it as ``balance_after``, so the newest entry always matches the
cached value.
"""

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import CustomerNotFound, InvalidAmount, PaymentExceedsDue
from apps.core.models import Tenant
from apps.core.utils import ZERO, money, parse_uuid

from .models import Customer, LedgerEntry

logger = logging.getLogger(__name__)


def day_bounds(date_from: Optional[date], date_to: Optional[date]):
    """
    Convert an inclusive date range into aware datetime bounds ``[start, end)``.

    Either side may be ``None`` for an open range.
    """
    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(date_from, time.min), tz) if date_from else None
    end = (
        timezone.make_aware(datetime.combine(date_to + timedelta(days=1), time.min), tz)
        if date_to
        else None
    )
    return start, end


class CustomerDueLedger:
    """Owns every write to customer dues and the ledger history behind them."""

    @staticmethod
    def _require_transaction():
        if not transaction.get_connection().in_atomic_block:
            raise RuntimeError("Customer dues can only be changed inside a unit of work")

    @staticmethod
    def lock_customer(tenant: Tenant, customer_id) -> Customer:
        """Read and lock a tenant's customer for the rest of the transaction."""
        customer_id = parse_uuid(customer_id, CustomerNotFound)
        try:
            return Customer.objects.select_for_update().get(tenant=tenant, pk=customer_id)
        except Customer.DoesNotExist:
            raise CustomerNotFound()

    @staticmethod
    def apply_delta(
        tenant: Tenant,
        customer: Customer,
        signed_amount: Decimal,
        entry_type: str,
        remark: str = "",
        sale=None,
        payment_mode: str = LedgerEntry.METHOD_CASH,
        source: str = LedgerEntry.SOURCE_BILLING,
        note: str = "",
        user=None,
        when=None,
    ) -> LedgerEntry:
        """
        Move the customer's due by ``signed_amount`` and record it.

        Positive amounts raise the due (sales on credit); negative amounts lower it
        (payments, returns, adjustments). The due never drops below zero.
        """
        CustomerDueLedger._require_transaction()

        new_due = max(ZERO, money(customer.due_amount + signed_amount))
        customer.due_amount = new_due
        customer.save(update_fields=["due_amount", "updated_at"])

        entry = LedgerEntry.objects.create(
            tenant=tenant,
            customer=customer,
            sale=sale,
            type=entry_type,
            amount=money(abs(signed_amount)),
            balance_after=new_due,
            payment_mode=payment_mode,
            source=source,
            remark=remark,
            note=note or "",
            received_by=user,
            date=when or timezone.now(),
        )
        logger.debug(
            f"Ledger {entry_type} {signed_amount} for customer {customer.pk}: due now {new_due}"
        )
        return entry

    @staticmethod
    def record_entry(
        tenant: Tenant,
        customer: Customer,
        amount: Decimal,
        entry_type: str,
        remark: str = "",
        sale=None,
        payment_mode: str = LedgerEntry.METHOD_CASH,
        source: str = LedgerEntry.SOURCE_BILLING,
        note: str = "",
        user=None,
        when=None,
    ) -> LedgerEntry:
        """
        Append an entry that leaves the due unchanged.

        Used for money collected at billing time: the sale entry already raised
        the due by the unpaid part only, so the payment is recorded for the cash
        audit trail with the same balance.
        """
        CustomerDueLedger._require_transaction()
        return LedgerEntry.objects.create(
            tenant=tenant,
            customer=customer,
            sale=sale,
            type=entry_type,
            amount=money(amount),
            balance_after=customer.due_amount,
            payment_mode=payment_mode,
            source=source,
            remark=remark,
            note=note or "",
            received_by=user,
            date=when or timezone.now(),
        )

    @staticmethod
    def statement_for(
        tenant: Tenant,
        customer: Customer,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict:
        """
        Reconstruct a customer's statement for an inclusive date range.

        The opening balance is the due just before the first entry in range; the
        closing balance is the last entry's ``balance_after``. With no entries in
        range both are the live due.
        """
        start, end = day_bounds(date_from, date_to)
        entries = LedgerEntry.objects.filter(tenant=tenant, customer=customer)
        if start:
            entries = entries.filter(date__gte=start)
        if end:
            entries = entries.filter(date__lt=end)
        entries = list(entries.order_by("date", "created_at"))

        if entries:
            opening_balance = entries[0].opening_balance
            closing_balance = entries[-1].balance_after
        else:
            opening_balance = customer.due_amount
            closing_balance = customer.due_amount

        return {
            "customer": customer,
            "date_from": date_from,
            "date_to": date_to,
            "opening_balance": money(opening_balance),
            "closing_balance": money(closing_balance),
            "entries": entries,
        }

    @staticmethod
    def reconcile_open_sales(
        tenant: Tenant,
        customer: Customer,
        amount: Decimal,
        method: str = LedgerEntry.METHOD_CASH,
        note: str = "",
        user=None,
    ):
        """
        Apply a customer-level payment to their open sales, oldest first.

        Each sale is paid off fully before the next one is touched. One Payment
        is created per sale touched and a single PAYMENT ledger entry records the
        whole amount. A payment larger than the current due is rejected before
        anything is written.

        Returns:
            tuple: ``(ledger_entry, [(sale, applied_amount), ...])``
        """
        from apps.sales.models import Payment, Sale

        CustomerDueLedger._require_transaction()

        if amount <= 0:
            raise InvalidAmount("Invalid payment amount")
        if amount > customer.due_amount:
            raise PaymentExceedsDue()

        open_sales = (
            Sale.objects.select_for_update()
            .filter(
                tenant=tenant,
                customer=customer,
                status__in=[Sale.OPEN, Sale.PARTIAL],
                pending_amount__gt=0,
            )
            .order_by("created_at", "invoice_number")
        )

        remaining = amount
        allocations = []
        now = timezone.now()
        for sale in open_sales:
            if remaining <= 0:
                break
            applied = min(remaining, sale.pending_amount)
            sale.apply_payment(applied)
            sale.save(update_fields=Sale.BALANCE_FIELDS)
            Payment.objects.create(
                tenant=tenant,
                customer=customer,
                sale=sale,
                amount=applied,
                method=method,
                note=note or "",
                received_by=user,
                created_at=now,
            )
            allocations.append((sale, applied))
            remaining -= applied

        entry = CustomerDueLedger.apply_delta(
            tenant,
            customer,
            -amount,
            LedgerEntry.PAYMENT,
            remark="Payment received",
            payment_mode=method,
            source=LedgerEntry.SOURCE_DUE_REPORT,
            note=note,
            user=user,
            when=now,
        )

        if remaining > 0:
            logger.info(
                f"Customer {customer.pk} payment left {remaining} unallocated to sales "
                f"(due carried from outside open sales)"
            )
        return entry, allocations

    @staticmethod
    def record_expense(
        tenant: Tenant,
        amount: Decimal,
        note: str = "",
        category: str = "",
        payment_mode: str = LedgerEntry.METHOD_CASH,
        when=None,
        user=None,
    ) -> LedgerEntry:
        """Record a shop expense. Expenses carry no customer and no balance."""
        if amount <= 0:
            raise InvalidAmount("Invalid expense amount")
        entry = LedgerEntry.objects.create(
            tenant=tenant,
            customer=None,
            type=LedgerEntry.EXPENSE,
            amount=money(amount),
            balance_after=ZERO,
            payment_mode=payment_mode,
            source=LedgerEntry.SOURCE_MANUAL,
            remark="Expense",
            note=note or "",
            category=(category or "").strip().lower(),
            received_by=user,
            date=when or timezone.now(),
        )
        logger.info(f"Expense {entry.amount} ({entry.category or 'uncategorised'}) recorded")
        return entry
