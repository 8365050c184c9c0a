"""
Business reports for a tenant.

All reports are read-only and scoped to one tenant. Date ranges are inclusive
whole days in the configured time zone. Cancelled sales, and returns recorded
against them, are left out of sales and profit figures.
"""

import csv
import io
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db.models import Count, Sum
from django.utils import timezone

from apps.core.models import Tenant
from apps.core.utils import ZERO, format_quantity, money
from apps.crm.ledger import day_bounds
from apps.crm.models import Customer, LedgerEntry
from apps.sales.models import Return, Sale, SaleItem

logger = logging.getLogger(__name__)

HIGH_RISK = "HIGH RISK"
WATCH = "WATCH"

# Overdue sales at which a customer counts as high risk
HIGH_RISK_OVERDUE_SALES = 2


def _percent(part, whole):
    if not whole:
        return Decimal("0.00")
    return money(part * 100 / whole)


class ReportService:
    """Generate sales, profit, cash and due reports for a tenant."""

    def __init__(self, tenant: Tenant):
        self.tenant = tenant

    # Building blocks

    def _in_range(self, queryset, field, date_from, date_to):
        start, end = day_bounds(date_from, date_to)
        if start:
            queryset = queryset.filter(**{f"{field}__gte": start})
        if end:
            queryset = queryset.filter(**{f"{field}__lt": end})
        return queryset

    def _sales(self, date_from=None, date_to=None):
        queryset = Sale.objects.filter(tenant=self.tenant).exclude(status=Sale.CANCELLED)
        return self._in_range(queryset, "created_at", date_from, date_to)

    def _sale_items(self, date_from=None, date_to=None):
        return SaleItem.objects.filter(sale__in=self._sales(date_from, date_to))

    def _returns(self, date_from=None, date_to=None):
        queryset = Return.objects.filter(tenant=self.tenant).exclude(
            sale__status=Sale.CANCELLED
        )
        return self._in_range(queryset, "created_at", date_from, date_to)

    def _ledger(self, entry_type, date_from=None, date_to=None):
        queryset = LedgerEntry.objects.filter(tenant=self.tenant, type=entry_type)
        return self._in_range(queryset, "date", date_from, date_to)

    @staticmethod
    def _sum(queryset, field):
        return money(queryset.aggregate(total=Sum(field))["total"] or ZERO)

    @staticmethod
    def _cost_of(items):
        return money(sum((item.cost_total for item in items), ZERO))

    def expense_total(self, date_from=None, date_to=None) -> Decimal:
        return self._sum(self._ledger(LedgerEntry.EXPENSE, date_from, date_to), "amount")

    # Reports

    def range_report(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """
        Invoices billed in the range with sales, cash, udhaar and profit totals.

        Profit here is sales minus cost, discount and expenses.
        """
        sales = self._sales(date_from, date_to).order_by("-created_at")
        totals = sales.aggregate(
            total_invoices=Count("id"),
            total_sales=Sum("total_amount"),
            cash_total=Sum("paid_amount"),
            udhaar_total=Sum("pending_amount"),
            total_discount=Sum("discount"),
        )
        total_sales = money(totals["total_sales"] or ZERO)
        total_discount = money(totals["total_discount"] or ZERO)
        total_cost = self._cost_of(self._sale_items(date_from, date_to))
        total_expenses = self.expense_total(date_from, date_to)

        return {
            "from": date_from,
            "to": date_to,
            "total_invoices": totals["total_invoices"],
            "total_sales": total_sales,
            "cash_total": money(totals["cash_total"] or ZERO),
            "udhaar_total": money(totals["udhaar_total"] or ZERO),
            "total_cost": total_cost,
            "total_discount": total_discount,
            "total_expenses": total_expenses,
            "total_profit": total_sales - total_cost - total_discount - total_expenses,
            "sales": [
                {
                    "id": str(sale.pk),
                    "invoice_number": sale.invoice_number,
                    "customer_name": sale.customer_name or "Walk-in",
                    "shop_name": sale.shop_name,
                    "total_amount": sale.total_amount,
                    "paid_amount": sale.paid_amount,
                    "pending_amount": sale.pending_amount,
                    "status": sale.status,
                    "created_at": sale.created_at,
                }
                for sale in sales
            ],
        }

    def export_range_csv(self, date_from: date, date_to: date) -> str:
        """Render the range report's invoices as CSV."""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["Invoice", "Date", "Customer", "Total", "Paid", "Pending", "Status"])
        for sale in self._sales(date_from, date_to).order_by("-created_at"):
            writer.writerow(
                [
                    sale.invoice_number,
                    timezone.localtime(sale.created_at).strftime("%Y-%m-%d %H:%M"),
                    sale.customer_name or "Walk-in",
                    sale.total_amount,
                    sale.paid_amount,
                    sale.pending_amount,
                    sale.status,
                ]
            )
        return buffer.getvalue()

    def profit_summary(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """
        Profit after cost, discount, returns and expenses.

        Cost uses the cost snapshot taken on each sale line.
        """
        sales = self._sales(date_from, date_to)
        total_sales = self._sum(sales, "total_amount")
        total_discount = self._sum(sales, "discount")
        total_cost = self._cost_of(self._sale_items(date_from, date_to))
        return_impact = self._sum(self._returns(date_from, date_to), "total_return_amount")
        total_expenses = self.expense_total(date_from, date_to)

        profit = total_sales - total_cost - total_discount - return_impact - total_expenses
        return {
            "from": date_from,
            "to": date_to,
            "total_invoices": sales.count(),
            "total_sales": total_sales,
            "total_cost": total_cost,
            "total_discount": total_discount,
            "return_impact": return_impact,
            "total_expenses": total_expenses,
            "profit": profit,
            "profit_percent": _percent(profit, total_sales),
        }

    def product_profit(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """
        Per-product sales, cost and profit, best first.

        Each return's credited amount is spread over its lines in proportion to
        their value at sale price and taken off the matching product's profit.
        """
        rows = {}

        def row_for(product_id, name):
            key = str(product_id)
            if key not in rows:
                rows[key] = {
                    "product_id": key,
                    "product_name": name,
                    "sold_qty": ZERO,
                    "sales": ZERO,
                    "cost": ZERO,
                    "profit": ZERO,
                }
            return rows[key]

        for item in self._sale_items(date_from, date_to):
            row = row_for(item.product_id, item.product_name)
            row["sold_qty"] += item.quantity
            row["sales"] += item.line_total
            row["cost"] += item.cost_total

        returns = self._returns(date_from, date_to).prefetch_related("items__sale_item")
        for sale_return in returns:
            lines = list(sale_return.items.all())
            value = sum((line.amount for line in lines), ZERO)
            if value <= 0:
                continue
            scale = sale_return.total_return_amount / value
            for line in lines:
                row = row_for(line.product_id, line.sale_item.product_name)
                row["profit"] -= line.amount * scale

        products = []
        for row in rows.values():
            row["profit"] = money(row["profit"] + row["sales"] - row["cost"])
            row["sales"] = money(row["sales"])
            row["cost"] = money(row["cost"])
            row["sold_qty"] = format_quantity(row["sold_qty"])
            row["profit_percent"] = _percent(row["profit"], row["sales"])
            products.append(row)
        products.sort(key=lambda row: row["profit"], reverse=True)

        return {
            "from": date_from,
            "to": date_to,
            "total_products": len(products),
            "total_sales": money(sum((row["sales"] for row in products), ZERO)),
            "total_cost": money(sum((row["cost"] for row in products), ZERO)),
            "total_profit": money(sum((row["profit"] for row in products), ZERO)),
            "products": products,
        }

    def cash_summary(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """
        Money received: ledger payments plus cash taken on walk-in sales.

        Walk-in sales have no ledger, so their paid amount is added separately.
        """
        received_payments = self._sum(
            self._ledger(LedgerEntry.PAYMENT, date_from, date_to), "amount"
        )
        walk_in_cash = self._sum(
            self._sales(date_from, date_to).filter(customer__isnull=True), "paid_amount"
        )
        return {
            "from": date_from,
            "to": date_to,
            "cash_sales": walk_in_cash,
            "received_payments": received_payments,
            "total_cash": walk_in_cash + received_payments,
        }

    def cashbook(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """Payment entries in the range, oldest first, with their total."""
        entries = (
            self._ledger(LedgerEntry.PAYMENT, date_from, date_to)
            .select_related("customer", "sale")
            .order_by("date", "created_at")
        )
        rows = [
            {
                "id": str(entry.pk),
                "date": entry.date,
                "customer_name": entry.customer.name if entry.customer_id else "",
                "invoice_number": entry.sale.invoice_number if entry.sale_id else "",
                "amount": entry.amount,
                "payment_mode": entry.payment_mode,
                "source": entry.source,
                "remark": entry.remark,
            }
            for entry in entries
        ]
        return {
            "from": date_from,
            "to": date_to,
            "entries": rows,
            "total": money(sum((row["amount"] for row in rows), ZERO)),
        }

    def due_report(self) -> Dict[str, Any]:
        """Active customers who owe money, largest due first."""
        customers = Customer.objects.filter(
            tenant=self.tenant, is_active=True, due_amount__gt=0
        ).order_by("-due_amount", "name")
        rows = [
            {
                "id": str(customer.pk),
                "name": customer.name,
                "shop_name": customer.shop_name,
                "phone": customer.phone,
                "due_amount": customer.due_amount,
            }
            for customer in customers
        ]
        return {
            "customers": rows,
            "total_due": money(sum((row["due_amount"] for row in rows), ZERO)),
            "total_customers": len(rows),
        }

    def outstanding(self) -> Dict[str, Any]:
        sales = self._sales().filter(pending_amount__gt=0)
        return {
            "total_outstanding": self._sum(sales, "pending_amount"),
            "sales_count": sales.count(),
        }

    def _overdue_sales(self, today: Optional[date] = None):
        today = today or timezone.localdate()
        return self._sales().filter(pending_amount__gt=0, due_date__lt=today)

    def overdue(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Pending amounts on sales whose due date is before ``today``."""
        sales = self._overdue_sales(today)
        return {
            "total_overdue": self._sum(sales, "pending_amount"),
            "sales_count": sales.count(),
        }

    def risk_profile(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Customers with overdue sales, worst first.

        Two or more overdue sales is HIGH RISK, one is WATCH.
        """
        grouped = (
            self._overdue_sales(today)
            .filter(customer__isnull=False)
            .values("customer_id", "customer__name", "customer__phone")
            .annotate(overdue_sales=Count("id"), overdue_amount=Sum("pending_amount"))
            .order_by("-overdue_sales", "-overdue_amount")
        )
        profile = [
            {
                "customer_id": str(row["customer_id"]),
                "name": row["customer__name"],
                "phone": row["customer__phone"],
                "overdue_sales": row["overdue_sales"],
                "overdue_amount": money(row["overdue_amount"] or ZERO),
                "risk": HIGH_RISK if row["overdue_sales"] >= HIGH_RISK_OVERDUE_SALES else WATCH,
            }
            for row in grouped
        ]
        logger.debug(f"Risk profile for tenant {self.tenant.pk}: {len(profile)} customers")
        return profile
