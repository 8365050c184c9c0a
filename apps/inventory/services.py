"""
Purchase receipt: adds received goods to stock in one unit of work.
"""

import logging

from apps.core.exceptions import InvalidPrice, InvalidQuantity, ProductNotFound, ValidationFailed
from apps.core.unit_of_work import UnitOfWork
from apps.core.utils import ZERO, money, parse_uuid, to_decimal

from . import units
from .models import Purchase, PurchaseItem
from .stock import StockLedger

logger = logging.getLogger(__name__)


class PurchaseService:
    """Records supplier purchases."""

    def __init__(self, unit_of_work_factory=None):
        self.unit_of_work_factory = unit_of_work_factory or UnitOfWork

    def receive(self, context, items, supplier_name="", invoice_number=""):
        """
        Receive a purchase.

        Each item is ``{"product_id", "unit", "quantity", "cost_price"}`` where
        ``cost_price`` is the cost of one ``unit``. Stock grows by the base
        quantity and ``last_purchase_cost`` becomes the cost of one base unit.
        """
        if not items:
            raise ValidationFailed("No purchase items provided")

        lines = [self._parse_line(item) for item in items]

        with self.unit_of_work_factory():
            products = StockLedger.load_products(
                context.tenant, [line["product_id"] for line in lines]
            )
            purchase = Purchase.objects.create(
                tenant=context.tenant,
                supplier_name=supplier_name or "",
                invoice_number=invoice_number or "",
                created_by=context.user,
            )

            total = ZERO
            for line in lines:
                product = products.get(line["product_id"])
                if product is None:
                    raise ProductNotFound()

                factor = units.conversion_factor(product, line["unit"])
                base_qty = units.to_base_quantity(product, line["unit"], line["quantity"])
                line_cost = money(line["cost_price"] * line["quantity"])
                total += line_cost

                StockLedger.add(context.tenant, product.pk, base_qty)
                product.last_purchase_cost = money(line["cost_price"] / factor)
                product.save(update_fields=["last_purchase_cost", "updated_at"])

                PurchaseItem.objects.create(
                    purchase=purchase,
                    product=product,
                    product_name=product.name,
                    unit=units.normalize_unit(line["unit"]),
                    quantity=line["quantity"],
                    cost_price=line["cost_price"],
                    total_cost=line_cost,
                    converted_base_quantity=base_qty,
                    conversion_factor=factor,
                )

            purchase.total_amount = money(total)
            purchase.save(update_fields=["total_amount"])

        logger.info(
            f"Purchase {purchase.id} received for tenant {context.tenant_id}: "
            f"{len(lines)} lines, total {purchase.total_amount}"
        )
        return purchase

    @staticmethod
    def _parse_line(item):
        unit = units.normalize_unit(item.get("unit"))
        if not unit:
            raise ValidationFailed("Purchase unit is required")
        try:
            qty = to_decimal(item.get("quantity"))
        except ValueError as exc:
            raise InvalidQuantity("Invalid purchase quantity") from exc
        if qty <= 0:
            raise InvalidQuantity("Invalid purchase quantity")
        try:
            cost = to_decimal(item.get("cost_price"))
        except ValueError as exc:
            raise InvalidPrice("Invalid purchase cost") from exc
        if cost < 0:
            raise InvalidPrice("Invalid purchase cost")
        return {
            "product_id": parse_uuid(item.get("product_id"), ProductNotFound),
            "unit": unit,
            "quantity": qty,
            "cost_price": cost,
        }
