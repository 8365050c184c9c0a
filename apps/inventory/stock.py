"""
Stock ledger: the only code that changes ``Product.stock``.

Stock is mutated in base units, inside an active transaction. Deductions are
conditional updates (``UPDATE ... WHERE stock >= qty``) so two concurrent sales
cannot both take the last units. A deduction that matches no row aborts the
enclosing unit of work with a retryable ``StockConflict``.
"""

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.core.exceptions import InsufficientStock, ProductNotFound, StockConflict
from apps.core.utils import format_quantity

from .models import Product

logger = logging.getLogger(__name__)


class StockLedger:
    """Conditional stock counters in base units."""

    @staticmethod
    def _require_transaction():
        if not transaction.get_connection().in_atomic_block:
            raise RuntimeError("Stock can only be changed inside a unit of work")

    @staticmethod
    def load_products(tenant, product_ids, lock=True):
        """
        Read the given products for ``tenant`` inside the current transaction.

        Returns:
            dict: product id -> Product. Missing or foreign products are absent.
        """
        queryset = Product.objects.filter(tenant=tenant, pk__in=set(product_ids))
        if lock:
            queryset = queryset.select_for_update()
        return {product.pk: product for product in queryset}

    @staticmethod
    def validate_availability(products, required):
        """
        Check every required quantity before any stock is written.

        Args:
            products: dict of product id -> Product read in this transaction
            required: dict of product id -> base quantity needed

        Raises:
            InsufficientStock: for the first product that cannot cover its need
        """
        for product_id, required_qty in required.items():
            product = products[product_id]
            if product.stock < required_qty:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}. "
                    f"Available: {format_quantity(product.stock)} {product.base_unit}, "
                    f"Required: {format_quantity(required_qty)} {product.base_unit}",
                    product_id=str(product_id),
                )

    @staticmethod
    def reserve_and_deduct(tenant, product_id, required_base_qty):
        """
        Deduct ``required_base_qty`` only if enough stock is left.

        Raises:
            StockConflict: when the conditional update affects no row
        """
        StockLedger._require_transaction()
        updated = Product.objects.filter(
            tenant=tenant, pk=product_id, stock__gte=required_base_qty
        ).update(stock=F("stock") - required_base_qty, updated_at=timezone.now())
        if updated != 1:
            logger.warning(
                f"Stock deduction lost the race for product {product_id} "
                f"(required {required_base_qty})"
            )
            raise StockConflict(product_id=str(product_id))

    @staticmethod
    def deduct_all(tenant, required):
        """Deduct every ``{product_id: base_qty}`` entry or none of them."""
        for product_id, required_qty in required.items():
            StockLedger.reserve_and_deduct(tenant, product_id, required_qty)

    @staticmethod
    def restore(tenant, product_id, base_qty):
        """Put stock back after a return or cancellation."""
        StockLedger._increment(tenant, product_id, base_qty)

    @staticmethod
    def add(tenant, product_id, base_qty):
        """Add received stock from a purchase."""
        StockLedger._increment(tenant, product_id, base_qty)

    @staticmethod
    def _increment(tenant, product_id, base_qty):
        StockLedger._require_transaction()
        updated = Product.objects.filter(tenant=tenant, pk=product_id).update(
            stock=F("stock") + base_qty, updated_at=timezone.now()
        )
        if updated != 1:
            raise ProductNotFound()

    @staticmethod
    def low_stock(tenant):
        """Active products at or below their alert level."""
        return Product.objects.filter(
            tenant=tenant, is_active=True, stock__lte=F("min_stock_alert")
        ).order_by("stock", "name")
