"""
Sale transaction coordinator.

Every operation that moves money or stock runs as one unit of work: it reads and
locks what it needs, validates everything, then writes the sale, stock, customer
due and ledger history together. Any error aborts the whole unit, so no entity
is ever left partially updated.

Concurrency errors surface as retryable ``WriteConflict``/``StockConflict``; the
coordinator never retries on its own. Sale creation is idempotent per
``(tenant, idempotency_key)``.
"""

import logging
from decimal import Decimal
from typing import List, NamedTuple, Optional, Tuple

from django.db import IntegrityError
from django.utils import timezone

from apps.core.exceptions import (
    Conflict,
    CustomerMismatch,
    DiscountExceedsTotal,
    InvalidAmount,
    InvalidPrice,
    InvalidQuantity,
    ItemNotInSale,
    PaymentExceedsPayable,
    ProductNotFound,
    ReturnExceedsSoldQuantity,
    SaleAlreadyCancelled,
    SaleNotFound,
    ValidationFailed,
)
from apps.core.tenant_context import RequestContext
from apps.core.unit_of_work import UnitOfWork
from apps.core.utils import ZERO, money, parse_uuid, quantity, to_decimal
from apps.crm.ledger import CustomerDueLedger
from apps.crm.models import LedgerEntry
from apps.inventory import units
from apps.inventory.stock import StockLedger

from .models import Adjustment, InvoiceSequence, Payment, Return, ReturnItem, Sale, SaleItem

logger = logging.getLogger(__name__)

PAYMENT_METHODS = [choice for choice, _ in LedgerEntry.METHOD_CHOICES]


class CreateSaleResult(NamedTuple):
    sale: Sale
    replayed: bool


def parse_amount(value, message="Invalid amount", default=None, allow_zero=False) -> Decimal:
    """Parse a money amount, rejecting negatives (and zero unless ``allow_zero``)."""
    try:
        amount = to_decimal(value, default=default)
    except ValueError as exc:
        raise InvalidAmount(message) from exc
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(message)
    return money(amount)


def parse_quantity(value) -> Decimal:
    try:
        qty = to_decimal(value)
    except ValueError as exc:
        raise InvalidQuantity() from exc
    if qty <= 0:
        raise InvalidQuantity()
    return quantity(qty)


def normalize_method(value) -> str:
    method = str(value or LedgerEntry.METHOD_CASH).strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationFailed(f"Invalid payment method '{method}'")
    return method


def normalize_return_type(value) -> str:
    """Anything other than an explicit price adjustment is a stock return."""
    if str(value or "").strip().upper() == Return.PRICE_ADJUSTMENT:
        return Return.PRICE_ADJUSTMENT
    return Return.STOCK_RETURN


class SaleService:
    """
    Coordinates sale creation, payments, returns, adjustments and cancellation.

    ``unit_of_work_factory`` builds the unit of work each operation runs in. It
    defaults to a database transaction; tests substitute failing or recording
    implementations.
    """

    def __init__(self, unit_of_work_factory=None):
        self.unit_of_work_factory = unit_of_work_factory or UnitOfWork

    # Lookups

    @staticmethod
    def find_by_idempotency_key(tenant, key: str) -> Optional[Sale]:
        return Sale.objects.filter(tenant=tenant, idempotency_key=key).first()

    @staticmethod
    def get_sale(tenant, sale_id) -> Sale:
        sale_id = parse_uuid(sale_id, SaleNotFound)
        try:
            return Sale.objects.get(tenant=tenant, pk=sale_id)
        except Sale.DoesNotExist:
            raise SaleNotFound()

    @staticmethod
    def _lock_sale(tenant, sale_id) -> Sale:
        sale_id = parse_uuid(sale_id, SaleNotFound)
        try:
            return Sale.objects.select_for_update().get(tenant=tenant, pk=sale_id)
        except Sale.DoesNotExist:
            raise SaleNotFound()

    # Create

    def create_sale(
        self,
        context: RequestContext,
        items: List[dict],
        customer_id=None,
        discount=None,
        payment_received=None,
        idempotency_key: str = "",
        delivery_address: str = "",
        due_date=None,
    ) -> CreateSaleResult:
        """
        Bill a sale.

        Each item is ``{"product_id", "unit", "quantity"}``. Prices, costs and
        conversions are taken from the product inside the transaction.

        Returns:
            CreateSaleResult: the sale and whether it was an idempotent replay
        """
        key = (idempotency_key or "").strip()
        if key:
            existing = self.find_by_idempotency_key(context.tenant, key)
            if existing is not None:
                logger.info(f"Replaying sale {existing.invoice_number} for key {key}")
                return CreateSaleResult(existing, True)

        payment = parse_amount(
            payment_received, "Invalid payment amount", default="0", allow_zero=True
        )
        try:
            discount = max(ZERO, money(to_decimal(discount, default="0")))
        except ValueError as exc:
            raise InvalidAmount("Invalid discount") from exc

        if not items:
            raise ValidationFailed("No items provided")
        lines = [
            {
                "product_id": parse_uuid(item.get("product_id"), ProductNotFound),
                "unit": units.normalize_unit(item.get("unit")),
                "quantity": parse_quantity(item.get("quantity")),
            }
            for item in items
        ]

        try:
            with self.unit_of_work_factory():
                sale = self._create_sale(
                    context, lines, customer_id, discount, payment, key, delivery_address, due_date
                )
        except IntegrityError as exc:
            if not key:
                logger.warning(f"Unique constraint conflict creating sale: {exc}")
                raise Conflict("Duplicate sale") from exc
            existing = self.find_by_idempotency_key(context.tenant, key)
            if existing is None:
                raise Conflict("Duplicate sale") from exc
            logger.info(f"Concurrent create resolved as replay of {existing.invoice_number}")
            return CreateSaleResult(existing, True)

        logger.info(
            f"Sale {sale.invoice_number} created for tenant {context.tenant_id}: "
            f"final {sale.final_amount}, paid {sale.paid_amount}, pending {sale.pending_amount}"
        )
        return CreateSaleResult(sale, False)

    def _create_sale(
        self, context, lines, customer_id, discount, payment, key, delivery_address, due_date
    ) -> Sale:
        tenant = context.tenant
        customer = CustomerDueLedger.lock_customer(tenant, customer_id) if customer_id else None
        products = StockLedger.load_products(tenant, [line["product_id"] for line in lines])

        priced_lines = []
        required = {}
        for line in lines:
            product = products.get(line["product_id"])
            if product is None or not product.is_active:
                raise ProductNotFound()

            factor = units.conversion_factor(product, line["unit"])
            base_qty = units.to_base_quantity(product, line["unit"], line["quantity"])
            price, line_total = units.line_total(product, line["unit"], line["quantity"])
            if line_total <= 0:
                raise InvalidPrice("Invalid price")

            required[product.pk] = required.get(product.pk, ZERO) + base_qty
            priced_lines.append(
                SaleItem(
                    product=product,
                    product_name=product.name,
                    unit=line["unit"],
                    quantity=line["quantity"],
                    unit_price=price,
                    line_total=line_total,
                    cost_price_at_sale=money(product.last_purchase_cost * factor),
                    converted_base_quantity=base_qty,
                    conversion_factor_at_sale=factor,
                    base_unit_at_sale=product.base_unit,
                )
            )

        StockLedger.validate_availability(products, required)

        total = money(sum((item.line_total for item in priced_lines), ZERO))
        if discount > total:
            raise DiscountExceedsTotal()
        final = total - discount
        if payment > final:
            raise PaymentExceedsPayable()

        sale = Sale(
            tenant=tenant,
            invoice_number=InvoiceSequence.next_invoice_number(tenant),
            customer=customer,
            customer_name=customer.name if customer else "",
            shop_name=customer.shop_name if customer else "",
            phone=customer.phone if customer else "",
            address=customer.address if customer else "",
            delivery_address=delivery_address or "",
            total_amount=total,
            discount=discount,
            final_amount=final,
            paid_amount=payment,
            pending_amount=final - payment,
            idempotency_key=key,
            created_by=context.user,
        )
        if due_date:
            sale.due_date = due_date
        sale.sync_status()
        sale.save()

        for item in priced_lines:
            item.sale = sale
        SaleItem.objects.bulk_create(priced_lines)

        StockLedger.deduct_all(tenant, required)

        if customer is not None:
            now = timezone.now()
            CustomerDueLedger.apply_delta(
                tenant,
                customer,
                sale.pending_amount,
                LedgerEntry.SALE,
                remark=f"Sale {sale.invoice_number}",
                sale=sale,
                user=context.user,
                when=now,
            )
            if payment > 0:
                CustomerDueLedger.record_entry(
                    tenant,
                    customer,
                    payment,
                    LedgerEntry.PAYMENT,
                    remark=f"Paid at billing {sale.invoice_number}",
                    sale=sale,
                    user=context.user,
                    when=now,
                )
                Payment.objects.create(
                    tenant=tenant,
                    customer=customer,
                    sale=sale,
                    amount=payment,
                    method=LedgerEntry.METHOD_CASH,
                    received_by=context.user,
                    created_at=now,
                )
        return sale

    # Payments

    def receive_payment(
        self,
        context: RequestContext,
        sale_id,
        amount,
        method=None,
        note: str = "",
        customer_id=None,
    ) -> Tuple[Sale, Payment]:
        """
        Record money received against one sale.

        ``customer_id``, when given, must be the sale's customer.
        """
        amount = parse_amount(amount, "Invalid payment amount")
        method = normalize_method(method)
        tenant = context.tenant

        with self.unit_of_work_factory():
            sale = self._lock_sale(tenant, sale_id)
            sale.ensure_not_cancelled()
            sale.require_customer("Customer required for payment")
            if customer_id is not None:
                if parse_uuid(customer_id, CustomerMismatch) != sale.customer_id:
                    raise CustomerMismatch()
            customer = CustomerDueLedger.lock_customer(tenant, sale.customer_id)

            sale.apply_payment(amount)
            sale.save(update_fields=Sale.BALANCE_FIELDS)

            now = timezone.now()
            payment = Payment.objects.create(
                tenant=tenant,
                customer=customer,
                sale=sale,
                amount=amount,
                method=method,
                note=note or "",
                received_by=context.user,
                created_at=now,
            )
            CustomerDueLedger.apply_delta(
                tenant,
                customer,
                -amount,
                LedgerEntry.PAYMENT,
                remark=f"Payment for {sale.invoice_number}",
                sale=sale,
                payment_mode=method,
                note=note,
                user=context.user,
                when=now,
            )

        logger.info(
            f"Payment {amount} ({method}) on {sale.invoice_number}: pending {sale.pending_amount}"
        )
        return sale, payment

    def receive_customer_payment(
        self, context: RequestContext, customer_id, amount, method=None, note: str = ""
    ):
        """
        Record a payment against a customer's account, allocated FIFO over open sales.

        Returns:
            tuple: ``(customer, ledger_entry, [(sale, applied_amount), ...])``
        """
        amount = parse_amount(amount, "Invalid payment amount")
        method = normalize_method(method)

        with self.unit_of_work_factory():
            customer = CustomerDueLedger.lock_customer(context.tenant, customer_id)
            entry, allocations = CustomerDueLedger.reconcile_open_sales(
                context.tenant, customer, amount, method=method, note=note, user=context.user
            )

        logger.info(
            f"Customer {customer.pk} paid {amount} across {len(allocations)} sales: "
            f"due now {customer.due_amount}"
        )
        return customer, entry, allocations

    # Returns

    def process_return(
        self,
        context: RequestContext,
        sale_id,
        items: List[dict],
        return_type=None,
        note: str = "",
        adjust_amount=None,
    ) -> Return:
        """
        Take goods back against a sale, or credit a price adjustment on sold items.

        Each item is ``{"sale_item_id" | "product_id", "quantity"}``.

        STOCK_RETURN credits ``price_at_sale x quantity`` per line and puts the
        goods back into stock using the conversion recorded at sale time.
        PRICE_ADJUSTMENT credits exactly ``adjust_amount``, which may not exceed
        the value of the listed items, and leaves stock alone.
        """
        return_type = normalize_return_type(return_type)
        if not items:
            raise ValidationFailed("No return items provided")
        is_stock_return = return_type == Return.STOCK_RETURN
        tenant = context.tenant

        with self.unit_of_work_factory():
            sale = self._lock_sale(tenant, sale_id)
            sale.ensure_not_cancelled()
            sale.require_customer("Customer required for return")

            sale_items = list(sale.items.select_for_update())
            requested = {}
            lines = []
            for item in items:
                qty = parse_quantity(item.get("quantity"))
                sale_item = self._match_sale_item(sale_items, item, qty, requested, is_stock_return)

                if qty > sale_item.quantity:
                    raise ReturnExceedsSoldQuantity()
                already = sale_item.returned_qty + requested.get(sale_item.pk, ZERO)
                if is_stock_return and already + qty > sale_item.quantity:
                    raise ReturnExceedsSoldQuantity(
                        f"Return quantity exceeds sold quantity for {sale_item.product_name}"
                    )
                if sale_item.unit_price <= 0:
                    raise InvalidPrice()

                requested[sale_item.pk] = requested.get(sale_item.pk, ZERO) + qty
                lines.append((sale_item, qty))

            nominal = money(sum((item.unit_price * qty for item, qty in lines), ZERO))
            if is_stock_return:
                refund = nominal
            else:
                refund = parse_amount(adjust_amount, "Invalid adjustment amount")
                if refund > nominal:
                    raise InvalidAmount("Adjustment amount exceeds item value")
            if refund <= 0:
                raise InvalidAmount("Invalid return amount")

            customer = CustomerDueLedger.lock_customer(tenant, sale.customer_id)
            sale.apply_return(refund)
            sale.save(update_fields=Sale.BALANCE_FIELDS)

            sale_return = Return.objects.create(
                tenant=tenant,
                sale=sale,
                customer=customer,
                return_type=return_type,
                total_return_amount=refund,
                note=note or "",
                created_by=context.user,
            )

            return_items = []
            for sale_item, qty in lines:
                restored = ZERO
                if is_stock_return:
                    restored = quantity(sale_item.conversion_factor_at_sale * qty)
                    StockLedger.restore(tenant, sale_item.product_id, restored)
                    sale_item.returned_qty += qty
                    sale_item.save(update_fields=["returned_qty"])
                return_items.append(
                    ReturnItem(
                        sale_return=sale_return,
                        sale_item=sale_item,
                        product_id=sale_item.product_id,
                        quantity=qty,
                        price_at_sale=sale_item.unit_price,
                        restored_base_quantity=restored,
                    )
                )
            ReturnItem.objects.bulk_create(return_items)

            CustomerDueLedger.apply_delta(
                tenant,
                customer,
                -refund,
                LedgerEntry.RETURN,
                remark="Return processed" if is_stock_return else "Price adjustment",
                sale=sale,
                note=note,
                user=context.user,
            )

        logger.info(
            f"{return_type} of {refund} on {sale.invoice_number}: pending {sale.pending_amount}"
        )
        return sale_return

    @staticmethod
    def _match_sale_item(sale_items, item, qty, requested, is_stock_return) -> SaleItem:
        """Resolve a return line to a sale line by sale item id or product id."""
        if item.get("sale_item_id") is not None:
            for sale_item in sale_items:
                if str(sale_item.pk) == str(item["sale_item_id"]):
                    return sale_item
            raise ItemNotInSale()

        product_id = parse_uuid(item.get("product_id"), ItemNotInSale)
        candidates = [line for line in sale_items if line.product_id == product_id]
        if not candidates:
            raise ItemNotInSale()
        if is_stock_return:
            for line in candidates:
                if line.returnable_qty - requested.get(line.pk, ZERO) >= qty:
                    return line
        return candidates[0]

    def returnable_items(self, context: RequestContext, sale_id) -> List[dict]:
        """Lines of a sale with how much of each can still be returned."""
        sale = self.get_sale(context.tenant, sale_id)
        if sale.status == Sale.CANCELLED:
            return []
        return [
            {
                "sale_item_id": item.pk,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "unit": item.unit,
                "sold_qty": item.quantity,
                "returned_qty": item.returned_qty,
                "returnable_qty": item.returnable_qty,
                "price_at_sale": item.unit_price,
            }
            for item in sale.items.all()
            if item.returnable_qty > 0
        ]

    # Adjustments

    def adjust(
        self, context: RequestContext, sale_id, amount, reason, note: str = ""
    ) -> Adjustment:
        """Reduce a sale's pending amount for a rate fix or damage."""
        reason = str(reason or "").strip().upper()
        if reason == Adjustment.RETURN:
            raise ValidationFailed("Use the return endpoint for item returns")
        if reason not in (Adjustment.RATE_FIX, Adjustment.DAMAGE):
            raise ValidationFailed("Invalid adjustment reason")
        amount = parse_amount(amount, "Invalid adjustment amount")
        tenant = context.tenant

        with self.unit_of_work_factory():
            sale = self._lock_sale(tenant, sale_id)
            sale.ensure_not_cancelled()
            sale.apply_adjustment(amount)
            sale.save(update_fields=Sale.BALANCE_FIELDS)

            adjustment = Adjustment.objects.create(
                tenant=tenant,
                sale=sale,
                amount=amount,
                reason=reason,
                note=note or "",
                created_by=context.user,
            )

            if sale.customer_id is not None:
                customer = CustomerDueLedger.lock_customer(tenant, sale.customer_id)
                CustomerDueLedger.apply_delta(
                    tenant,
                    customer,
                    -amount,
                    LedgerEntry.ADJUSTMENT,
                    remark=f"{adjustment.get_reason_display()} adjustment",
                    sale=sale,
                    note=note,
                    user=context.user,
                )

        logger.info(f"{reason} adjustment of {amount} on {sale.invoice_number}")
        return adjustment

    # Cancellation

    def cancel(self, context: RequestContext, sale_id) -> Sale:
        """
        Fully reverse a sale.

        Every line's billed base quantity goes back into stock. The outstanding
        balance is written off and removed from the customer's due.
        """
        tenant = context.tenant

        with self.unit_of_work_factory():
            sale = self._lock_sale(tenant, sale_id)
            if sale.status == Sale.CANCELLED:
                raise SaleAlreadyCancelled()

            for item in sale.items.all():
                StockLedger.restore(tenant, item.product_id, item.converted_base_quantity)

            written_off = sale.write_off_pending()
            sale.cancel()
            sale.save(update_fields=Sale.BALANCE_FIELDS)

            if sale.customer_id is not None and written_off > 0:
                customer = CustomerDueLedger.lock_customer(tenant, sale.customer_id)
                CustomerDueLedger.apply_delta(
                    tenant,
                    customer,
                    -written_off,
                    LedgerEntry.ADJUSTMENT,
                    remark=f"Sale {sale.invoice_number} cancelled",
                    sale=sale,
                    user=context.user,
                )

        logger.info(f"Sale {sale.invoice_number} cancelled, {written_off} written off")
        return sale

    # Queries

    @staticmethod
    def open_sales(context: RequestContext, customer_id=None):
        """Sales with money still owed, oldest first."""
        queryset = Sale.objects.filter(
            tenant=context.tenant,
            status__in=[Sale.OPEN, Sale.PARTIAL],
            pending_amount__gt=0,
        )
        if customer_id:
            queryset = queryset.filter(customer_id=parse_uuid(customer_id, SaleNotFound))
        return queryset.order_by("created_at", "invoice_number")
