"""
Tests for the sale transaction coordinator.

Covers sale creation, payments, returns, adjustments and cancellation, and the
balance invariants that must hold after each of them.
"""

from decimal import Decimal

import pytest

from apps.core.exceptions import (
    AdjustmentExceedsBalance,
    CustomerMismatch,
    CustomerNotFound,
    CustomerRequired,
    DiscountExceedsTotal,
    InsufficientStock,
    InvalidAmount,
    ItemNotInSale,
    PaymentExceedsBalance,
    PaymentExceedsPayable,
    ProductNotFound,
    ReturnExceedsPending,
    ReturnExceedsSoldQuantity,
    SaleAlreadyCancelled,
    SaleNotFound,
    StockConflict,
    UnknownUnit,
    ValidationFailed,
    WriteConflict,
)
from apps.core.unit_of_work import UnitOfWork
from apps.crm.models import LedgerEntry
from apps.inventory.models import Product
from apps.inventory.stock import StockLedger
from apps.sales.models import Adjustment, Payment, Return, Sale
from apps.sales.services import SaleService


def assert_consistent(sale, customer=None):
    """Balance identity on the sale and due/ledger agreement on the customer."""
    sale.refresh_from_db()
    assert sale.balance_is_consistent()
    assert sale.pending_amount == sale.balance_amount == sale.due_amount
    if sale.status != Sale.CANCELLED:
        assert sale.status == sale.derived_status()
    if customer is not None:
        customer.refresh_from_db()
        last = LedgerEntry.objects.filter(customer=customer).order_by("date", "created_at").last()
        assert last is not None
        assert last.balance_after == customer.due_amount


@pytest.mark.django_db
class TestCreateSale:
    def test_box_sale_converts_to_base_units(self, make_sale, product):
        sale = make_sale(quantity="2", unit="box")

        item = sale.items.get()
        product.refresh_from_db()
        assert item.unit_price == Decimal("110.00")
        assert item.line_total == Decimal("220.00")
        assert item.converted_base_quantity == Decimal("24.000")
        assert item.conversion_factor_at_sale == Decimal("12")
        assert item.cost_price_at_sale == Decimal("72.00")
        assert product.stock == Decimal("76.000")
        assert sale.total_amount == Decimal("220.00")

    def test_partial_payment_sets_status_and_ledger(self, make_sale, customer):
        sale = make_sale(customer=customer, quantity="100", payment_received="400")

        assert sale.final_amount == Decimal("1000.00")
        assert sale.pending_amount == Decimal("600.00")
        assert sale.status == Sale.PARTIAL
        customer.refresh_from_db()
        assert customer.due_amount == Decimal("600.00")

        sale_entry = LedgerEntry.objects.get(sale=sale, type=LedgerEntry.SALE)
        paid_entry = LedgerEntry.objects.get(sale=sale, type=LedgerEntry.PAYMENT)
        assert sale_entry.amount == Decimal("600.00")
        assert paid_entry.amount == Decimal("400.00")
        assert paid_entry.balance_after == Decimal("600.00")
        assert Payment.objects.get(sale=sale).amount == Decimal("400.00")
        assert_consistent(sale, customer)

    def test_fully_paid_sale(self, make_sale, customer):
        sale = make_sale(customer=customer, quantity="5", payment_received="50")

        assert sale.status == Sale.PAID
        assert sale.pending_amount == Decimal("0.00")

    def test_unpaid_sale_is_open(self, make_sale, customer):
        sale = make_sale(customer=customer, quantity="5")

        assert sale.status == Sale.OPEN
        assert_consistent(sale, customer)

    def test_discount(self, make_sale):
        sale = make_sale(quantity="10", discount="15.50", payment_received="20")

        assert sale.total_amount == Decimal("100.00")
        assert sale.final_amount == Decimal("84.50")
        assert sale.pending_amount == Decimal("64.50")

    def test_negative_discount_is_clamped_to_zero(self, make_sale):
        sale = make_sale(quantity="10", discount="-5")

        assert sale.discount == Decimal("0.00")
        assert sale.final_amount == Decimal("100.00")

    def test_discount_above_total(self, make_sale):
        with pytest.raises(DiscountExceedsTotal):
            make_sale(quantity="1", discount="10.01")

    def test_payment_above_payable(self, make_sale):
        with pytest.raises(PaymentExceedsPayable):
            make_sale(quantity="1", discount="2", payment_received="8.01")

    def test_negative_payment(self, make_sale):
        with pytest.raises(InvalidAmount):
            make_sale(quantity="1", payment_received="-1")

    def test_no_items(self, sale_service, context):
        with pytest.raises(ValidationFailed):
            sale_service.create_sale(context, [])

    def test_unknown_unit(self, make_sale):
        with pytest.raises(UnknownUnit):
            make_sale(unit="crate")

    def test_inactive_product(self, make_sale, make_product):
        retired = make_product(name="Retired", is_active=False)

        with pytest.raises(ProductNotFound):
            make_sale(target=retired)

    def test_other_tenants_product(self, make_sale, make_product, other_tenant):
        foreign = make_product(name="Foreign", tenant=other_tenant)

        with pytest.raises(ProductNotFound):
            make_sale(target=foreign)

    def test_other_tenants_customer(self, make_sale, make_customer, other_tenant):
        foreign = make_customer(name="Foreign", tenant=other_tenant)

        with pytest.raises(CustomerNotFound):
            make_sale(customer=foreign)

    def test_invoice_numbers_are_sequential_per_tenant(self, make_sale):
        first = make_sale(quantity="1")
        second = make_sale(quantity="1")

        assert first.invoice_number == "INV-00000001"
        assert second.invoice_number == "INV-00000002"

    def test_walk_in_sale_has_no_ledger_entries(self, make_sale):
        sale = make_sale(quantity="10", payment_received="40")

        assert sale.customer is None
        assert sale.status == Sale.PARTIAL
        assert not LedgerEntry.objects.exists()
        assert not Payment.objects.exists()

    def test_lines_of_the_same_product_are_aggregated(
        self, sale_service, context, make_product, customer
    ):
        product = make_product(stock="30")
        items = [
            {"product_id": str(product.pk), "unit": "box", "quantity": "2"},
            {"product_id": str(product.pk), "unit": "piece", "quantity": "7"},
        ]

        with pytest.raises(InsufficientStock) as excinfo:
            sale_service.create_sale(context, items, customer_id=str(customer.pk))

        assert "Required: 31 piece" in excinfo.value.message


@pytest.mark.django_db
class TestCreateSaleAtomicity:
    def test_insufficient_stock_leaves_nothing_behind(
        self, sale_service, context, make_product, customer
    ):
        rice = make_product(name="Rice", stock="50")
        dal = make_product(name="Dal", stock="5")
        items = [
            {"product_id": str(rice.pk), "unit": "piece", "quantity": "10"},
            {"product_id": str(dal.pk), "unit": "piece", "quantity": "6"},
        ]

        with pytest.raises(InsufficientStock):
            sale_service.create_sale(context, items, customer_id=str(customer.pk))

        rice.refresh_from_db()
        dal.refresh_from_db()
        customer.refresh_from_db()
        assert rice.stock == Decimal("50.000")
        assert dal.stock == Decimal("5.000")
        assert customer.due_amount == Decimal("0.00")
        assert not Sale.objects.exists()
        assert not LedgerEntry.objects.exists()

    def test_lost_stock_race_is_retryable(self, make_sale, product, customer, monkeypatch):
        monkeypatch.setattr(StockLedger, "validate_availability", lambda products, required: None)

        with pytest.raises(StockConflict) as excinfo:
            make_sale(customer=customer, quantity="101")

        assert excinfo.value.retryable is True
        product.refresh_from_db()
        customer.refresh_from_db()
        assert product.stock == Decimal("100.000")
        assert customer.due_amount == Decimal("0.00")
        assert not Sale.objects.exists()

    def test_failed_commit_rolls_everything_back(self, context, product, customer):
        class ConflictingUnitOfWork(UnitOfWork):
            def commit(self):
                self.abort()
                raise WriteConflict()

        service = SaleService(unit_of_work_factory=ConflictingUnitOfWork)
        items = [{"product_id": str(product.pk), "unit": "piece", "quantity": "3"}]

        with pytest.raises(WriteConflict):
            service.create_sale(context, items, customer_id=str(customer.pk))

        product.refresh_from_db()
        assert product.stock == Decimal("100.000")
        assert not Sale.objects.exists()
        assert not LedgerEntry.objects.exists()


@pytest.mark.django_db
class TestIdempotency:
    def test_same_key_returns_the_same_sale(self, sale_service, context, product, customer):
        items = [{"product_id": str(product.pk), "unit": "piece", "quantity": "4"}]

        first = sale_service.create_sale(
            context, items, customer_id=str(customer.pk), idempotency_key="bill-42"
        )
        second = sale_service.create_sale(
            context, items, customer_id=str(customer.pk), idempotency_key="bill-42"
        )

        assert first.replayed is False
        assert second.replayed is True
        assert second.sale.pk == first.sale.pk
        assert Sale.objects.count() == 1
        product.refresh_from_db()
        customer.refresh_from_db()
        assert product.stock == Decimal("96.000")
        assert customer.due_amount == Decimal("40.00")

    def test_keys_are_scoped_per_tenant(
        self, sale_service, context, make_product, other_tenant, django_user_model
    ):
        from apps.core.tenant_context import context_for_user

        other_user = django_user_model.objects.create_user(
            username="other", password="x", tenant=other_tenant, role="TENANT_OWNER"
        )
        mine = make_product(name="Mine")
        theirs = make_product(name="Theirs", tenant=other_tenant)

        first = sale_service.create_sale(
            context,
            [{"product_id": str(mine.pk), "unit": "piece", "quantity": "1"}],
            idempotency_key="shared",
        )
        second = sale_service.create_sale(
            context_for_user(other_user),
            [{"product_id": str(theirs.pk), "unit": "piece", "quantity": "1"}],
            idempotency_key="shared",
        )

        assert second.replayed is False
        assert second.sale.pk != first.sale.pk

    def test_concurrent_duplicate_resolves_as_replay(
        self, sale_service, context, product, monkeypatch
    ):
        items = [{"product_id": str(product.pk), "unit": "piece", "quantity": "2"}]
        original = sale_service.create_sale(context, items, idempotency_key="race")

        real_lookup = SaleService.find_by_idempotency_key
        calls = []

        def lookup(tenant, key):
            calls.append(key)
            if len(calls) == 1:
                return None
            return real_lookup(tenant, key)

        monkeypatch.setattr(SaleService, "find_by_idempotency_key", staticmethod(lookup))

        result = sale_service.create_sale(context, items, idempotency_key="race")

        assert result.replayed is True
        assert result.sale.pk == original.sale.pk
        assert len(calls) == 2
        product.refresh_from_db()
        assert product.stock == Decimal("98.000")


@pytest.mark.django_db
class TestReceivePayment:
    def test_payment_clears_pending(self, sale_service, context, make_sale, customer):
        sale = make_sale(customer=customer, quantity="100", payment_received="400")

        sale, payment = sale_service.receive_payment(context, sale.pk, "600", method="upi")

        assert sale.pending_amount == Decimal("0.00")
        assert sale.status == Sale.PAID
        assert payment.method == "upi"
        customer.refresh_from_db()
        assert customer.due_amount == Decimal("0.00")
        entry = LedgerEntry.objects.get(sale=sale, payment_mode="upi")
        assert entry.type == LedgerEntry.PAYMENT
        assert entry.balance_after == Decimal("0.00")
        assert_consistent(sale, customer)

    def test_payment_above_pending_changes_nothing(
        self, sale_service, context, make_sale, customer
    ):
        sale = make_sale(customer=customer, quantity="100", payment_received="400")

        with pytest.raises(PaymentExceedsBalance):
            sale_service.receive_payment(context, sale.pk, "600.01")

        sale.refresh_from_db()
        customer.refresh_from_db()
        assert sale.pending_amount == Decimal("600.00")
        assert sale.paid_amount == Decimal("400.00")
        assert customer.due_amount == Decimal("600.00")
        assert Payment.objects.filter(sale=sale).count() == 1

    @pytest.mark.parametrize("amount", ["0", "-10", "abc"])
    def test_invalid_amount(self, sale_service, context, make_sale, customer, amount):
        sale = make_sale(customer=customer, quantity="10")

        with pytest.raises(InvalidAmount):
            sale_service.receive_payment(context, sale.pk, amount)

    def test_invalid_method(self, sale_service, context, make_sale, customer):
        sale = make_sale(customer=customer, quantity="10")

        with pytest.raises(ValidationFailed):
            sale_service.receive_payment(context, sale.pk, "10", method="cheque")

    def test_walk_in_sale_requires_customer(self, sale_service, context, make_sale):
        sale = make_sale(quantity="10")

        with pytest.raises(CustomerRequired):
            sale_service.receive_payment(context, sale.pk, "10")

    def test_customer_must_match(self, sale_service, context, make_sale, make_customer):
        owner = make_customer(name="Owner")
        stranger = make_customer(name="Stranger")
        sale = make_sale(customer=owner, quantity="10")

        with pytest.raises(CustomerMismatch):
            sale_service.receive_payment(context, sale.pk, "10", customer_id=str(stranger.pk))

    def test_cancelled_sale(self, sale_service, context, make_sale, customer):
        sale = make_sale(customer=customer, quantity="10")
        sale_service.cancel(context, sale.pk)

        with pytest.raises(SaleAlreadyCancelled):
            sale_service.receive_payment(context, sale.pk, "10")

    def test_unknown_sale(self, sale_service, context):
        with pytest.raises(SaleNotFound):
            sale_service.receive_payment(context, "not-a-uuid", "10")

    def test_customer_payment_is_allocated_oldest_first(
        self, sale_service, context, make_sale, customer
    ):
        older = make_sale(customer=customer, quantity="10")
        newer = make_sale(customer=customer, quantity="10")

        customer, entry, allocations = sale_service.receive_customer_payment(
            context, customer.pk, "130", method="bank"
        )

        assert [sale.pk for sale, _ in allocations] == [older.pk, newer.pk]
        assert customer.due_amount == Decimal("70.00")
        assert entry.payment_mode == "bank"
        assert_consistent(older, customer)
        assert_consistent(newer)
        newer.refresh_from_db()
        assert newer.pending_amount == Decimal("70.00")


@pytest.mark.django_db
class TestProcessReturn:
    def test_stock_return(self, sale_service, context, make_sale, product, customer):
        sale = make_sale(customer=customer, quantity="100", payment_received="400")

        sale_return = sale_service.process_return(
            context, sale.pk, [{"product_id": str(product.pk), "quantity": "25"}]
        )

        sale.refresh_from_db()
        product.refresh_from_db()
        customer.refresh_from_db()
        assert sale_return.total_return_amount == Decimal("250.00")
        assert sale.pending_amount == Decimal("350.00")
        assert sale.returns_amount == Decimal("250.00")
        assert product.stock == Decimal("25.000")
        assert customer.due_amount == Decimal("350.00")
        assert sale.items.get().returned_qty == Decimal("25.000")
        assert_consistent(sale, customer)

    def test_box_return_restores_sale_time_conversion(
        self, sale_service, context, make_sale, product, customer
    ):
        sale = make_sale(customer=customer, quantity="3", unit="box")
        item = sale.items.get()
        Product.objects.filter(pk=product.pk).update(
            packaging_levels=[{"name": "box", "quantity": "10"}]
        )

        sale_service.process_return(
            context, sale.pk, [{"sale_item_id": item.pk, "quantity": "1"}]
        )

        product.refresh_from_db()
        assert product.stock == Decimal("76.000")

    def test_cumulative_returns_cannot_exceed_sold(
        self, sale_service, context, make_sale, product, customer
    ):
        sale = make_sale(customer=customer, quantity="10")
        line = [{"product_id": str(product.pk), "quantity": "6"}]
        sale_service.process_return(context, sale.pk, line)

        with pytest.raises(ReturnExceedsSoldQuantity):
            sale_service.process_return(context, sale.pk, line)

    def test_return_above_pending(self, sale_service, context, make_sale, product, customer):
        sale = make_sale(customer=customer, quantity="10", payment_received="100")

        with pytest.raises(ReturnExceedsPending):
            sale_service.process_return(
                context, sale.pk, [{"product_id": str(product.pk), "quantity": "1"}]
            )

        product.refresh_from_db()
        assert product.stock == Decimal("90.000")
        assert not Return.objects.exists()

    def test_item_not_in_sale(self, sale_service, context, make_sale, make_product, customer):
        sale = make_sale(customer=customer, quantity="10")
        other = make_product(name="Other")

        with pytest.raises(ItemNotInSale):
            sale_service.process_return(
                context, sale.pk, [{"product_id": str(other.pk), "quantity": "1"}]
            )

    def test_price_adjustment_credits_agreed_amount(
        self, sale_service, context, make_sale, product, customer
    ):
        sale = make_sale(customer=customer, quantity="10")

        sale_return = sale_service.process_return(
            context,
            sale.pk,
            [{"product_id": str(product.pk), "quantity": "10"}],
            return_type=Return.PRICE_ADJUSTMENT,
            adjust_amount="15",
        )

        sale.refresh_from_db()
        product.refresh_from_db()
        assert sale_return.total_return_amount == Decimal("15.00")
        assert sale.pending_amount == Decimal("85.00")
        assert product.stock == Decimal("90.000")
        assert sale.items.get().returned_qty == Decimal("0.000")
        entry = LedgerEntry.objects.filter(sale=sale, type=LedgerEntry.RETURN).get()
        assert entry.remark == "Price adjustment"
        assert_consistent(sale, customer)

    def test_price_adjustment_above_item_value(
        self, sale_service, context, make_sale, product, customer
    ):
        sale = make_sale(customer=customer, quantity="10")

        with pytest.raises(InvalidAmount):
            sale_service.process_return(
                context,
                sale.pk,
                [{"product_id": str(product.pk), "quantity": "1"}],
                return_type=Return.PRICE_ADJUSTMENT,
                adjust_amount="10.01",
            )

    def test_walk_in_return_requires_customer(self, sale_service, context, make_sale, product):
        sale = make_sale(quantity="10")

        with pytest.raises(CustomerRequired):
            sale_service.process_return(
                context, sale.pk, [{"product_id": str(product.pk), "quantity": "1"}]
            )

    def test_returnable_items(self, sale_service, context, make_sale, product, customer):
        sale = make_sale(customer=customer, quantity="10")
        sale_service.process_return(
            context, sale.pk, [{"product_id": str(product.pk), "quantity": "4"}]
        )

        (line,) = sale_service.returnable_items(context, sale.pk)

        assert line["sold_qty"] == Decimal("10.000")
        assert line["returned_qty"] == Decimal("4.000")
        assert line["returnable_qty"] == Decimal("6.000")

        sale_service.cancel(context, sale.pk)
        assert sale_service.returnable_items(context, sale.pk) == []


@pytest.mark.django_db
class TestAdjust:
    def test_rate_fix(self, sale_service, context, make_sale, customer):
        sale = make_sale(customer=customer, quantity="10")

        adjustment = sale_service.adjust(context, sale.pk, "20", "rate_fix", note="Old rate")

        sale.refresh_from_db()
        assert adjustment.reason == Adjustment.RATE_FIX
        assert sale.adjustments == Decimal("20.00")
        assert sale.pending_amount == Decimal("80.00")
        entry = LedgerEntry.objects.filter(type=LedgerEntry.ADJUSTMENT).get()
        assert entry.remark == "Rate Fix adjustment"
        assert_consistent(sale, customer)

    def test_return_reason_is_rejected(self, sale_service, context, make_sale, customer):
        sale = make_sale(customer=customer, quantity="10")

        with pytest.raises(ValidationFailed):
            sale_service.adjust(context, sale.pk, "20", "RETURN")

    def test_exceeding_pending(self, sale_service, context, make_sale, customer):
        sale = make_sale(customer=customer, quantity="10")

        with pytest.raises(AdjustmentExceedsBalance):
            sale_service.adjust(context, sale.pk, "100.01", "DAMAGE")

    def test_walk_in_adjustment_has_no_ledger_entry(self, sale_service, context, make_sale):
        sale = make_sale(quantity="10")

        sale_service.adjust(context, sale.pk, "5", "DAMAGE")

        sale.refresh_from_db()
        assert sale.pending_amount == Decimal("95.00")
        assert not LedgerEntry.objects.exists()


@pytest.mark.django_db
class TestCancel:
    def test_cancel_restores_stock_and_writes_off_pending(
        self, sale_service, context, make_sale, product, customer
    ):
        sale = make_sale(customer=customer, quantity="100", payment_received="700")

        sale = sale_service.cancel(context, sale.pk)

        product.refresh_from_db()
        customer.refresh_from_db()
        assert sale.status == Sale.CANCELLED
        assert sale.cancelled_at is not None
        assert sale.pending_amount == Decimal("0.00")
        assert sale.adjustments == Decimal("300.00")
        assert product.stock == Decimal("100.000")
        assert customer.due_amount == Decimal("0.00")
        assert_consistent(sale, customer)

        with pytest.raises(SaleAlreadyCancelled):
            sale_service.cancel(context, sale.pk)

    def test_cancel_after_partial_return(
        self, sale_service, context, make_sale, product, customer
    ):
        sale = make_sale(customer=customer, quantity="100", payment_received="400")
        sale_service.process_return(
            context, sale.pk, [{"product_id": str(product.pk), "quantity": "25"}]
        )

        sale = sale_service.cancel(context, sale.pk)

        product.refresh_from_db()
        customer.refresh_from_db()
        # every sold unit goes back, including the 25 already returned
        assert product.stock == Decimal("125.000")
        assert sale.status == Sale.CANCELLED
        assert sale.returns_amount == Decimal("250.00")
        assert sale.adjustments == Decimal("350.00")
        assert sale.pending_amount == Decimal("0.00")
        assert customer.due_amount == Decimal("0.00")
        assert_consistent(sale, customer)

    def test_cancel_paid_walk_in_sale(self, sale_service, context, make_sale, product):
        sale = make_sale(quantity="2", unit="box", payment_received="220")

        sale = sale_service.cancel(context, sale.pk)

        product.refresh_from_db()
        assert sale.status == Sale.CANCELLED
        assert product.stock == Decimal("100.000")
        assert not LedgerEntry.objects.exists()

    def test_cancelled_sales_are_not_open(self, sale_service, context, make_sale, customer):
        kept = make_sale(customer=customer, quantity="10")
        dropped = make_sale(customer=customer, quantity="10")
        sale_service.cancel(context, dropped.pk)

        open_ids = [sale.pk for sale in SaleService.open_sales(context, customer.pk)]

        assert open_ids == [kept.pk]

    def test_other_tenant_cannot_cancel(
        self, sale_service, make_sale, other_tenant, django_user_model
    ):
        from apps.core.tenant_context import context_for_user

        sale = make_sale(quantity="1")
        intruder = django_user_model.objects.create_user(
            username="intruder", password="x", tenant=other_tenant, role="TENANT_OWNER"
        )

        with pytest.raises(SaleNotFound):
            sale_service.cancel(context_for_user(intruder), sale.pk)
