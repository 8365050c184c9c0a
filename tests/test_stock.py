"""
Tests for the stock ledger.
"""

from decimal import Decimal

from django.db import IntegrityError, transaction

import pytest

from apps.core.exceptions import InsufficientStock, ProductNotFound, StockConflict
from apps.inventory.models import Product
from apps.inventory.stock import StockLedger


@pytest.mark.django_db
class TestStockLedger:
    def test_deduct_within_stock(self, tenant, product):
        with transaction.atomic():
            StockLedger.reserve_and_deduct(tenant, product.pk, Decimal("24"))

        product.refresh_from_db()
        assert product.stock == Decimal("76.000")

    def test_deduct_more_than_stock_conflicts(self, tenant, product):
        with pytest.raises(StockConflict) as excinfo:
            with transaction.atomic():
                StockLedger.reserve_and_deduct(tenant, product.pk, Decimal("101"))

        assert excinfo.value.retryable is True
        product.refresh_from_db()
        assert product.stock == Decimal("100.000")

    def test_deduct_all_is_all_or_nothing(self, tenant, make_product):
        rice = make_product(name="Rice", stock="50")
        dal = make_product(name="Dal", stock="5")

        with pytest.raises(StockConflict):
            with transaction.atomic():
                StockLedger.deduct_all(tenant, {rice.pk: Decimal("10"), dal.pk: Decimal("6")})

        rice.refresh_from_db()
        dal.refresh_from_db()
        assert rice.stock == Decimal("50.000")
        assert dal.stock == Decimal("5.000")

    def test_foreign_tenant_product_is_not_touched(self, other_tenant, product):
        with pytest.raises(StockConflict):
            with transaction.atomic():
                StockLedger.reserve_and_deduct(other_tenant, product.pk, Decimal("1"))

    def test_restore_and_add(self, tenant, product):
        with transaction.atomic():
            StockLedger.restore(tenant, product.pk, Decimal("12"))
            StockLedger.add(tenant, product.pk, Decimal("0.5"))

        product.refresh_from_db()
        assert product.stock == Decimal("112.500")

    def test_restore_unknown_product(self, other_tenant, product):
        with pytest.raises(ProductNotFound):
            with transaction.atomic():
                StockLedger.restore(other_tenant, product.pk, Decimal("1"))

    def test_validate_availability_reports_base_unit(self, product):
        with pytest.raises(InsufficientStock) as excinfo:
            StockLedger.validate_availability({product.pk: product}, {product.pk: Decimal("120")})

        assert "Available: 100 piece" in excinfo.value.message
        assert "Required: 120 piece" in excinfo.value.message

    def test_low_stock(self, tenant, make_product):
        make_product(name="Soap", stock="3", min_stock_alert=Decimal("5"))
        make_product(name="Oil", stock="30", min_stock_alert=Decimal("5"))
        make_product(name="Old Stock", stock="0", min_stock_alert=Decimal("5"), is_active=False)

        names = [p.name for p in StockLedger.low_stock(tenant)]
        assert names == ["Soap"]


@pytest.mark.django_db
class TestStockConstraint:
    def test_database_rejects_negative_stock(self, product):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Product.objects.filter(pk=product.pk).update(stock=Decimal("-1"))

        product.refresh_from_db()
        assert product.stock == Decimal("100.000")
