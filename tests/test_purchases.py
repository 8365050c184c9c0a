"""
Tests for products and purchase receipts.
"""

from decimal import Decimal

from django.urls import reverse

import pytest
from rest_framework import status

from apps.core.exceptions import InvalidQuantity, ProductNotFound, UnknownUnit, ValidationFailed
from apps.inventory.models import Product, PurchaseItem
from apps.inventory.services import PurchaseService


def purchase_line(product, unit, quantity, cost_price):
    return {
        "product_id": str(product.pk),
        "unit": unit,
        "quantity": quantity,
        "cost_price": cost_price,
    }


@pytest.mark.django_db
class TestPurchaseService:
    def test_receive_adds_base_stock_and_unit_cost(self, context, product):
        purchase = PurchaseService().receive(
            context,
            [purchase_line(product, "box", "5", "600")],
            supplier_name="Metro Wholesale",
        )

        product.refresh_from_db()
        assert product.stock == Decimal("160.000")
        assert product.last_purchase_cost == Decimal("50.00")
        assert purchase.total_amount == Decimal("3000.00")

        item = PurchaseItem.objects.get(purchase=purchase)
        assert item.converted_base_quantity == Decimal("60.000")
        assert item.conversion_factor == Decimal("12")

    def test_failed_line_rolls_back_whole_purchase(self, context, make_product, other_tenant):
        mine = make_product(name="Tea")
        theirs = make_product(name="Coffee", tenant=other_tenant)

        with pytest.raises(ProductNotFound):
            PurchaseService().receive(
                context,
                [
                    purchase_line(mine, "piece", "10", "5"),
                    purchase_line(theirs, "piece", "1", "5"),
                ],
            )

        mine.refresh_from_db()
        assert mine.stock == Decimal("100.000")
        assert PurchaseItem.objects.count() == 0

    def test_unknown_unit(self, context, product):
        with pytest.raises(UnknownUnit):
            PurchaseService().receive(context, [purchase_line(product, "crate", "1", "1")])

    def test_rejects_zero_quantity(self, context, product):
        with pytest.raises(InvalidQuantity):
            PurchaseService().receive(context, [purchase_line(product, "box", "0", "1")])

    def test_rejects_empty_purchase(self, context):
        with pytest.raises(ValidationFailed):
            PurchaseService().receive(context, [])


@pytest.mark.django_db
class TestProductAPI:
    def test_create_with_opening_stock(self, authenticated_client, tenant):
        response = authenticated_client.post(
            reverse("inventory:product_list"),
            {
                "name": "Tata Salt",
                "baseUnit": "Packet",
                "packagingLevels": [{"name": "Carton", "quantity": "24"}],
                "defaultPrices": [{"unit": "carton", "price": "500"}],
                "sellingPrice": "22",
                "openingStock": "48",
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        product = Product.objects.get(pk=response.data["id"])
        assert product.tenant == tenant
        assert product.base_unit == "packet"
        assert product.stock == Decimal("48.000")
        assert product.default_prices[0] == {"unit": "packet", "price": "22.00"}
        units = {row["unit"]: row["factor"] for row in response.data["available_units"]}
        assert Decimal(units["carton"]) == Decimal("24")

    def test_base_price_is_required(self, authenticated_client):
        response = authenticated_client.post(
            reverse("inventory:product_list"),
            {"name": "Loose Sugar", "baseUnit": "kg"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_stock_is_not_editable(self, authenticated_client, product):
        response = authenticated_client.patch(
            reverse("inventory:product_detail", args=[product.pk]),
            {"stock": "999", "name": "Parle-G Gold"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        product.refresh_from_db()
        assert product.stock == Decimal("100.000")
        assert product.name == "Parle-G Gold"

    def test_base_unit_cannot_change(self, authenticated_client, product):
        response = authenticated_client.patch(
            reverse("inventory:product_detail", args=[product.pk]),
            {"baseUnit": "packet"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["code"] == "INVALID"

    def test_low_stock_endpoint(self, authenticated_client, make_product):
        make_product(name="Soap", stock="2", min_stock_alert=Decimal("5"))
        make_product(name="Oil", stock="50", min_stock_alert=Decimal("5"))

        response = authenticated_client.get(reverse("inventory:low_stock"))

        assert response.data["count"] == 1
        assert response.data["products"][0]["name"] == "Soap"


@pytest.mark.django_db
class TestPurchaseAPI:
    def test_purchase_create(self, authenticated_client, product):
        response = authenticated_client.post(
            reverse("inventory:purchase_create"),
            {
                "supplierName": "Metro Wholesale",
                "invoiceNumber": "MW-1182",
                "items": [
                    {
                        "productId": str(product.pk),
                        "unit": "piece",
                        "quantity": "30",
                        "costPrice": "7",
                    }
                ],
            },
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["supplier_name"] == "Metro Wholesale"
        assert Decimal(response.data["total_amount"]) == Decimal("210.00")
        product.refresh_from_db()
        assert product.stock == Decimal("130.000")
        assert product.last_purchase_cost == Decimal("7.00")
