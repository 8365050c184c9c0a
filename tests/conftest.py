"""
Pytest configuration and fixtures for the udhaar billing platform.
"""

from decimal import Decimal

import pytest


@pytest.fixture
def api_client():
    """
    Fixture for Django REST framework API client.
    """
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def tenant():
    """
    Fixture for creating a test tenant.
    """
    from apps.core.models import Tenant

    return Tenant.objects.create(company_name="Sharma Traders", slug="sharma-traders")


@pytest.fixture
def other_tenant():
    """A second shop, used to check tenant isolation."""
    from apps.core.models import Tenant

    return Tenant.objects.create(company_name="Gupta Stores", slug="gupta-stores")


@pytest.fixture
def tenant_user(tenant, django_user_model):
    """
    Fixture for creating a test tenant owner.
    """
    return django_user_model.objects.create_user(
        username="owner",
        email="owner@example.com",
        password="testpass123",
        tenant=tenant,
        role="TENANT_OWNER",
    )


@pytest.fixture
def employee_user(tenant, django_user_model):
    return django_user_model.objects.create_user(
        username="counter",
        email="counter@example.com",
        password="testpass123",
        tenant=tenant,
        role="TENANT_EMPLOYEE",
    )


@pytest.fixture
def authenticated_client(api_client, tenant_user):
    """
    Fixture for an API client logged in as the tenant owner.
    """
    api_client.force_authenticate(user=tenant_user)
    return api_client


@pytest.fixture
def context(tenant, tenant_user):
    """Request context for service-level tests."""
    from apps.core.tenant_context import context_for_user

    return context_for_user(tenant_user)


@pytest.fixture
def make_product(tenant):
    """
    Factory for products sold by the piece and by the box of 12.

    A piece sells for 10.00 and a box for 110.00 unless overridden.
    """
    from apps.inventory.models import Product

    def _make(name="Parle-G Biscuit", stock="100", tenant=tenant, **overrides):
        fields = {
            "tenant": tenant,
            "name": name,
            "base_unit": "piece",
            "packaging_levels": [{"name": "box", "quantity": "12"}],
            "default_prices": [
                {"unit": "piece", "price": "10.00"},
                {"unit": "box", "price": "110.00"},
            ],
            "selling_price": Decimal("10.00"),
            "last_purchase_cost": Decimal("6.00"),
            "stock": Decimal(stock),
        }
        fields.update(overrides)
        return Product.objects.create(**fields)

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def make_customer(tenant):
    from apps.crm.models import Customer

    def _make(name="Ramesh Kumar", tenant=tenant, **overrides):
        fields = {
            "tenant": tenant,
            "name": name,
            "shop_name": "Ramesh Kirana",
            "phone": "9876543210",
        }
        fields.update(overrides)
        return Customer.objects.create(**fields)

    return _make


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def sale_service():
    from apps.sales.services import SaleService

    return SaleService()


@pytest.fixture
def make_sale(context, sale_service, product):
    """
    Factory that bills ``quantity`` of ``unit`` of ``product``.

    Returns the created ``Sale``.
    """

    def _make(customer=None, quantity="10", unit="piece", target=None, **kwargs):
        target = target or product
        items = [{"product_id": str(target.pk), "unit": unit, "quantity": quantity}]
        result = sale_service.create_sale(
            context,
            items,
            customer_id=str(customer.pk) if customer else None,
            **kwargs,
        )
        return result.sale

    return _make
