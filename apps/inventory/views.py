"""
API views for products, low-stock alerts and purchase receipts.
"""

import logging

from rest_framework import filters, generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.core.permissions import HasTenantAccess
from apps.core.tenant_context import context_from_request

from .models import Product
from .serializers import ProductSerializer, PurchaseInputSerializer, PurchaseSerializer
from .services import PurchaseService
from .stock import StockLedger

logger = logging.getLogger(__name__)


class ProductListView(generics.ListCreateAPIView):
    """
    List or create products.

    Query parameters:
    - search: name or SKU
    - is_active: true | false
    """

    serializer_class = ProductSerializer
    permission_classes = [permissions.IsAuthenticated, HasTenantAccess]
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ["name", "sku"]
    ordering_fields = ["name", "stock", "selling_price", "created_at"]
    ordering = ["name"]

    def get_queryset(self):
        queryset = Product.objects.filter(tenant=self.request.user.tenant)

        is_active = self.request.query_params.get("is_active")
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active.lower() == "true")

        return queryset

    def perform_create(self, serializer):
        product = serializer.save(tenant=self.request.user.tenant)
        logger.info(
            f"Product {product.pk} created for tenant {product.tenant_id} "
            f"with opening stock {product.stock} {product.base_unit}"
        )


class ProductDetailView(generics.RetrieveUpdateAPIView):
    """Retrieve or update a product. Stock is not editable here."""

    serializer_class = ProductSerializer
    permission_classes = [permissions.IsAuthenticated, HasTenantAccess]

    def get_queryset(self):
        return Product.objects.filter(tenant=self.request.user.tenant)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def low_stock_alert_report(request):
    """
    Active products at or below their minimum stock alert.
    """
    products = StockLedger.low_stock(request.user.tenant)
    return Response(
        {
            "count": len(products),
            "products": ProductSerializer(products, many=True).data,
        },
        status=status.HTTP_200_OK,
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def purchase_create(request):
    """
    Receive goods from a supplier.

    Request body:
    {
        "supplierName": "" (optional),
        "invoiceNumber": "" (optional),
        "items": [
            {"productId": "uuid", "unit": "box", "quantity": "5", "costPrice": "600.00"}
        ]
    }

    ``costPrice`` is the cost of one ``unit``.
    """
    serializer = PurchaseInputSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    purchase = PurchaseService().receive(
        context_from_request(request),
        data["items"],
        supplier_name=data.get("supplier_name", ""),
        invoice_number=data.get("invoice_number", ""),
    )
    return Response(PurchaseSerializer(purchase).data, status=status.HTTP_201_CREATED)
