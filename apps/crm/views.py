"""
API views for customers, statements, account-level payments and expenses.
"""

import logging

from rest_framework import filters, generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.core.exceptions import CustomerNotFound
from apps.core.permissions import HasTenantAccess
from apps.core.tenant_context import context_from_request
from apps.core.utils import date_range_from_params
from apps.sales.serializers import SaleListSerializer
from apps.sales.services import SaleService

from .ledger import CustomerDueLedger, day_bounds
from .models import Customer, LedgerEntry
from .serializers import (
    CustomerPaymentInputSerializer,
    CustomerSerializer,
    ExpenseSerializer,
    LedgerEntrySerializer,
    StatementSerializer,
)

logger = logging.getLogger(__name__)


def _get_customer(tenant, customer_id):
    try:
        return Customer.objects.get(tenant=tenant, pk=customer_id)
    except Customer.DoesNotExist:
        raise CustomerNotFound()


class CustomerListAPIView(generics.ListCreateAPIView):
    """
    List or create the tenant's customers.

    Query parameters:
    - search: name, shop name or phone
    - status: active | inactive
    - has_due: true to list only customers who owe money
    """

    serializer_class = CustomerSerializer
    permission_classes = [permissions.IsAuthenticated, HasTenantAccess]
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ["name", "shop_name", "phone"]
    ordering_fields = ["name", "due_amount", "created_at"]
    ordering = ["name"]

    def get_queryset(self):
        queryset = Customer.objects.filter(tenant=self.request.user.tenant)

        status_filter = self.request.query_params.get("status")
        if status_filter == "active":
            queryset = queryset.filter(is_active=True)
        elif status_filter == "inactive":
            queryset = queryset.filter(is_active=False)

        if self.request.query_params.get("has_due") == "true":
            queryset = queryset.filter(due_amount__gt=0)

        return queryset

    def perform_create(self, serializer):
        customer = serializer.save(tenant=self.request.user.tenant)
        logger.info(f"Customer {customer.pk} created for tenant {customer.tenant_id}")


class CustomerDetailAPIView(generics.RetrieveUpdateAPIView):
    """Customer profile. Contact details are editable; the due is not."""

    serializer_class = CustomerSerializer
    permission_classes = [permissions.IsAuthenticated, HasTenantAccess]

    def get_queryset(self):
        return Customer.objects.filter(tenant=self.request.user.tenant)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def customer_statement(request, customer_id):
    """
    Ledger statement for a customer over an inclusive date range.

    Query parameters:
    - from: YYYY-MM-DD (optional)
    - to: YYYY-MM-DD (optional)
    """
    date_from, date_to = date_range_from_params(request.query_params)
    tenant = request.user.tenant
    customer = _get_customer(tenant, customer_id)

    statement = CustomerDueLedger.statement_for(tenant, customer, date_from, date_to)
    return Response(StatementSerializer(statement).data)


@api_view(["GET", "POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def customer_payments(request, customer_id):
    """
    GET: the customer's open sales, oldest first.

    POST: receive money against the customer's account. The amount is applied
    to open sales oldest first and may not exceed the customer's due.

    Request body:
    {
        "amount": "500.00",
        "method": "cash|upi|bank" (optional, default: cash),
        "note": "" (optional)
    }
    """
    context = context_from_request(request)
    if request.method == "GET":
        _get_customer(context.tenant, customer_id)
        sales = SaleService.open_sales(context, customer_id=customer_id)
        return Response({"sales": SaleListSerializer(sales, many=True).data})

    serializer = CustomerPaymentInputSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    customer, entry, allocations = SaleService().receive_customer_payment(
        context,
        customer_id,
        data["amount"],
        method=data.get("method"),
        note=data.get("note", ""),
    )
    return Response(
        {
            "customer": CustomerSerializer(customer).data,
            "entry": LedgerEntrySerializer(entry).data,
            "allocations": [
                {
                    "sale": str(sale.pk),
                    "invoice_number": sale.invoice_number,
                    "applied": str(applied),
                    "pending_amount": str(sale.pending_amount),
                    "status": sale.status,
                }
                for sale, applied in allocations
            ],
        },
        status=status.HTTP_201_CREATED,
    )


class ExpenseListAPIView(generics.ListCreateAPIView):
    """
    List or record shop expenses.

    Query parameters:
    - from / to: YYYY-MM-DD
    - category: exact category
    """

    serializer_class = ExpenseSerializer
    permission_classes = [permissions.IsAuthenticated, HasTenantAccess]

    def get_queryset(self):
        queryset = LedgerEntry.objects.filter(
            tenant=self.request.user.tenant, type=LedgerEntry.EXPENSE
        )
        start, end = day_bounds(*date_range_from_params(self.request.query_params))
        if start:
            queryset = queryset.filter(date__gte=start)
        if end:
            queryset = queryset.filter(date__lt=end)

        category = self.request.query_params.get("category")
        if category:
            queryset = queryset.filter(category=category.strip().lower())

        return queryset.order_by("-date")

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        entry = CustomerDueLedger.record_expense(
            request.user.tenant,
            data["amount"],
            note=data.get("note", ""),
            category=data.get("category", ""),
            payment_mode=data.get("payment_mode", LedgerEntry.METHOD_CASH),
            when=data.get("date"),
            user=request.user,
        )
        return Response(ExpenseSerializer(entry).data, status=status.HTTP_201_CREATED)
