"""
API views for billing: sales, payments, returns, adjustments and cancellation.

Views translate requests into ``SaleService`` calls. Errors raised by the
service are rendered by ``apps.core.exceptions.ledger_exception_handler``.
"""

from django.db.models import Q

from rest_framework import filters, generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.core.permissions import HasTenantAccess
from apps.core.tenant_context import context_from_request

from .models import Sale
from .serializers import (
    AdjustmentInputSerializer,
    AdjustmentSerializer,
    PaymentInputSerializer,
    PaymentSerializer,
    ReturnableItemSerializer,
    ReturnInputSerializer,
    ReturnSerializer,
    SaleCreateSerializer,
    SaleDetailSerializer,
    SaleListSerializer,
    SalePaymentInputSerializer,
)
from .services import SaleService


class SaleListView(generics.ListAPIView):
    """
    List sales or bill a new one.

    Query parameters:
    - search: invoice number or customer name
    - status: OPEN, PARTIAL, PAID or CANCELLED
    - customer: customer id
    - date_from / date_to: billing date (YYYY-MM-DD)

    POST body (camelCase or snake_case keys)::

        {
            "items": [{"productId": "uuid", "unit": "box", "quantity": "2"}],
            "customerId": "uuid" (optional, walk-in when absent),
            "discount": "0.00",
            "paymentReceived": "0.00",
            "idempotencyKey": "client-token" (optional),
            "deliveryAddress": "",
            "dueDate": "YYYY-MM-DD" (optional)
        }

    The key may also be sent as an ``Idempotency-Key`` header, which wins over
    the body field. Returns 201 for a new sale and 200 when the key replays an
    existing one.
    """

    serializer_class = SaleListSerializer
    permission_classes = [permissions.IsAuthenticated, HasTenantAccess]
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ["created_at", "final_amount", "invoice_number", "due_date"]
    ordering = ["-created_at"]

    def get_queryset(self):
        queryset = Sale.objects.filter(tenant=self.request.user.tenant)

        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(
                Q(invoice_number__icontains=search) | Q(customer_name__icontains=search)
            )

        sale_status = self.request.query_params.get("status")
        if sale_status:
            queryset = queryset.filter(status=sale_status.upper())

        customer_id = self.request.query_params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)

        date_from = self.request.query_params.get("date_from")
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)

        date_to = self.request.query_params.get("date_to")
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        return queryset

    def post(self, request):
        serializer = SaleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        idempotency_key = request.headers.get("Idempotency-Key") or data.get("idempotency_key", "")
        sale, replayed = SaleService().create_sale(
            context_from_request(request),
            items=data["items"],
            customer_id=data.get("customer_id") or None,
            discount=data.get("discount"),
            payment_received=data.get("payment_received"),
            idempotency_key=idempotency_key,
            delivery_address=data.get("delivery_address", ""),
            due_date=data.get("due_date"),
        )
        return Response(
            SaleDetailSerializer(sale).data,
            status=status.HTTP_200_OK if replayed else status.HTTP_201_CREATED,
        )


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def sale_detail(request, sale_id):
    sale = SaleService.get_sale(request.user.tenant, sale_id)
    return Response(SaleDetailSerializer(sale).data)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def open_sales(request):
    """
    Sales with money still owed, oldest first.

    Optional ``customer`` query parameter narrows to one customer.
    """
    sales = SaleService.open_sales(
        context_from_request(request), customer_id=request.query_params.get("customer")
    )
    return Response({"sales": SaleListSerializer(sales, many=True).data})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def sale_payment(request, sale_id):
    """
    Receive a payment against one sale.

    Request body:
    {
        "amount": "100.00",
        "method": "cash|upi|bank" (optional, default: cash),
        "note": "" (optional),
        "customerId": "uuid" (optional, must match the sale's customer)
    }
    """
    serializer = PaymentInputSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    sale, payment = SaleService().receive_payment(
        context_from_request(request),
        sale_id,
        data["amount"],
        method=data.get("method"),
        note=data.get("note", ""),
        customer_id=data.get("customer_id"),
    )
    return Response(
        {"sale": SaleDetailSerializer(sale).data, "payment": PaymentSerializer(payment).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def payment_create(request):
    """Receive a payment where the sale is named in the body (``saleId``)."""
    serializer = SalePaymentInputSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    sale, payment = SaleService().receive_payment(
        context_from_request(request),
        data["sale_id"],
        data["amount"],
        method=data.get("method"),
        note=data.get("note", ""),
        customer_id=data.get("customer_id"),
    )
    return Response(
        {"sale": SaleDetailSerializer(sale).data, "payment": PaymentSerializer(payment).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def returnable_items(request, sale_id):
    items = SaleService().returnable_items(context_from_request(request), sale_id)
    return Response({"items": ReturnableItemSerializer(items, many=True).data})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def sale_return(request, sale_id):
    """
    Return goods or credit a price adjustment against a sale.

    Request body:
    {
        "items": [{"productId": "uuid" | "saleItemId": 1, "quantity": "1"}],
        "returnType": "STOCK_RETURN|PRICE_ADJUSTMENT" (optional, default: STOCK_RETURN),
        "adjustAmount": "50.00" (required for PRICE_ADJUSTMENT),
        "note": ""
    }
    """
    serializer = ReturnInputSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    service = SaleService()
    context = context_from_request(request)
    record = service.process_return(
        context,
        sale_id,
        data["items"],
        return_type=data.get("return_type"),
        note=data.get("note", ""),
        adjust_amount=data.get("adjust_amount"),
    )
    return Response(
        {
            "return": ReturnSerializer(record).data,
            "sale": SaleDetailSerializer(service.get_sale(context.tenant, sale_id)).data,
        },
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def adjustment_create(request):
    """
    Reduce a sale's pending amount for a rate fix or damage.

    Request body:
    {
        "saleId": "uuid",
        "amount": "25.00",
        "reason": "RATE_FIX|DAMAGE",
        "note": ""
    }
    """
    serializer = AdjustmentInputSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    service = SaleService()
    context = context_from_request(request)
    adjustment = service.adjust(
        context, data["sale_id"], data["amount"], data["reason"], note=data.get("note", "")
    )
    return Response(
        {
            "adjustment": AdjustmentSerializer(adjustment).data,
            "sale": SaleDetailSerializer(service.get_sale(context.tenant, data["sale_id"])).data,
        },
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated, HasTenantAccess])
def sale_cancel(request, sale_id):
    sale = SaleService().cancel(context_from_request(request), sale_id)
    return Response(SaleDetailSerializer(sale).data)
