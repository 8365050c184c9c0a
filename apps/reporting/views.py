"""
Report endpoints.

Reports are restricted to tenant owners and managers. Ranged reports take
``from`` and ``to`` query parameters (``YYYY-MM-DD``, inclusive).
"""

import logging

from django.http import HttpResponse
from django.utils import timezone
from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from apps.core.exceptions import ValidationFailed
from apps.core.permissions import IsTenantManager
from apps.core.utils import date_range_from_params

from .services import ReportService

logger = logging.getLogger(__name__)


def _required_range(request):
    date_from, date_to = date_range_from_params(request.query_params)
    if not date_from or not date_to:
        raise ValidationFailed("From & To date required")
    return date_from, date_to


def _range_or_today(request):
    date_from, date_to = date_range_from_params(request.query_params)
    today = timezone.localdate()
    return date_from or today, date_to or today


def _range_or_this_month(request):
    date_from, date_to = date_range_from_params(request.query_params)
    today = timezone.localdate()
    return date_from or today.replace(day=1), date_to or today


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def range_report(request):
    """Sales billed between ``from`` and ``to`` with cash, udhaar and profit totals."""
    date_from, date_to = _required_range(request)
    report = ReportService(request.user.tenant).range_report(date_from, date_to)
    return Response(report, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def range_report_export(request):
    """Download the range report's invoices as CSV."""
    date_from, date_to = _required_range(request)
    content = ReportService(request.user.tenant).export_range_csv(date_from, date_to)

    response = HttpResponse(content, content_type="text/csv")
    response["Content-Disposition"] = (
        f'attachment; filename="sales_{date_from.isoformat()}_{date_to.isoformat()}.csv"'
    )
    logger.info(
        f"Range report exported for tenant {request.user.tenant_id} by {request.user.username}"
    )
    return response


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def profit_summary(request):
    """Profit after cost, discount, returns and expenses. Defaults to today."""
    date_from, date_to = _range_or_today(request)
    report = ReportService(request.user.tenant).profit_summary(date_from, date_to)
    return Response(report, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def product_profit(request):
    """Profit per product. Defaults to the current month."""
    date_from, date_to = _range_or_this_month(request)
    report = ReportService(request.user.tenant).product_profit(date_from, date_to)
    return Response(report, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def cash_summary(request):
    date_from, date_to = _range_or_today(request)
    report = ReportService(request.user.tenant).cash_summary(date_from, date_to)
    return Response(report, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def cashbook(request):
    date_from, date_to = _range_or_today(request)
    report = ReportService(request.user.tenant).cashbook(date_from, date_to)
    return Response(report, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def due_report(request):
    """Active customers with money due."""
    return Response(ReportService(request.user.tenant).due_report(), status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def outstanding(request):
    return Response(ReportService(request.user.tenant).outstanding(), status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def overdue(request):
    return Response(ReportService(request.user.tenant).overdue(), status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated, IsTenantManager])
def risk_profile(request):
    """Customers with overdue sales, flagged HIGH RISK or WATCH."""
    profile = ReportService(request.user.tenant).risk_profile()
    return Response({"customers": profile}, status=status.HTTP_200_OK)
