"""
URL configuration for reporting app.
"""

from django.urls import path

from . import views

app_name = "reporting"

urlpatterns = [
    path("range/", views.range_report, name="range"),
    path("range/export/", views.range_report_export, name="range_export"),
    path("profit/", views.profit_summary, name="profit"),
    path("product-profit/", views.product_profit, name="product_profit"),
    path("cash/", views.cash_summary, name="cash"),
    path("cashbook/", views.cashbook, name="cashbook"),
    path("due/", views.due_report, name="due"),
    path("outstanding/", views.outstanding, name="outstanding"),
    path("overdue/", views.overdue, name="overdue"),
    path("risk/", views.risk_profile, name="risk"),
]
