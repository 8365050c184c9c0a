"""
URL configuration for CRM app.
"""

from django.urls import path

from . import views

app_name = "crm"

urlpatterns = [
    path("customers/", views.CustomerListAPIView.as_view(), name="customer_list"),
    path("customers/<uuid:pk>/", views.CustomerDetailAPIView.as_view(), name="customer_detail"),
    path(
        "customers/<uuid:customer_id>/statement/",
        views.customer_statement,
        name="customer_statement",
    ),
    path(
        "customers/<uuid:customer_id>/payments/",
        views.customer_payments,
        name="customer_payments",
    ),
    path("expenses/", views.ExpenseListAPIView.as_view(), name="expense_list"),
]
