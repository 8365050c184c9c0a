"""
URL configuration for sales app.
"""

from django.urls import path

from . import views

app_name = "sales"

urlpatterns = [
    path("sales/", views.SaleListView.as_view(), name="sale_list"),
    path("sales/open/", views.open_sales, name="open_sales"),
    path("sales/<uuid:sale_id>/", views.sale_detail, name="sale_detail"),
    path("sales/<uuid:sale_id>/payments/", views.sale_payment, name="sale_payment"),
    path(
        "sales/<uuid:sale_id>/returnable-items/",
        views.returnable_items,
        name="returnable_items",
    ),
    path("sales/<uuid:sale_id>/returns/", views.sale_return, name="sale_return"),
    path("sales/<uuid:sale_id>/cancel/", views.sale_cancel, name="sale_cancel"),
    path("payments/", views.payment_create, name="payment_create"),
    path("adjustments/", views.adjustment_create, name="adjustment_create"),
]
