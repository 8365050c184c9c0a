"""
Django admin configuration for shops and their staff.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import Tenant, User


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ["company_name", "slug", "phone", "status", "created_at"]
    list_filter = ["status"]
    search_fields = ["company_name", "slug", "phone"]
    readonly_fields = ["id", "created_at", "updated_at"]

    fieldsets = (
        ("Shop", {"fields": ("id", "company_name", "slug", "phone", "address")}),
        ("Status", {"fields": ("status",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at"), "classes": ("collapse",)}),
    )

    def get_readonly_fields(self, request, obj=None):
        """The slug is fixed once the shop exists."""
        if obj:
            return self.readonly_fields + ["slug"]
        return self.readonly_fields


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ["username", "role", "tenant", "is_active"]
    list_filter = ["role", "is_active", "tenant"]
    search_fields = ["username", "phone", "tenant__company_name"]

    fieldsets = BaseUserAdmin.fieldsets + (("Shop", {"fields": ("tenant", "role", "phone")}),)
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Shop", {"classes": ("wide",), "fields": ("tenant", "role", "phone")}),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant")
