"""
Permission classes for tenant-based access control.
"""

from rest_framework import permissions

from apps.core.exceptions import MissingTenantContext


class HasTenantAccess(permissions.BasePermission):
    """
    Permission class to ensure users can only access resources from their own tenant.

    Authenticated users without a tenant are rejected with a 401 tenant-context error
    rather than a generic 403.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.user.tenant is None:
            raise MissingTenantContext()
        return True

    def has_object_permission(self, request, view, obj):
        # Check if the object belongs to the user's tenant
        if hasattr(obj, "tenant"):
            return obj.tenant == request.user.tenant
        return True


class IsTenantManager(HasTenantAccess):
    """
    Only tenant owners and managers. Used for business reports.
    """

    message = "Access denied. Only tenant owners and managers can view reports."

    def has_permission(self, request, view):
        if not super().has_permission(request, view):
            return False
        return request.user.is_tenant_owner() or request.user.is_tenant_manager()
