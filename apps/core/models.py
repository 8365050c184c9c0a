"""
Tenants (shops) and the users who work in them.
"""

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils.text import slugify


class Tenant(models.Model):
    """
    One shop using the platform.

    Products, customers, sales and ledger entries all belong to exactly one
    tenant, and nothing is ever read across tenants.
    """

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"

    STATUS_CHOICES = [
        (ACTIVE, "Active"),
        (SUSPENDED, "Suspended"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    company_name = models.CharField(max_length=255, help_text="Shop name printed on invoices")
    slug = models.SlugField(unique=True, max_length=255, help_text="Short unique shop handle")
    phone = models.CharField(max_length=20, blank=True, help_text="Shop contact number")
    address = models.TextField(blank=True, help_text="Shop address printed on invoices")

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=ACTIVE,
        help_text="Suspended shops cannot bill",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "tenants"
        ordering = ["company_name"]
        verbose_name = "Shop"
        verbose_name_plural = "Shops"

    def __str__(self):
        return self.company_name

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.company_name) or "shop"
            slug = base
            while Tenant.objects.filter(slug=slug).exists():
                slug = f"{base}-{uuid.uuid4().hex[:6]}"
            self.slug = slug
        super().save(*args, **kwargs)

    def is_active(self):
        return self.status == self.ACTIVE


class User(AbstractUser):
    """
    Login account.

    Shop staff belong to one tenant; platform admins belong to none. The
    ``(user, tenant, role)`` triple is the context every billing call runs in.
    """

    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    TENANT_OWNER = "TENANT_OWNER"
    TENANT_MANAGER = "TENANT_MANAGER"
    TENANT_EMPLOYEE = "TENANT_EMPLOYEE"

    ROLE_CHOICES = [
        (PLATFORM_ADMIN, "Platform Administrator"),
        (TENANT_OWNER, "Shop Owner"),
        (TENANT_MANAGER, "Shop Manager"),
        (TENANT_EMPLOYEE, "Counter Staff"),
    ]

    SHOP_ROLES = (TENANT_OWNER, TENANT_MANAGER, TENANT_EMPLOYEE)

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="users",
        help_text="Shop this account works in; empty for platform admins",
    )
    role = models.CharField(max_length=50, choices=ROLE_CHOICES, default=TENANT_EMPLOYEE)
    phone = models.CharField(max_length=20, blank=True)

    class Meta:
        db_table = "users"
        ordering = ["username"]
        indexes = [
            models.Index(fields=["tenant", "role"], name="user_tenant_role_idx"),
        ]

    def __str__(self):
        if self.tenant_id:
            return f"{self.username} @ {self.tenant.company_name}"
        return self.username

    def is_platform_admin(self):
        return self.role == self.PLATFORM_ADMIN

    def is_tenant_owner(self):
        return self.role == self.TENANT_OWNER

    def is_tenant_manager(self):
        return self.role == self.TENANT_MANAGER

    def has_tenant_access(self):
        """Shop staff of any role, attached to a shop."""
        return self.tenant_id is not None and self.role in self.SHOP_ROLES

    def save(self, *args, **kwargs):
        if self.role == self.PLATFORM_ADMIN:
            self.tenant = None
        elif self.role in self.SHOP_ROLES and not self.tenant_id:
            raise ValueError(f"Users with role {self.role} must have a tenant assigned")
        super().save(*args, **kwargs)


class AppendOnlyModel(models.Model):
    """
    Abstract base for audit records that are written once and never changed.

    Saving an existing row or deleting one raises ``RuntimeError``.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise RuntimeError(f"{self.__class__.__name__} records are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError(f"{self.__class__.__name__} records cannot be deleted")
