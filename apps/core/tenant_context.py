"""
Request context for tenant-scoped billing operations.

Every core operation runs under a ``(user, tenant, role)`` context taken from the
authenticated request. Services receive the context explicitly and scope every
query and write by ``context.tenant``.
"""

import logging
from typing import NamedTuple, Optional

from apps.core.exceptions import MissingTenantContext

logger = logging.getLogger(__name__)


class RequestContext(NamedTuple):
    """Identity of the caller on whose behalf an operation runs."""

    tenant: object
    user: Optional[object] = None
    role: Optional[str] = None

    @property
    def tenant_id(self):
        return self.tenant.pk

    @property
    def user_id(self):
        return self.user.pk if self.user is not None else None


def context_for_user(user) -> RequestContext:
    """
    Build the context for an authenticated user.

    Raises:
        MissingTenantContext: if the user is anonymous or not bound to a tenant.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        raise MissingTenantContext("Authentication required")

    tenant = getattr(user, "tenant", None)
    if tenant is None:
        logger.warning(f"User {user.pk} attempted a tenant operation without a tenant")
        raise MissingTenantContext()

    return RequestContext(tenant=tenant, user=user, role=getattr(user, "role", None))


def context_from_request(request) -> RequestContext:
    """Build the context for the user behind a DRF/Django request."""
    return context_for_user(getattr(request, "user", None))
