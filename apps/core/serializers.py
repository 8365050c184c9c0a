"""
Shared serializers: JWT login and request-key normalisation.
"""

import re

from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(key):
    """``paymentReceived`` -> ``payment_received``. Snake-case keys pass through."""
    if not isinstance(key, str) or "_" in key:
        return key
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def normalize_keys(data):
    """Recursively convert dict keys from camelCase to snake_case."""
    if isinstance(data, dict):
        return {to_snake_case(key): normalize_keys(value) for key, value in data.items()}
    if isinstance(data, list):
        return [normalize_keys(value) for value in data]
    return data


class CamelCaseInputMixin:
    """
    Accept request bodies written in either camelCase or snake_case.

    Mobile clients send ``paymentReceived``, ``customerId`` and friends; the
    serializers themselves are declared in snake_case.
    """

    def to_internal_value(self, data):
        if hasattr(data, "dict"):
            data = data.dict()
        return super().to_internal_value(normalize_keys(data))


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    JWT login that carries the caller's tenant and role as claims.
    """

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)

        token["username"] = user.username
        token["role"] = user.role
        token["tenant_id"] = str(user.tenant_id) if user.tenant_id else None

        return token
