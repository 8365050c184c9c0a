"""
Authentication views.
"""

from rest_framework_simplejwt.views import TokenObtainPairView

from .serializers import CustomTokenObtainPairSerializer


class CustomTokenObtainPairView(TokenObtainPairView):
    """
    JWT login. The access token carries the user's tenant and role.
    """

    serializer_class = CustomTokenObtainPairSerializer
