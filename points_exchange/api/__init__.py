from points_exchange.api.admin import AdminApi, build_admin_client
from points_exchange.api.auth import AuthApi
from points_exchange.api.http import ADMIN_EXPIRY_MARKERS, ApiClient
from points_exchange.api.points import PointsApi
from points_exchange.api.products import ProductApi

__all__ = [
    "ADMIN_EXPIRY_MARKERS",
    "AdminApi",
    "ApiClient",
    "AuthApi",
    "PointsApi",
    "ProductApi",
    "build_admin_client",
]
