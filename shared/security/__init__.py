from .jwt_handler import create_access_token, verify_access_token
from .api_key import verify_api_key
from .identity import IdentityVerifier, JwtIdentityVerifier, VerifiedIdentity
from .dependencies import get_current_customer, verify_internal_api_key
from .rate_limiter import limiter, customer_id_or_ip

__all__ = [
    "create_access_token",
    "verify_access_token",
    "verify_api_key",
    "IdentityVerifier",
    "JwtIdentityVerifier",
    "VerifiedIdentity",
    "get_current_customer",
    "verify_internal_api_key",
    "limiter",
    "customer_id_or_ip"
]
