from .jwt_handler import create_access_token, verify_access_token
from .api_key import verify_api_key, API_HEADERS
from .dependencies import Identity, get_current_identity, require_roles, verify_internal_api_key
from .rate_limiter import limiter, user_id_or_ip

__all__ = [
    "create_access_token",
    "verify_access_token",
    "verify_api_key",
    "API_HEADERS",
    "Identity",
    "get_current_identity",
    "require_roles",
    "verify_internal_api_key",
    "limiter",
    "user_id_or_ip"
]
