import hmac

from fastapi import Header

from eventmedia.core.config import get_settings
from eventmedia.core.exceptions import ForbiddenException

OPS_CALLER = "ops_api_key"


def require_admin_api_key(x_admin_api_key: str = Header(default="", alias="X-ADMIN-API-KEY")) -> str:
    """Guard for the pipeline ops router. An unset ADMIN_API_KEY refuses every caller."""
    expected = (get_settings().ADMIN_API_KEY or "").strip()
    if not expected:
        raise ForbiddenException("Ops API disabled")
    if not hmac.compare_digest((x_admin_api_key or "").strip().encode(), expected.encode()):
        raise ForbiddenException()
    return OPS_CALLER
