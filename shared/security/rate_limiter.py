from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from shared.config.settings import get_settings


def customer_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Uses the customer id that get_current_customer stored on request.state.
    Falls back to the client's IP address if unauthenticated.
    """
    customer_id = getattr(request.state, "customer_id", None)
    if customer_id is not None:
        return f"customer:{customer_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=customer_id_or_ip, enabled=get_settings().rate_limit_enabled)
