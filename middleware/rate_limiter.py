from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from core.config import settings


def get_client_key(request: Request) -> str:
    """
    First hop of X-Forwarded-For when the app sits behind a proxy,
    otherwise the socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_key,
    default_limits=["200/hour"],
    enabled=settings.RATE_LIMIT_ENABLED and settings.ENV != "testing"
)
