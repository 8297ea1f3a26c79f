"""Rate limiter shared by the application and the routers that tighten it."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from seatpass.config.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

# Unauthenticated endpoints that create state
HANDSHAKE_LIMIT = "10/minute"
TOKEN_EXCHANGE_LIMIT = "20/minute"
