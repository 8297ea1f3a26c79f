"""Guards for internal callers (scheduler, billing jobs)."""

import hmac

from fastapi import Header, HTTPException, status

from seatpass.config.settings import settings
from seatpass.shared.exceptions import ConfigurationException


class InvalidCronSecretException(HTTPException):
    def __init__(self):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")


async def require_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    """Allow the request only with the shared ``X-Cron-Secret`` header."""
    if not settings.cron_secret:
        raise ConfigurationException("cron_secret")
    if x_cron_secret is None or not hmac.compare_digest(x_cron_secret.encode(), settings.cron_secret.encode()):
        raise InvalidCronSecretException()
