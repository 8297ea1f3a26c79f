"""Identity provider exceptions."""

from seatpass.features.auth.exceptions import GENERIC_TOKEN_DETAIL, AuthenticationException


class InvalidAssertionException(AuthenticationException):
    """Raised when the identity provider's bearer token does not verify."""

    def __init__(self):
        super().__init__(detail=GENERIC_TOKEN_DETAIL)
