"""Authentication exceptions.

Every credential rejection renders the same 401 body regardless of cause, so
callers cannot probe which part of the check failed. The subclasses exist for
logging and tests only.
"""

from fastapi import HTTPException, status

GENERIC_TOKEN_DETAIL = "Invalid or expired token"


class AuthenticationException(HTTPException):
    """Base authentication exception."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidTokenException(AuthenticationException):
    """Raised when a token is invalid, expired, revoked or unknown."""

    def __init__(self):
        super().__init__(detail=GENERIC_TOKEN_DETAIL)


class TokenExpiredException(InvalidTokenException):
    """Raised when a stored extension token is past its expiry."""


class TokenRevokedException(InvalidTokenException):
    """Raised when a stored extension token has been revoked."""


class TokenNotFoundException(InvalidTokenException):
    """Raised when no stored extension token matches the presented one."""


class SessionInactiveException(AuthenticationException):
    """Raised when a refresh token's session has expired or was already rotated."""

    def __init__(self):
        super().__init__(detail="Session is no longer active, re-authentication required")


class RevocationFailedException(HTTPException):
    """Raised when prior tokens could not be revoked before issuing a new one."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to revoke existing tokens")


class ExchangeException(HTTPException):
    """Base exception for the PKCE handshake."""

    def __init__(self, detail: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class InvalidOrExpiredCodeException(ExchangeException):
    """Raised when the exchange record is absent, expired or bound to another callback."""

    def __init__(self):
        super().__init__(detail="Invalid or expired authorization code")


class SessionExpiredException(ExchangeException):
    """Raised when the handshake timed out before the authorization code was attached."""

    def __init__(self):
        super().__init__(detail="Authentication session expired")


class ExchangeConflictException(ExchangeException):
    """Raised when the handshake is not in a state that allows the transition."""

    def __init__(self, detail: str = "Authorization code cannot be used in its current state"):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)
