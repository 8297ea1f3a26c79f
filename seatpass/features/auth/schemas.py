"""Authentication schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

# RFC 7636 unreserved characters
PKCE_PATTERN = r"^[A-Za-z0-9\-._~]+$"


# Request schemas
class InitiateRequest(BaseModel):
    """Start a PKCE handshake for the editor extension.

    Omit ``code_challenge`` to have the server generate the verifier pair.
    """

    redirect_uri: str = Field(..., min_length=1, max_length=2048)
    state: str | None = Field(None, min_length=16, max_length=128, pattern=PKCE_PATTERN)
    code_challenge: str | None = Field(None, min_length=43, max_length=128, pattern=PKCE_PATTERN)
    code_challenge_method: str | None = Field(None, max_length=10)


class CompleteRequest(BaseModel):
    """Bind the signed-in identity to a pending handshake."""

    state: str = Field(..., min_length=1, max_length=128)
    redirect_uri: str = Field(..., min_length=1, max_length=2048)


class AttachCodeRequest(BaseModel):
    """Attach a client-issued authorization code to a pending handshake."""

    state: str = Field(..., min_length=1, max_length=128)
    authorization_code: str = Field(..., min_length=16, max_length=128, pattern=PKCE_PATTERN)
    email: EmailStr | None = None
    username: str | None = Field(None, min_length=1, max_length=100)


class TokenExchangeRequest(BaseModel):
    """Exchange an authorization code and its verifier for a session."""

    code: str = Field(..., min_length=1, max_length=128)
    code_verifier: str = Field(..., min_length=43, max_length=128, pattern=PKCE_PATTERN)
    redirect_uri: str = Field(..., min_length=1, max_length=2048)


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""

    refresh_token: str


class RevokeTokenRequest(BaseModel):
    """Revoke one extension token, or all of them when ``token`` is omitted."""

    token: str | None = None


# Response schemas
class InitiateResponse(BaseModel):
    auth_url: str
    state: str
    code_challenge: str
    code_challenge_method: str = "S256"
    # Present only when the server generated the pair
    code_verifier: str | None = None
    expires_at: datetime


class CompleteResponse(BaseModel):
    state: str
    redirect_uri: str
    authorization_code: str


class AttachCodeResponse(BaseModel):
    authorization_code: str
    redirect_uri: str


class SessionTokenResponse(BaseModel):
    """Access and refresh token pair for a live extension session."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class LongLivedTokenResponse(BaseModel):
    """Long-lived extension token. Returned once and never recoverable."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    expires_at: datetime


class ExtensionTokenInfo(BaseModel):
    """Metadata of a stored extension token (never the token itself)."""

    id: int
    name: str
    created_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None
    last_used_at: datetime | None = None

    model_config = {"from_attributes": True}


class RevokeTokenResponse(BaseModel):
    revoked: int


class PurgeExchangesResponse(BaseModel):
    exchanges_purged: int
