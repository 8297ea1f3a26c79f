"""Token digests and PKCE helpers."""

import base64
import hashlib
import hmac
import secrets
import string

from pwdlib import PasswordHash

from seatpass.config.settings import settings
from seatpass.shared.exceptions import ConfigurationException

# Argon2 with pwdlib's recommended cost parameters
token_hasher = PasswordHash.recommended()

_CODE_ALPHABET = string.ascii_letters + string.digits


def token_digest(token: str) -> str:
    """Deterministic keyed digest used to look a stored token up."""
    if not settings.jwt_secret:
        raise ConfigurationException("jwt_secret")
    return hmac.new(settings.jwt_secret.encode(), token.encode(), hashlib.sha256).hexdigest()


def hash_token(token: str) -> str:
    """Slow salted hash of a long-lived token.

    The raw token is never stored, so a leaked table cannot be replayed and
    brute-forcing individual rows is expensive.
    """
    return token_hasher.hash(token)


def verify_token_hash(token: str, token_hash: str) -> bool:
    return token_hasher.verify(token, token_hash)


def generate_code(length: int = 32) -> str:
    """Random alphanumeric authorization code."""
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    """RFC 7636 verifier: 43-128 unreserved characters."""
    return secrets.token_urlsafe(48)


def compute_code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    try:
        computed = compute_code_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed, code_challenge)
