"""Tests for the PKCE exchange engine (PkceService)."""

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select

from seatpass.features.auth.exceptions import (
    ExchangeConflictException,
    InvalidOrExpiredCodeException,
    SessionExpiredException,
)
from seatpass.features.auth.hashing import compute_code_challenge, generate_code_verifier, token_digest
from seatpass.features.auth.jwt_utils import decode_access_token
from seatpass.features.auth.models import ExtensionToken, OAuthExchange
from seatpass.features.auth.pkce import PkceService
from seatpass.features.auth.service import TokenService
from seatpass.features.user.models import User
from seatpass.shared.exceptions import RequestValidationException

CALLBACK = "vscode://ext/callback"


async def _exchange(session, state: str) -> OAuthExchange:
    return (await session.execute(select(OAuthExchange).where(OAuthExchange.state == state))).scalar_one()


# PkceService.initiate


class TestInitiate:
    async def test_generates_verifier_pair_when_no_challenge(self, session):
        response = await PkceService.initiate(session, CALLBACK)

        assert response.code_verifier is not None
        assert response.code_challenge == compute_code_challenge(response.code_verifier)
        assert response.code_challenge_method == "S256"
        assert len(response.state) == 43

        exchange = await _exchange(session, response.state)
        assert exchange.redirect_uri == CALLBACK
        assert len(exchange.authorization_code) == 32
        assert exchange.expires_at - exchange.created_at == timedelta(minutes=10)

    async def test_trusts_client_challenge(self, session):
        verifier = generate_code_verifier()
        challenge = compute_code_challenge(verifier)
        response = await PkceService.initiate(session, CALLBACK, code_challenge=challenge)

        assert response.code_verifier is None
        exchange = await _exchange(session, response.state)
        assert exchange.code_challenge == challenge
        assert exchange.code_verifier is None

    async def test_keeps_client_state(self, session):
        response = await PkceService.initiate(session, CALLBACK, state="client-state-0123456789")
        assert response.state == "client-state-0123456789"

    async def test_auth_url_embeds_handshake(self, session):
        response = await PkceService.initiate(session, CALLBACK)
        exchange = await _exchange(session, response.state)

        url = urlparse(response.auth_url)
        query = parse_qs(url.query)
        assert url.path == "/auth/extension/sign-in"
        assert query["state"] == [response.state]
        assert query["redirect_uri"] == [CALLBACK]
        assert query["code"] == [exchange.authorization_code]
        assert query["code_challenge"] == [response.code_challenge]

    async def test_requires_redirect_uri(self, session):
        with pytest.raises(RequestValidationException):
            await PkceService.initiate(session, "")

    async def test_rejects_plain_method(self, session):
        with pytest.raises(RequestValidationException):
            await PkceService.initiate(session, CALLBACK, code_challenge="a" * 43, code_challenge_method="plain")

    async def test_duplicate_state_conflicts(self, session):
        await PkceService.initiate(session, CALLBACK, state="client-state-0123456789")
        await session.commit()
        with pytest.raises(ExchangeConflictException):
            await PkceService.initiate(session, CALLBACK, state="client-state-0123456789")

    async def test_expired_state_can_be_reused(self, session):
        past = datetime.now(UTC) - timedelta(minutes=11)
        stale = await PkceService.initiate(session, CALLBACK, state="client-state-0123456789", now=past)
        await session.commit()

        fresh = await PkceService.initiate(session, CALLBACK, state="client-state-0123456789")
        await session.commit()
        assert fresh.state == "client-state-0123456789"
        assert fresh.expires_at > stale.expires_at
        exchange = await _exchange(session, "client-state-0123456789")
        assert exchange.expires_at == fresh.expires_at


# PkceService.purge_expired_exchanges


class TestPurgeExpiredExchanges:
    async def test_purges_expired_and_keeps_live_records(self, session):
        past = datetime.now(UTC) - timedelta(minutes=11)
        await PkceService.initiate(session, CALLBACK, now=past)
        live = await PkceService.initiate(session, CALLBACK)

        assert await PkceService.purge_expired_exchanges(session) == 1
        assert (await session.execute(select(OAuthExchange.state))).scalars().all() == [live.state]

    async def test_consumed_code_still_conflicts_until_expiry(self, session):
        verifier = generate_code_verifier()
        response = await PkceService.initiate(session, CALLBACK, code_challenge=compute_code_challenge(verifier))
        await PkceService.complete_with_identity(session, response.state, "user_123", CALLBACK)
        exchange = await _exchange(session, response.state)
        await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK)

        assert await PkceService.purge_expired_exchanges(session) == 0
        with pytest.raises(ExchangeConflictException):
            await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK)


# PkceService.complete_with_identity


class TestCompleteWithIdentity:
    async def test_attaches_identity_and_provisions_user(self, session):
        response = await PkceService.initiate(session, CALLBACK)
        completed = await PkceService.complete_with_identity(
            session, response.state, "user_123", CALLBACK, email="dev@example.com"
        )

        exchange = await _exchange(session, response.state)
        assert exchange.identity == "user_123"
        assert completed.authorization_code == exchange.authorization_code

        user = (await session.execute(select(User).where(User.identity == "user_123"))).scalar_one()
        assert user.email == "dev@example.com"

    async def test_other_redirect_uri_is_rejected(self, session):
        response = await PkceService.initiate(session, CALLBACK)
        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.complete_with_identity(session, response.state, "user_123", "vscode://evil/callback")

    async def test_unknown_state_is_rejected(self, session):
        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.complete_with_identity(session, "unknown-state", "user_123", CALLBACK)

    async def test_expired_exchange_is_rejected(self, session):
        past = datetime.now(UTC) - timedelta(minutes=11)
        response = await PkceService.initiate(session, CALLBACK, now=past)
        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.complete_with_identity(session, response.state, "user_123", CALLBACK)

    async def test_can_be_repeated_to_rebind_identity(self, session):
        response = await PkceService.initiate(session, CALLBACK)
        await PkceService.complete_with_identity(session, response.state, "user_a", CALLBACK)
        await PkceService.complete_with_identity(session, response.state, "user_b", CALLBACK)
        assert (await _exchange(session, response.state)).identity == "user_b"

    async def test_issue_after_completion(self, session):
        """Initiate without challenge, complete, then issue a long-lived token."""
        response = await PkceService.initiate(session, CALLBACK)
        assert response.code_challenge
        assert response.state

        await PkceService.complete_with_identity(session, response.state, "user_123", CALLBACK)
        issued = await TokenService.issue_long_lived_token(session, "user_123")

        stmt = select(ExtensionToken).where(ExtensionToken.token_digest == token_digest(issued.access_token))
        record = (await session.execute(stmt)).scalar_one()
        assert record.revoked_at is None


# PkceService.attach_authorization_code


class TestAttachAuthorizationCode:
    async def test_stores_code_and_keeps_verified_profile(self, session, make_user):
        await make_user(identity="user_123", email="verified@example.com", username="verified")
        response = await PkceService.initiate(session, CALLBACK)

        attached = await PkceService.attach_authorization_code(
            session,
            response.state,
            "user_123",
            "client-code-0123456789",
            email="hint@example.com",
            username="hint",
        )

        assert attached.authorization_code == "client-code-0123456789"
        user = (await session.execute(select(User).where(User.identity == "user_123"))).scalar_one()
        assert user.email == "verified@example.com"
        assert user.username == "verified"

    async def test_fills_empty_profile_fields(self, session):
        response = await PkceService.initiate(session, CALLBACK)
        await PkceService.attach_authorization_code(
            session, response.state, "user_new", "client-code-0123456789", username="newbie"
        )
        user = (await session.execute(select(User).where(User.identity == "user_new"))).scalar_one()
        assert user.username == "newbie"

    async def test_expired_exchange_is_deleted(self, session):
        past = datetime.now(UTC) - timedelta(minutes=11)
        response = await PkceService.initiate(session, CALLBACK, now=past)

        with pytest.raises(SessionExpiredException):
            await PkceService.attach_authorization_code(session, response.state, "user_123", "client-code-0123456789")

        result = await session.execute(select(OAuthExchange).where(OAuthExchange.state == response.state))
        assert result.scalar_one_or_none() is None

    async def test_unknown_state_is_rejected(self, session):
        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.attach_authorization_code(session, "missing", "user_123", "client-code-0123456789")


# PkceService.exchange_code


class TestExchangeCode:
    async def _completed(self, session, verifier: str) -> OAuthExchange:
        response = await PkceService.initiate(session, CALLBACK, code_challenge=compute_code_challenge(verifier))
        await PkceService.complete_with_identity(session, response.state, "user_123", CALLBACK)
        return await _exchange(session, response.state)

    async def test_opens_session_once(self, session):
        verifier = generate_code_verifier()
        exchange = await self._completed(session, verifier)

        tokens = await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK)
        assert decode_access_token(tokens.access_token)["sub"] == "user_123"

        with pytest.raises((ExchangeConflictException, InvalidOrExpiredCodeException)):
            await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK)

    async def test_wrong_verifier_burns_code(self, session):
        verifier = generate_code_verifier()
        exchange = await self._completed(session, verifier)

        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.exchange_code(session, exchange.authorization_code, generate_code_verifier(), CALLBACK)
        assert exchange.consumed_at is not None

        with pytest.raises(ExchangeConflictException):
            await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK)

    async def test_uncompleted_handshake_conflicts(self, session):
        verifier = generate_code_verifier()
        response = await PkceService.initiate(session, CALLBACK, code_challenge=compute_code_challenge(verifier))
        exchange = await _exchange(session, response.state)

        with pytest.raises(ExchangeConflictException):
            await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK)

    async def test_other_redirect_uri_is_rejected(self, session):
        verifier = generate_code_verifier()
        exchange = await self._completed(session, verifier)
        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.exchange_code(session, exchange.authorization_code, verifier, "vscode://evil/callback")

    async def test_expired_exchange_is_rejected(self, session):
        verifier = generate_code_verifier()
        exchange = await self._completed(session, verifier)
        later = datetime.now(UTC) + timedelta(minutes=11)
        with pytest.raises(InvalidOrExpiredCodeException):
            await PkceService.exchange_code(session, exchange.authorization_code, verifier, CALLBACK, now=later)
