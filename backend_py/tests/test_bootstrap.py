"""Tests for connection-time authentication."""

import pytest

from workhub.realtime.bootstrap import SessionBootstrap, extract_token
from workhub.realtime.errors import AuthenticationFailure

from conftest import FakeUserStore, FakeVerifier, make_identity


def _bootstrap():
    verifier, users = FakeVerifier(), FakeUserStore()
    return SessionBootstrap(verifier, users), verifier, users


def test_extract_token_prefers_auth_payload() -> None:
    environ = {"QUERY_STRING": "token=from-query", "HTTP_AUTHORIZATION": "Bearer from-header"}
    assert extract_token({"token": "from-auth"}, environ) == "from-auth"
    assert extract_token(None, environ) == "from-query"
    assert extract_token({}, {"HTTP_AUTHORIZATION": "Bearer from-header"}) == "from-header"
    assert extract_token(None, {"HTTP_AUTHORIZATION": "Basic abc"}) is None
    assert extract_token(None, None) is None


@pytest.mark.asyncio
async def test_valid_token_for_active_user_resolves_identity() -> None:
    bootstrap, verifier, users = _bootstrap()
    verifier.tokens["t1"] = {"sub": "u1"}
    users.users["u1"] = make_identity("u1")

    identity = await bootstrap.authenticate("t1")

    assert identity.id == "u1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token, message",
    [
        (None, "Authentication required"),
        ("", "Authentication required"),
        ("garbage", "Invalid token"),
        ("no-sub", "Invalid token"),
        ("inactive", "User not found or inactive"),
    ],
)
async def test_rejections(token, message) -> None:
    bootstrap, verifier, _ = _bootstrap()
    verifier.tokens["no-sub"] = {"email": "x@y.z"}
    verifier.tokens["inactive"] = {"sub": "u9"}

    with pytest.raises(AuthenticationFailure) as excinfo:
        await bootstrap.authenticate(token)
    assert excinfo.value.message == message


@pytest.mark.asyncio
async def test_user_store_failure_is_an_authentication_failure() -> None:
    bootstrap, verifier, users = _bootstrap()
    verifier.tokens["t1"] = {"sub": "u1"}
    users.error = RuntimeError("db down")

    with pytest.raises(AuthenticationFailure, match="Authentication failed"):
        await bootstrap.authenticate("t1")


@pytest.mark.asyncio
async def test_refused_connection_is_not_registered(harness) -> None:
    """Given a bad token, when connecting, then nothing is registered or announced."""
    with pytest.raises(AuthenticationFailure):
        await harness.hub.connect("s1", "bogus")

    assert harness.hub.registry.all_sids() == []
    assert harness.server.emitted == []
