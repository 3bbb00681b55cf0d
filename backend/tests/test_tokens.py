"""Tests for JWT access/refresh token handling and the bearer dependency."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from connecthub.auth.dependencies import current_identity, extract_bearer, set_token_verifier
from connecthub.auth.tokens import TokenClaims, TokenVerifier
from connecthub.config import AppSettings
from connecthub.errors import AuthenticationError, InvalidToken

from conftest import ACCESS_SECRET, REFRESH_SECRET


class TestIssueAndVerify:
    def test_access_token_round_trip(self, verifier):
        token = verifier.issue_access(TokenClaims(userId="alice", role="company"))
        claims = verifier.verify_access(token)
        assert claims.userId == "alice"
        assert claims.role == "company"

    def test_access_token_carries_standard_claims(self, verifier):
        token = verifier.issue_access(TokenClaims(userId="alice"))
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["iss"] == "ConnectHub"
        assert payload["aud"] == "connecthub-users"
        assert payload["typ"] == "access"
        assert payload["exp"] - payload["iat"] == 15 * 60

    def test_refresh_token_lives_seven_days(self, verifier):
        token = verifier.issue_refresh(TokenClaims(userId="alice"))
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["typ"] == "refresh"
        assert payload["exp"] - payload["iat"] == 7 * 24 * 3600

    def test_refresh_access_mints_new_access_token(self, verifier):
        refresh = verifier.issue_refresh(TokenClaims(userId="bob"))
        access = verifier.refresh_access(refresh)
        assert verifier.verify_access(access).userId == "bob"


class TestRejection:
    def test_expired_token(self, verifier):
        issued = datetime.now(timezone.utc) - timedelta(hours=1)
        token = verifier.issue_access(TokenClaims(userId="alice"), now=issued)
        with pytest.raises(InvalidToken) as exc:
            verifier.verify_access(token)
        assert exc.value.message == "Invalid or expired token"
        assert exc.value.status_code == 401

    def test_bad_signature(self, verifier):
        other = TokenVerifier(access_secret="someone-else", refresh_secret=REFRESH_SECRET)
        token = other.issue_access(TokenClaims(userId="alice"))
        with pytest.raises(InvalidToken):
            verifier.verify_access(token)

    def test_wrong_audience(self, verifier):
        other = TokenVerifier(ACCESS_SECRET, REFRESH_SECRET, audience="another-app")
        token = other.issue_access(TokenClaims(userId="alice"))
        with pytest.raises(InvalidToken):
            verifier.verify_access(token)

    def test_wrong_issuer(self, verifier):
        other = TokenVerifier(ACCESS_SECRET, REFRESH_SECRET, issuer="Elsewhere")
        token = other.issue_access(TokenClaims(userId="alice"))
        with pytest.raises(InvalidToken):
            verifier.verify_access(token)

    def test_refresh_token_is_not_an_access_token(self, verifier):
        token = verifier.issue_refresh(TokenClaims(userId="alice"))
        with pytest.raises(InvalidToken):
            verifier.verify_access(token)

    def test_access_token_is_not_a_refresh_token(self, verifier):
        token = verifier.issue_access(TokenClaims(userId="alice"))
        with pytest.raises(InvalidToken):
            verifier.verify_refresh(token)

    def test_same_secret_still_checks_token_class(self):
        shared = TokenVerifier(access_secret="shared", refresh_secret="shared")
        token = shared.issue_refresh(TokenClaims(userId="alice"))
        with pytest.raises(InvalidToken):
            shared.verify_access(token)

    def test_missing_subject(self, verifier):
        token = jwt.encode(
            {
                "typ": "access",
                "iss": "ConnectHub",
                "aud": "connecthub-users",
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidToken):
            verifier.verify_access(token)

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_malformed(self, verifier, token):
        with pytest.raises(InvalidToken):
            verifier.verify_access(token)


def test_from_settings_uses_configured_secrets_and_ttl():
    settings = AppSettings(
        auth={"access_expire_minutes": 5},
        secrets={"jwt": {"access_secret": "a", "refresh_secret": "r"}},
    )
    verifier = TokenVerifier.from_settings(settings)
    token = verifier.issue_access(TokenClaims(userId="alice"))
    payload = jwt.decode(token, "a", algorithms=["HS256"], audience="connecthub-users")
    assert payload["exp"] - payload["iat"] == 5 * 60


class TestBearerDependency:
    @pytest.fixture(autouse=True)
    def install_verifier(self, verifier):
        set_token_verifier(verifier)
        yield
        set_token_verifier(None)

    def test_extract_bearer(self):
        assert extract_bearer("Bearer abc") == "abc"
        assert extract_bearer("bearer abc") == "abc"
        assert extract_bearer("Basic abc") is None
        assert extract_bearer("Bearer ") is None
        assert extract_bearer(None) is None

    @pytest.mark.asyncio
    async def test_current_identity(self, make_token):
        claims = await current_identity(f"Bearer {make_token('alice')}")
        assert claims.userId == "alice"

    @pytest.mark.asyncio
    async def test_current_identity_without_header(self):
        with pytest.raises(AuthenticationError) as exc:
            await current_identity(None)
        assert exc.value.message == "Not authorized, no token"

    @pytest.mark.asyncio
    async def test_current_identity_with_bad_token(self):
        with pytest.raises(InvalidToken):
            await current_identity("Bearer garbage")
