"""
Unit tests for inbound request authentication.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from shared.errors import AccessDeniedError, AuthenticationError, InvalidConfigError
from shared.test_helpers import (
    TEST_CLIENT_ID,
    CountingConfigStore,
    FixedClock,
    create_credential,
    create_oauth_token,
    create_project,
)
from service_edge.app.auth.identity import ANONYMOUS
from service_edge.app.auth.inbound import InboundAuthEvaluator
from service_edge.app.auth.oauth import TokenClaimsValidator
from service_edge.app.caching.edge_cache import InMemoryEdgeCache
from service_edge.app.caching.read_through import ReadThroughResolver
from service_edge.app.models import AccessGrant, AuthType, EntityType

API_KEY = "edge_testkey0000000000000000000000000"


class TestInboundAuthEvaluator:
    """Test cases for InboundAuthEvaluator."""

    @pytest.fixture
    def clock(self):
        return FixedClock()

    @pytest.fixture
    def store(self):
        return CountingConfigStore()

    @pytest.fixture
    def cache(self):
        return InMemoryEdgeCache()

    @pytest.fixture
    def evaluator(self, store, cache, clock):
        resolver = ReadThroughResolver(store, cache)
        validator = TokenClaimsValidator(TEST_CLIENT_ID, clock=lambda: clock().timestamp())
        return InboundAuthEvaluator(resolver, validator, clock=clock)

    @pytest.fixture
    async def credential(self, store):
        credential = create_credential(API_KEY, user_id="user-1")
        await store.put(EntityType.API_KEY, credential.key, credential.to_record())
        return credential

    async def _rewrite(self, store, cache, credential):
        """Store a changed credential and drop its cache entry."""
        await store.put(EntityType.API_KEY, credential.key, credential.to_record())
        await cache.delete(EntityType.API_KEY, credential.key)

    @pytest.mark.asyncio
    async def test_none_passes_anonymously(self, evaluator, store):
        identity = await evaluator.evaluate(create_project(inbound_auth_type="none"), {})

        assert identity == ANONYMOUS
        assert identity.is_anonymous
        assert store.read_count() == 0

    @pytest.mark.asyncio
    async def test_api_key_required(self, evaluator):
        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="api_key"), {})
        assert exc_info.value.message == "API key required"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_api_key_is_invalid(self, evaluator):
        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="api_key"), {"x-api-key": "edge_unknown"})
        assert exc_info.value.message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_key_for_another_project_is_invalid(self, evaluator, credential):
        project = create_project("other1", inbound_auth_type="api_key")

        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(project, {"x-api-key": API_KEY})
        assert exc_info.value.message == "Invalid API key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [
        {"x-api-key": API_KEY},
        {"authorization": f"Bearer {API_KEY}"},
    ])
    async def test_valid_key_passes_with_owner_identity(self, evaluator, credential, headers):
        identity = await evaluator.evaluate(create_project(inbound_auth_type="api_key"), headers)

        assert identity.auth_type == AuthType.API_KEY
        assert identity.user_id == "user-1"

    @pytest.mark.asyncio
    async def test_key_without_user_is_anonymous(self, evaluator, store):
        credential = create_credential(API_KEY)
        await store.put(EntityType.API_KEY, credential.key, credential.to_record())

        identity = await evaluator.evaluate(create_project(inbound_auth_type="api_key"), {"x-api-key": API_KEY})

        assert identity.is_anonymous

    @pytest.mark.asyncio
    async def test_deactivation_flips_pass_to_reject(self, evaluator, store, cache, credential):
        project = create_project(inbound_auth_type="api_key")
        headers = {"x-api-key": API_KEY}
        assert (await evaluator.evaluate(project, headers)).user_id == "user-1"

        credential.active = False
        await self._rewrite(store, cache, credential)

        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(project, headers)
        assert exc_info.value.message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_expiry_flips_pass_to_reject(self, evaluator, store, cache, clock, credential):
        project = create_project(inbound_auth_type="api_key")
        headers = {"x-api-key": API_KEY}
        await evaluator.evaluate(project, headers)

        credential.expires_at = clock() - timedelta(seconds=1)
        await self._rewrite(store, cache, credential)

        with pytest.raises(AuthenticationError):
            await evaluator.evaluate(project, headers)

    @pytest.mark.asyncio
    async def test_oauth_token_required(self, evaluator):
        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"x-api-key": API_KEY})
        assert exc_info.value.message == "OAuth token required"

    @pytest.mark.asyncio
    async def test_oauth_wrong_audience_is_invalid(self, evaluator, clock):
        token = create_oauth_token(audience="someone-else", now=clock().timestamp())

        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"authorization": f"Bearer {token}"})
        assert exc_info.value.message == "Invalid OAuth token"

    @pytest.mark.asyncio
    async def test_oauth_expired_token_is_invalid(self, evaluator, clock):
        token = create_oauth_token(expires_in=-10, now=clock().timestamp())

        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"authorization": f"Bearer {token}"})
        assert exc_info.value.message == "Invalid OAuth token"

    @pytest.mark.asyncio
    async def test_oauth_garbage_token_is_invalid(self, evaluator):
        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"authorization": "Bearer not-a-jwt"})
        assert exc_info.value.message == "Invalid OAuth token"

    @pytest.mark.asyncio
    async def test_oauth_without_grant_is_denied(self, evaluator, clock):
        token = create_oauth_token(now=clock().timestamp())

        with pytest.raises(AccessDeniedError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"authorization": f"Bearer {token}"})
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Access denied"

    @pytest.mark.asyncio
    async def test_oauth_revoked_grant_is_denied(self, evaluator, store, clock):
        grant = AccessGrant(user_id="user-1", project_id="abc123", has_access=False)
        await store.put(EntityType.ACCESS_GRANT, grant.key, grant.to_record())
        token = create_oauth_token(now=clock().timestamp())

        with pytest.raises(AccessDeniedError):
            await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"authorization": f"Bearer {token}"})

    @pytest.mark.asyncio
    async def test_oauth_with_grant_passes(self, evaluator, store, clock):
        grant = AccessGrant(user_id="user-1", project_id="abc123", access_level="admin")
        await store.put(EntityType.ACCESS_GRANT, grant.key, grant.to_record())
        token = create_oauth_token(now=clock().timestamp())

        identity = await evaluator.evaluate(create_project(inbound_auth_type="oauth"), {"authorization": f"Bearer {token}"})

        assert identity.user_id == "user-1"
        assert identity.access_level == "admin"
        assert identity.auth_type == AuthType.OAUTH

    @pytest.mark.asyncio
    async def test_lookup_failure_fails_closed(self, evaluator):
        evaluator.resolver.resolve_record = AsyncMock(side_effect=RuntimeError("store exploded"))

        with pytest.raises(AuthenticationError) as exc_info:
            await evaluator.evaluate(create_project(inbound_auth_type="api_key"), {"x-api-key": API_KEY})
        assert exc_info.value.message == "Authentication failed"

    @pytest.mark.asyncio
    async def test_unknown_auth_type_is_invalid_config(self, evaluator):
        with pytest.raises(InvalidConfigError):
            await evaluator.evaluate(create_project(inbound_auth_type="saml"), {})
