"""
OAuth bearer token verification for the inbound leg.

Verification runs in two steps: a pluggable signature verifier produces the
token claims, then ``TokenClaimsValidator`` checks audience, expiry and
subject against an injectable clock.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import httpx
from jose import JWTError, jwt

from shared.errors import AuthenticationError
from shared.logging import get_logger

INVALID_TOKEN = "Invalid OAuth token"


class SignatureVerifier(ABC):
    """Turns a raw bearer token into claims, raising on a bad signature."""

    async def close(self) -> None:
        """Release resources."""

    @abstractmethod
    async def verify(self, token: str) -> Dict[str, Any]:
        ...


class ClaimsOnlyVerifier(SignatureVerifier):
    """Decodes claims without checking the signature.

    Only for deployments where tokens are already verified upstream of the
    edge; the service logs a warning at startup when this is in use.
    """

    async def verify(self, token: str) -> Dict[str, Any]:
        return jwt.get_unverified_claims(token)


class JWKSSignatureVerifier(SignatureVerifier):
    """Verifies JWT signatures against a remote JWKS endpoint.

    The key set is loaded lazily and kept for ``refresh_interval`` seconds. A
    token signed with an unknown ``kid`` forces one reload, which picks up
    rotated keys without waiting for the interval.
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: Optional[str] = None,
        *,
        refresh_interval: int = 300,
        http_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.refresh_interval = refresh_interval
        self.logger = get_logger("edge.auth.jwks")

        self._keys_by_kid: Optional[Dict[str, Dict[str, Any]]] = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()
        self._client = client or httpx.AsyncClient(timeout=http_timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def verify(self, token: str) -> Dict[str, Any]:
        kid = jwt.get_unverified_header(token).get("kid")
        if not isinstance(kid, str):
            raise AuthenticationError(INVALID_TOKEN, details={"reason": "missing kid"})

        key = (await self._key_set()).get(kid)
        if key is None:
            key = (await self._key_set(reload=True)).get(kid)
        if key is None:
            raise AuthenticationError(INVALID_TOKEN, details={"reason": "unknown kid", "kid": kid})

        # Audience and expiry are checked by TokenClaimsValidator
        return jwt.decode(
            token,
            key,
            algorithms=[key.get("alg", "RS256")],
            issuer=self.issuer,
            options={"verify_aud": False, "verify_exp": False},
        )

    def _fresh(self) -> bool:
        return self._keys_by_kid is not None and time.monotonic() - self._loaded_at < self.refresh_interval

    async def _key_set(self, reload: bool = False) -> Dict[str, Dict[str, Any]]:
        if not reload and self._fresh():
            return self._keys_by_kid

        async with self._lock:
            # Another waiter may have loaded while we queued
            if not reload and self._fresh():
                return self._keys_by_kid

            response = await self._client.get(self.jwks_url)
            response.raise_for_status()
            keys = response.json().get("keys")
            if not isinstance(keys, list):
                raise AuthenticationError(INVALID_TOKEN, details={"reason": "JWKS response missing keys"})

            self._keys_by_kid = {key["kid"]: key for key in keys if isinstance(key, dict) and "kid" in key}
            self._loaded_at = time.monotonic()
            self.logger.debug("JWKS loaded", kids=sorted(self._keys_by_kid))
            return self._keys_by_kid


class TokenClaimsValidator:
    """Validates audience, expiry and subject of a verified token."""

    def __init__(
        self,
        client_id: str,
        verifier: Optional[SignatureVerifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.verifier = verifier or ClaimsOnlyVerifier()
        self.clock = clock

    async def validate(self, token: str) -> Dict[str, Any]:
        """Return the token claims or raise ``AuthenticationError``."""
        try:
            claims = await self.verifier.verify(token)
        except JWTError as exc:
            raise AuthenticationError(INVALID_TOKEN, details={"reason": str(exc)}) from exc

        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if not self.client_id or self.client_id not in audiences:
            raise AuthenticationError(INVALID_TOKEN, details={"reason": "audience mismatch"})

        expires = claims.get("exp")
        if not isinstance(expires, (int, float)) or expires <= self.clock():
            raise AuthenticationError(INVALID_TOKEN, details={"reason": "expired"})

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError(INVALID_TOKEN, details={"reason": "missing subject"})

        return claims
