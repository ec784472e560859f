"""Firebase ID token authentication."""

import logging
import time
from typing import Any

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from core.config import settings
from schemas.auth import AuthenticatedUser, AuthError, FirebaseTokenClaims

logger = logging.getLogger(__name__)


class FirebaseJWTBearer(HTTPBearer):
    """Bearer authentication with Firebase ID tokens."""

    def __init__(self, auto_error: bool = True):
        """Initialize Firebase JWT Bearer."""
        super().__init__(auto_error=auto_error)
        self._jwks_cache: dict[str, Any] = {}
        self._cache_expiry: int = 0

    async def get_jwks(self) -> dict[str, Any]:
        """Get the JSON Web Key Set Google publishes for Firebase tokens."""
        current_time = int(time.time())
        if self._jwks_cache and current_time < self._cache_expiry:
            return self._jwks_cache

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(settings.firebase_jwks_url)
                response.raise_for_status()
                jwks = response.json()

                # Google rotates keys daily, an hour of caching is safe
                self._jwks_cache = jwks
                self._cache_expiry = current_time + 3600

                return jwks  # type: ignore[no-any-return]

        except httpx.HTTPError as e:
            logger.error(f"Unable to fetch Firebase JWKS: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Unable to fetch JWKS: {e}",
            ) from e

    def get_signing_key(
        self, token_header: dict[str, Any], jwks: dict[str, Any]
    ) -> dict[str, Any]:
        """Get the RSA key matching the token's key id."""
        if "kid" not in token_header:
            raise AuthError(
                error="invalid_header",
                description="Authorization malformed: missing kid",
            )

        for key in jwks.get("keys", []):
            if key.get("kid") == token_header["kid"]:
                return {
                    "kty": key["kty"],
                    "kid": key["kid"],
                    "use": key.get("use", "sig"),
                    "n": key["n"],
                    "e": key["e"],
                }

        raise AuthError(
            error="invalid_header",
            description="Unable to find appropriate key",
        )

    async def verify_token(self, token: str) -> FirebaseTokenClaims:
        """Verify and decode a Firebase ID token."""
        try:
            token_header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise AuthError(
                error="invalid_header",
                description="Invalid header: use a Firebase ID token",
            ) from e

        jwks = await self.get_jwks()
        signing_key = self.get_signing_key(token_header, jwks)

        try:
            payload = jwt.decode(
                token,
                signing_key,
                algorithms=["RS256"],
                audience=settings.firebase_project_id,
                issuer=settings.firebase_issuer,
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthError(
                error="token_expired", description="Token has expired"
            ) from e
        except jwt.JWTClaimsError as e:
            raise AuthError(
                error="invalid_claims", description=f"Invalid claims: {e}"
            ) from e
        except JWTError as e:
            raise AuthError(error="invalid_token", description="Invalid token") from e

        if not payload.get("sub"):
            raise AuthError(error="invalid_token", description="Token has no subject")

        return FirebaseTokenClaims(**payload)

    async def __call__(  # type: ignore[override]
        self,
        credentials: HTTPAuthorizationCredentials | None = Depends(  # noqa: B008
            HTTPBearer(auto_error=False)
        ),
    ) -> FirebaseTokenClaims:
        """Validate the bearer token and return its claims."""
        if not credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Bearer token missing",
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            return await self.verify_token(credentials.credentials)
        except AuthError as e:
            raise HTTPException(
                status_code=e.status_code,
                detail={"error": e.error, "description": e.description},
                headers={"WWW-Authenticate": "Bearer"},
            ) from e


# Global instances
firebase_jwt_bearer = FirebaseJWTBearer()


async def get_current_user(
    request: Request,
    claims: FirebaseTokenClaims = Depends(firebase_jwt_bearer),  # noqa: B008
) -> AuthenticatedUser:
    """Get current authenticated user."""
    # Rate limiters key on the authenticated subject when present
    request.state.user_id = claims.sub

    return AuthenticatedUser(
        user_id=claims.sub,
        email=claims.email,
        name=claims.name,
        email_verified=claims.email_verified,
    )
