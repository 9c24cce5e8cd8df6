from fastapi import Depends, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from shared.errors import AuthError, ForbiddenError

from .api_key import verify_api_key
from .identity import IdentityVerifier, VerifiedIdentity

# Defines the expected header format (Bearer <token>)
bearer_scheme = HTTPBearer(auto_error=False)

# Older clients send the credential as "USER-KEY: Bearer <token>"
user_key_header = APIKeyHeader(name="USER-KEY", auto_error=False)

# Defines the expected internal service header
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


def get_identity_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.identity_verifier


def _extract_token(
    credentials: HTTPAuthorizationCredentials | None, user_key: str | None
) -> str | None:
    if credentials and credentials.credentials:
        return credentials.credentials
    if user_key:
        token = user_key.removeprefix("Bearer ").strip()
        return token or None
    return None


async def get_current_customer(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    user_key: str | None = Depends(user_key_header),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> VerifiedIdentity:
    """Dependency to validate the bearer credential and return the verified identity."""
    token = _extract_token(credentials, user_key)
    if not token:
        raise AuthError(
            "Authorization credential is missing",
            code="AUTH_MISSING_CREDENTIAL",
            field="Authorization",
        )

    identity = verifier.verify(token)

    # Store in request state for downstream use (like rate limiting)
    request.state.customer_id = identity.customer_id
    return identity


async def verify_internal_api_key(
    request: Request, api_key: str | None = Depends(api_key_header)
) -> bool:
    """Dependency to validate service-to-service internal requests."""
    if not verify_api_key(api_key, request.app.state.settings.internal_api_key):
        raise ForbiddenError(
            "Invalid or missing X-Internal-API-Key header", field="X-Internal-API-Key"
        )
    return True
