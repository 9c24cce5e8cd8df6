"""
Boundary to the external identity provider.

The checkout core never looks at raw credentials; it only receives a
VerifiedIdentity from whichever IdentityVerifier the app was built with.
"""
import hashlib
from dataclasses import dataclass
from typing import Protocol

from shared.errors import AuthError

from .jwt_handler import DEFAULT_ALGORITHM, verify_access_token


@dataclass(frozen=True)
class VerifiedIdentity:
    customer_id: int
    # Opaque reference to the credential used, stored on the order instead of the token itself.
    auth_code: str


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> VerifiedIdentity: ...


class JwtIdentityVerifier:
    """Verifies HS256 bearer tokens and extracts the customer_id claim."""

    def __init__(self, secret_key: str, algorithm: str = DEFAULT_ALGORITHM):
        if not secret_key:
            raise ValueError("JwtIdentityVerifier requires a signing key")
        self._secret_key = secret_key
        self._algorithm = algorithm

    def verify(self, token: str) -> VerifiedIdentity:
        payload = verify_access_token(token, self._secret_key, self._algorithm)
        if payload is None:
            raise AuthError("Could not validate credentials", field="Authorization")

        raw_id = payload.get("customer_id", payload.get("sub"))
        try:
            customer_id = int(raw_id)
        except (TypeError, ValueError):
            raise AuthError("Credential carries no customer id", field="Authorization")

        auth_code = payload.get("jti") or hashlib.sha256(token.encode()).hexdigest()
        return VerifiedIdentity(customer_id=customer_id, auth_code=str(auth_code))
