import base64
import binascii
from functools import lru_cache
from typing import Annotated, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings

# auto_error=False so we can answer with our own 401 instead of FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache(maxsize=4)
def load_public_key(raw_key: str) -> RSAPublicKey:
    """Parse a base64 encoded DER (PKIX) RSA public key."""
    try:
        der_bytes = base64.b64decode(raw_key, validate=True)
    except binascii.Error as error:
        raise ValueError("PUBLIC_KEY is not valid base64") from error

    public_key = serialization.load_der_public_key(der_bytes)
    if not isinstance(public_key, RSAPublicKey):
        raise ValueError("PUBLIC_KEY is not an RSA public key")
    return public_key


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# Decode the token and see who is calling
async def get_current_user_id(
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)
    ],
) -> str:
    if credentials is None:
        raise _unauthorized("Missing authentication")

    try:
        public_key = load_public_key(settings.PUBLIC_KEY)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Token verification is not configured",
        ) from error

    try:
        payload = jwt.decode(
            credentials.credentials, public_key, algorithms=["RS256"]
        )
    # Covers bad signatures, malformed tokens and expired ones
    except jwt.PyJWTError:
        raise _unauthorized("Invalid or expired token")

    subject = payload.get("sub")
    if not subject:
        raise _unauthorized("Token is missing subject (sub) claim")

    return subject
