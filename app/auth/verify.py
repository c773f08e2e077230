"""
verify.py
---------
Purpose:
    Firebase ID token verification (RS256, Google JWKS).

Notes:
    - Signing keys are fetched from the JWKS endpoint and cached by PyJWKClient.
    - Audience is the Firebase project id, issuer is
      https://securetoken.google.com/<project id>.
    - Provides `auth_dependency` for protected routes; the user id is the
      `sub` claim.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings

FIREBASE_ALGORITHMS = ["RS256"]

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer()


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        decoded = jwt.decode(
            token,
            signing_key.key,
            algorithms=FIREBASE_ALGORITHMS,
            audience=settings.FIREBASE_PROJECT_ID,
            issuer=settings.token_issuer(),
            options={"verify_exp": True, "require": ["exp", "iat", "sub"]},
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    # Firebase mirrors the uid in user_id; sub must be non-empty
    if not decoded.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token: missing subject",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decoded


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)
