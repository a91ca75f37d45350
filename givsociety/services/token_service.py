"""Access token helpers (HS256 JWT via PyJWT).

Tokens are shared with the auth service: same secret, issuer and
audience, with the user's id in the ``userId`` claim.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

logger = logging.getLogger(__name__)

TOKEN_ISSUER = "giv-society"
TOKEN_AUDIENCE = "giv-society-users"
ACCESS_TOKEN_LIFETIME = timedelta(minutes=15)


def generate_access_token(user, lifetime=ACCESS_TOKEN_LIFETIME):
    """Issue a signed access token for a user."""
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + lifetime,
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm="HS256")


def decode_access_token(token):
    """Verify a token and return its payload, or None if it is not valid."""
    try:
        return jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=["HS256"],
            audience=TOKEN_AUDIENCE,
            issuer=TOKEN_ISSUER,
        )
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected access token: {e}")
        return None
