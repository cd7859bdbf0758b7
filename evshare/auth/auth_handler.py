import os
import jwt
import time
from typing import Dict, Optional

JWT_SECRET = os.getenv("JWT_SECRET", "evshare-dev-secret-change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXP_DELTA_SECONDS = os.getenv("JWT_EXP_DELTA_SECONDS", "3600")


def token_response(token: str, user_id: int) -> Dict:
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": user_id,
    }


def sign_jwt(user_id: int, role: str = "co_owner") -> Dict:
    """Generate a JWT token for a given user ID."""
    payload = {
        "user_id": user_id,
        "role": role,
        "expires": time.time() + int(JWT_EXP_DELTA_SECONDS)
    }
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token_response(token, user_id)


def decode_jwt(token: str) -> Optional[dict]:
    """Decode a JWT token and return the payload if valid, else None."""
    try:
        decoded_token = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None

    if decoded_token.get("expires", 0) >= time.time():
        return decoded_token
    return None
