from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from evshare.auth.auth_handler import decode_jwt


class JWTBearer(HTTPBearer):
    """Rejects requests without a valid, unexpired bearer token."""

    def __init__(self, auto_error: bool = True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request: Request) -> str:
        credentials: HTTPAuthorizationCredentials = await super().__call__(request)
        if not credentials:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid authorization code.")
        if credentials.scheme != "Bearer":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid authentication scheme.")

        payload = decode_jwt(credentials.credentials)
        if not payload:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

        request.state.user_id = payload.get("user_id")
        return credentials.credentials


jwt_bearer = JWTBearer()


async def get_current_user_id(token: str = Depends(jwt_bearer)) -> int:
    """Caller identity as carried by the token."""
    payload = decode_jwt(token)
    try:
        return int(payload["user_id"])
    except (TypeError, KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
