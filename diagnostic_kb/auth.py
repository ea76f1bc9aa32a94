"""
Authentication module for the diagnostics search service.

Validates bearer tokens issued by the external identity provider and extracts
the user id (``sub`` claim).
"""
import os

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

load_dotenv()

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_PUBLIC_KEY_PATH = os.getenv("JWT_PUBLIC_KEY_PATH", "/app/public.pem")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256" if JWT_SECRET else "RS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")


def get_jwt_public_key() -> str:
    with open(JWT_PUBLIC_KEY_PATH, "r") as f:
        return f.read().replace('\r\n', '\n').replace('\r', '\n')


def get_verification_key() -> str:
    """Shared secret for HS* algorithms, PEM public key otherwise."""
    if JWT_ALGORITHM.startswith("HS"):
        if not JWT_SECRET:
            raise AuthError("JWT_SECRET is not configured", status_code=500)
        return JWT_SECRET
    return get_jwt_public_key()


security = HTTPBearer()


class AuthError(Exception):
    """Custom exception for authentication errors."""
    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def decode_token(token: str) -> dict:
    options = {"verify_aud": bool(JWT_AUDIENCE)}
    return jwt.decode(
        token,
        get_verification_key(),
        algorithms=[JWT_ALGORITHM],
        audience=JWT_AUDIENCE,
        options=options,
    )


async def get_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """
    Extract the user id from the JWT token.

    Args:
        request: FastAPI request object
        credentials: JWT credentials from Authorization header

    Returns:
        user_id: The ``sub`` claim of the token

    Raises:
        HTTPException: If token is invalid or missing the sub claim
    """
    try:
        payload = decode_token(credentials.credentials)

        user_id = payload.get("sub")
        if not user_id:
            raise AuthError("Token missing sub claim")

        request.state.user_id = user_id
        return user_id

    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (AuthError, OSError) as e:
        status_code = e.status_code if isinstance(e, AuthError) else status.HTTP_500_INTERNAL_SERVER_ERROR
        message = e.message if isinstance(e, AuthError) else "JWT public key is not available"
        raise HTTPException(
            status_code=status_code,
            detail=message,
            headers={"WWW-Authenticate": "Bearer"},
        )
