from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from taskboard.core.config import Settings, get_settings

# Claims checked in order for the authenticated user's id
USER_ID_CLAIMS = ("sub", "id", "user_id")

security_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, settings: Settings) -> dict:
    """Verify and decode an access token issued by the identity provider."""
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError:
        raise _unauthorized("Invalid or expired access token")


def user_id_from_claims(claims: dict) -> str | None:
    for claim in USER_ID_CLAIMS:
        value = claims.get(claim)
        if value:
            return str(value)
    return None


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None:
        raise _unauthorized("Not authenticated")

    claims = decode_access_token(credentials.credentials, settings)
    user_id = user_id_from_claims(claims)
    if user_id is None:
        raise _unauthorized("User ID not found in token claims")
    return user_id
