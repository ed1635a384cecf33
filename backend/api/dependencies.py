"""
API dependencies for authentication.

Session tokens are issued by the identity provider and arrive either as a
Bearer token or in the session cookie set by the frontend.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import SessionClaims, SessionTokenService
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import User

session_token_service = SessionTokenService(
    secret_key=settings.identity_jwt_secret,
    algorithm=settings.identity_jwt_algorithm,
    audience=settings.identity_jwt_audience,
)


async def get_current_session(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> SessionClaims:
    """
    Dependency returning the verified session claims.

    Checks the Authorization header first, then the session cookie.
    """
    token = None
    if authorization and authorization.startswith("Bearer "):
        parts = authorization.split(" ", 1)
        token = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None

    if not token:
        token = request.cookies.get(settings.session_cookie_name)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = session_token_service.decode_session_token(token)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


async def get_current_identity(
    claims: Annotated[SessionClaims, Depends(get_current_session)],
) -> SessionClaims:
    """Session claims that also carry the user's email address."""
    if not claims.email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User email not found. Please update your profile.",
        )
    return claims


async def get_current_user(
    claims: Annotated[SessionClaims, Depends(get_current_session)],
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency loading the user row for the session."""
    result = await db.execute(select(User).where(User.identity_user_id == claims.sub))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found. Please complete your onboarding first.",
        )
    return user


CurrentSession = Annotated[SessionClaims, Depends(get_current_session)]
CurrentIdentity = Annotated[SessionClaims, Depends(get_current_identity)]
CurrentUser = Annotated[User, Depends(get_current_user)]
