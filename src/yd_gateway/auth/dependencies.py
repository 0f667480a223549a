"""FastAPI dependencies: get_current_user, require_admin, verify_cron_secret.

Usage in any protected router:
    from src.yd_gateway.auth.dependencies import get_current_user

    @router.get("/protected")
    async def protected(user: UserModel = Depends(get_current_user)):
        ...
"""

import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.yd_common.database import get_db_session
from src.yd_common.errors import (
    AccountDisabledError,
    AdminRequiredError,
    InvalidCredentialsError,
    InvalidCronSecretError,
)
from src.yd_gateway.auth.jwt_handler import decode_access_token
from src.yd_gateway.user.db_models import UserModel

# tokenUrl points at the external identity service's login endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> UserModel:
    """Extract and validate the JWT Bearer token, return the UserModel.

    Raises HTTP 401 if the token is missing, invalid, or expired.
    Raises HTTP 403 (AccountDisabledError) if the user account is disabled.
    """
    try:
        payload = decode_access_token(token)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise _CREDENTIALS_EXCEPTION

    result = await db.execute(select(UserModel).where(UserModel.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise _CREDENTIALS_EXCEPTION

    if not user.is_active:
        raise AccountDisabledError()

    return user


async def require_admin(
    current_user: UserModel = Depends(get_current_user),
) -> UserModel:
    """Verify the caller is an administrator (HTTP 403 otherwise)."""
    if not current_user.is_admin:
        raise AdminRequiredError()
    return current_user


async def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Authenticate the external time trigger via `Authorization: Bearer <CRON_SECRET>`."""
    expected = f"Bearer {settings.CRON_SECRET}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise InvalidCronSecretError()
