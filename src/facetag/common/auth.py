"""JWT authentication for admin, operator and guardian callers.

Tokens are issued by the portal's auth service and verified here with its
ES256 public key. In ``no_auth`` (development) mode the claims are read
without verification and admin/operator routes accept anonymous callers;
guardian routes still need a token because the guardian id comes from it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Annotated, ClassVar, Literal

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from ..service.config import ServiceConfig

Permission = Literal[
    "guardian",
    "video_analysis",
    "admin",
]

Permissions = Annotated[list[str], Field(default_factory=list)]


class UserPayload(BaseModel):
    """Claims of an authenticated caller."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore", strict=True)

    id: str
    is_admin: bool = Field(default=False, strict=True)
    permissions: Permissions

    @field_validator("permissions")
    @classmethod
    def unique_permissions(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @property
    def guardian_id(self) -> int:
        """Guardian row id carried in the token subject."""
        try:
            return int(self.id)
        except ValueError:
            raise _unauthorized("JWT subject is not a guardian id")


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


# The auth service may write its key after this service starts
_public_key_cache: str | None = None
_KEY_WAIT_SECONDS = 30


async def get_public_key(config: ServiceConfig) -> str:
    """Read the verification key, waiting for it to appear on first use."""
    global _public_key_cache

    if _public_key_cache:
        return _public_key_cache

    path = config.public_key_path
    for remaining in range(_KEY_WAIT_SECONDS, 0, -1):
        if path is not None and path.exists():
            try:
                key = path.read_text().strip()
            except OSError as exc:
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=f"Failed to read public key file: {exc}",
                )
            if key:
                _public_key_cache = key
                logger.info(f"Loaded JWT public key from {path}")
                return key
        if remaining > 1:
            await asyncio.sleep(1)

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Public key not found at {path}. Is the authentication service running?",
    )


async def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
) -> UserPayload | None:
    """Caller identity from the bearer token, or None without one.

    Raises:
        HTTPException: 401 for an expired, forged or malformed token.
    """
    if token is None:
        return None

    config: ServiceConfig = request.app.state.config
    try:
        if config.no_auth:
            claims = jwt.get_unverified_claims(token)
        else:
            claims = jwt.decode(
                token,
                await get_public_key(config),
                algorithms=["ES256"],
                options={"require": ["id", "exp"]},
            )
        return UserPayload.model_validate(claims)
    except ExpiredSignatureError:
        raise _unauthorized("JWT token has expired")
    except ValidationError:
        raise _unauthorized("JWT payload is invalid")
    except JWTError:
        raise _unauthorized("Could not validate credentials")


def require_permission(permission: Permission):
    """Dependency factory: the caller must be an admin or hold ``permission``."""

    async def permission_checker(
        request: Request,
        current_user: UserPayload | None = Depends(get_current_user),
    ) -> UserPayload | None:
        config: ServiceConfig = request.app.state.config
        if config.no_auth and permission != "guardian":
            return current_user
        if current_user is None:
            raise _unauthorized("Authentication required")
        if current_user.is_admin or permission in current_user.permissions:
            return current_user
        raise _forbidden(f"Insufficient permissions. Required: {permission}")

    return permission_checker


async def require_guardian(
    current_user: UserPayload | None = Depends(require_permission("guardian")),
) -> UserPayload:
    """Guardian routes always need an identity, even in no-auth mode."""
    if current_user is None:
        raise _unauthorized("Authentication required")
    return current_user


async def require_user(
    request: Request,
    current_user: UserPayload | None = Depends(get_current_user),
) -> UserPayload | None:
    """Any authenticated caller (admin, operator or guardian)."""
    config: ServiceConfig = request.app.state.config
    if current_user is None and not config.no_auth:
        raise _unauthorized("Authentication required")
    return current_user


async def require_admin(
    request: Request,
    current_user: UserPayload | None = Depends(get_current_user),
) -> UserPayload | None:
    config: ServiceConfig = request.app.state.config
    if config.no_auth:
        return current_user
    if current_user is None:
        raise _unauthorized("Authentication required")
    if not current_user.is_admin:
        raise _forbidden("Insufficient permissions. Admin access required")
    return current_user
