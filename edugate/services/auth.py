from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edugate.core.config import Settings, get_settings
from edugate.core.errors import AuthenticationError, ConfigurationError, UserInactive
from edugate.domain.enums import OverrideType, UserStatus
from edugate.persistence.repos import tenants as tenants_repo
from edugate.services.overrides import OverrideService
from edugate.services.permissions import (
    effective_permissions,
    is_administrator,
    is_platform_operator,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: str
    role: str
    tenant_id: str | None
    additional_roles: tuple[str, ...] = ()
    status: str = UserStatus.ACTIVE

    @property
    def is_platform_operator(self) -> bool:
        return is_platform_operator(self.role)

    @property
    def is_administrator(self) -> bool:
        return is_administrator(self.role)

    def permissions(self) -> list[str]:
        return sorted(str(item) for item in effective_permissions(self.role, self.additional_roles))


def parse_bearer(authorization: str | None) -> str:
    # Accept only "Bearer <token>" credentials.
    if not authorization:
        raise AuthenticationError("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header")
    return token.strip()


class BearerAuthenticator:
    """Verify identity-service tokens and load the account they name.

    Tokens only carry the subject; role, tenant and additional grants always
    come from the shared ``users`` and ``user_roles`` tables.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        overrides: OverrideService,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._overrides = overrides
        self._settings = settings or get_settings()

    def decode(self, token: str) -> dict[str, Any]:
        secret = self._settings.jwt_secret
        if not secret:
            raise ConfigurationError("JWT secret is not configured")
        options: dict[str, Any] = {"require": ["sub"]}
        kwargs: dict[str, Any] = {}
        if self._settings.jwt_audience:
            kwargs["audience"] = self._settings.jwt_audience
        else:
            options["verify_aud"] = False
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self._settings.jwt_algorithm],
                options=options,
                **kwargs,
            )
        except jwt.PyJWTError as exc:
            raise AuthenticationError("Invalid or expired token") from exc

    async def authenticate(self, authorization: str | None) -> AuthenticatedUser:
        claims = self.decode(parse_bearer(authorization))
        user_id = str(claims["sub"])
        async with self._session_factory() as session:
            user = await tenants_repo.get_user(session, user_id)
            if user is None:
                raise AuthenticationError("Unknown account")
            additional_roles = await tenants_repo.list_additional_roles(session, user_id)

        if user.status != UserStatus.ACTIVE:
            # A user-status override lets a suspended or pending account through.
            if not await self._overrides.has_active(OverrideType.USER_STATUS, user.id):
                logger.info("auth_user_inactive user_id=%s status=%s", user.id, user.status)
                raise UserInactive("Your account is not active. Please contact your administrator.")

        return AuthenticatedUser(
            id=user.id,
            email=user.email,
            role=user.role,
            tenant_id=user.tenant_id,
            additional_roles=tuple(additional_roles),
            status=user.status,
        )
