from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from bhavan.core.errors import AuthenticationError, AuthorizationError
from bhavan.core.security import verify_access_token
from bhavan.database import get_db
from bhavan.models.user import User
from bhavan.services.payment_config_service import PaymentConfigService
from bhavan.services.payment_gateway import GatewayConfig


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; missing credentials reach get_current_user as None
security = HTTPBearer(auto_error=False)

DB = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    db: DB,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> User:
    """
    Resolve the operator calling an admin endpoint from the bearer token.

    Raises:
        AuthenticationError: Missing, invalid or expired token, or unknown user
        AuthorizationError: User account is deactivated
    """
    if credentials is None:
        raise AuthenticationError()

    user_id = verify_access_token(credentials.credentials)
    if user_id is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise AuthenticationError("Could not validate credentials")

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid user_id in token: {user_id}")
        raise AuthenticationError("Could not validate credentials")

    user = await db.get(User, user_uuid)
    if user is None:
        logger.warning(f"User {user_id} from token not found")
        raise AuthenticationError("Could not validate credentials")

    if not user.is_active:
        raise AuthorizationError("User account is deactivated")

    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: str):
    """
    Dependency factory requiring the caller to hold one of the given roles.

    Usage:
        @router.get("/", dependencies=[Depends(require_roles("admin"))])
        async def list_things():
            ...
    """
    async def role_dependency(user: CurrentUser) -> User:
        if user.role not in roles:
            logger.warning(f"User {user.email} ({user.role}) denied; requires one of {roles}")
            raise AuthorizationError(f"Requires one of roles: {', '.join(roles)}")
        return user

    return role_dependency


async def get_gateway_config(db: DB) -> Optional[GatewayConfig]:
    """
    Resolve the active payment gateway once per request.

    Services receive the result instead of looking it up themselves; None
    means nothing is configured and the consuming service answers 503.
    """
    return await PaymentConfigService(db).get_active_config()


ActiveGatewayConfig = Annotated[Optional[GatewayConfig], Depends(get_gateway_config)]
AdminUser = Annotated[User, Depends(require_roles("admin"))]
StaffUser = Annotated[User, Depends(require_roles("admin", "broker", "ca", "lawyer"))]
