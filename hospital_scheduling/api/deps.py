from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from datetime import date
from typing import Callable, List

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.exceptions import AuthenticationError, ForbiddenError, RateLimitedError
from ..core.security import ACCESS_TOKEN, TokenClaims, UserRole, bearer_scheme, read_token
from ..models.user import User
from ..services.user_directory import DirectoryUser

async def get_current_claims(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> TokenClaims:
    """Decode the bearer access token."""
    return read_token(credentials.credentials, ACCESS_TOKEN)

async def get_current_user(
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    user = db.get(User, claims.sub)
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user

async def get_current_actor(
    current_user: User = Depends(get_current_user)
) -> DirectoryUser:
    """The caller as the scheduling core sees it: identity and role."""
    return DirectoryUser(
        id=current_user.id,
        role=current_user.role,
        name=current_user.full_name,
        email=current_user.email
    )

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        actor: DirectoryUser = Depends(get_current_actor)
    ) -> DirectoryUser:
        if actor.role not in allowed_roles:
            raise ForbiddenError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

def get_clock() -> Callable[[], date]:
    """Source of "today" for booking validation."""
    return date.today

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Basic rate limiting for authentication endpoints."""
    client_ip = request.client.host
    key = f"rate_limit:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.RATE_LIMIT_WINDOW_SECONDS, 1)
    else:
        if int(current_requests) >= settings.RATE_LIMIT_REQUESTS:
            raise RateLimitedError()
        redis_client.incr(key)
