"""Identity plumbing for the scheduling API.

Just enough to learn who is calling: bcrypt password hashes and signed
bearer tokens carrying the caller's id and role.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Tuple

from fastapi.security import HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from .config import settings
from .exceptions import AuthenticationError

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

bearer_scheme = HTTPBearer()

class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"

class TokenClaims(BaseModel):
    sub: int
    role: UserRole
    token_type: str
    exp: int

class IssuedTokens(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def password_matches(password: str, password_hash: str) -> bool:
    # Accounts created without a password can never log in
    return bool(password_hash) and pwd_context.verify(password, password_hash)

def _sign(user_id: int, role: UserRole, token_type: str, lifetime: timedelta) -> Tuple[str, datetime]:
    expires_at = datetime.utcnow() + lifetime
    token = jwt.encode(
        {
            "sub": str(user_id),
            "role": UserRole(role).value,
            "token_type": token_type,
            "exp": expires_at,
        },
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )
    return token, expires_at

def issue_tokens(user_id: int, role: UserRole) -> IssuedTokens:
    """Sign a short-lived access token and a longer-lived refresh token."""
    access_lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token, _ = _sign(user_id, role, ACCESS_TOKEN, access_lifetime)
    refresh_token, _ = _sign(
        user_id, role, REFRESH_TOKEN, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    )
    return IssuedTokens(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=int(access_lifetime.total_seconds())
    )

def read_token(token: str, expected_type: str) -> TokenClaims:
    """Decode a token of the given kind, or raise AuthenticationError."""
    try:
        claims = TokenClaims(**jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        ))
    except (JWTError, ValueError):
        raise AuthenticationError("Invalid or expired token")

    if claims.token_type != expected_type:
        raise AuthenticationError(f"Expected an {expected_type} token")
    return claims
