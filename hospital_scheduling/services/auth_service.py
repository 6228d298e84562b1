from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timedelta
import logging

from ..core.database import persistence_guard
from ..core.exceptions import AccountLockedError, AuthenticationError, EmailTakenError
from ..core.security import (
    REFRESH_TOKEN, IssuedTokens, hash_password, issue_tokens, password_matches, read_token
)
from ..models.user import User
from ..schemas.auth import TokenResponse, UserLogin, UserRegister, UserResponse
from .user_directory import UserDirectory

logger = logging.getLogger(__name__)

MAX_FAILED_LOGINS = 5
LOCKOUT_MINUTES = 30

class AuthService:
    """Issues tokens so the API knows who is calling; the scheduling core trusts them."""

    def __init__(self, db: Session):
        self.db = db

    def register_user(self, user_data: UserRegister) -> User:
        with persistence_guard(self.db, "register a user"):
            if self._find(user_data.email):
                raise EmailTakenError()

            user = User(
                email=user_data.email,
                full_name=user_data.full_name,
                password_hash=hash_password(user_data.password),
                role=user_data.role,
                is_active=True
            )
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError:
                # Lost a race with another registration for the same address
                self.db.rollback()
                raise EmailTakenError()
            self.db.refresh(user)

        logger.info(f"Registered {user.role.value} {user.id}")
        return user

    def authenticate_user(self, login_data: UserLogin) -> TokenResponse:
        """Check credentials and issue a token pair.

        Five wrong passwords in a row lock the account for half an hour.
        """
        now = datetime.utcnow()
        with persistence_guard(self.db, "log in"):
            user = self._find(login_data.email)
            if user is None:
                raise AuthenticationError("Invalid email or password")

            if user.locked_until and user.locked_until > now:
                raise AccountLockedError()

            if not password_matches(login_data.password, user.password_hash):
                user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
                if user.failed_login_attempts >= MAX_FAILED_LOGINS:
                    user.locked_until = now + timedelta(minutes=LOCKOUT_MINUTES)
                    logger.warning(f"Locked account {user.id} after repeated failed logins")
                self.db.commit()
                raise AuthenticationError("Invalid email or password")

            if not user.is_active:
                raise AuthenticationError("Account is deactivated")

            user.failed_login_attempts = 0
            user.locked_until = None
            user.last_login = now
            self.db.commit()
            self.db.refresh(user)

        return self._respond(user, issue_tokens(user.id, user.role))

    def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Trade a refresh token for a new pair, re-reading the caller's current role."""
        claims = read_token(refresh_token, REFRESH_TOKEN)

        caller = UserDirectory(self.db).get_user(claims.sub)
        if caller is None:
            raise AuthenticationError("User not found or inactive")

        user = self.db.get(User, caller.id)
        return self._respond(user, issue_tokens(caller.id, caller.role))

    def _find(self, email: str):
        return self.db.query(User).filter(User.email == email).first()

    def _respond(self, user: User, tokens: IssuedTokens) -> TokenResponse:
        return TokenResponse(
            **tokens.model_dump(),
            user=UserResponse.model_validate(user)
        )
