from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from ..core.database import persistence_guard
from ..core.exceptions import NotFoundError, ValidationError
from ..core.security import UserRole
from ..models.user import User

class DirectoryUser(BaseModel):
    id: int
    role: UserRole
    name: str
    email: str

class UserDirectory:
    """Read-only view of the users table: identity and role, nothing else."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[DirectoryUser]:
        with persistence_guard(self.db, "look up a user"):
            user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            return None
        return DirectoryUser(
            id=user.id,
            role=user.role,
            name=user.full_name,
            email=user.email,
        )

    def require_user(self, user_id: int, role: Optional[UserRole] = None) -> DirectoryUser:
        """Return the user, optionally insisting on a role."""
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if role is not None and user.role != role:
            raise ValidationError(f"User {user_id} is not a {role.value}")
        return user
