from typing import Optional

from sqlalchemy.orm import Session

from entityforge.models.enums import UserRole
from entityforge.models.models import User

# ------------------------------------------------------------
# User CRUD
# ------------------------------------------------------------


def get_user(db: Session, user_id: int) -> Optional[User]:
    """Return user by primary key."""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Return user by e-mail address (case-insensitive)."""
    return db.query(User).filter(User.email.ilike(email)).first()


def create_user(
    db: Session,
    *,
    email: str,
    display_name: Optional[str] = None,
    role: str = UserRole.USER.value,
) -> User:
    """Insert a new user row."""
    new_user = User(email=email, display_name=display_name, role=role)
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    return new_user


def set_user_role(db: Session, user: User, role: str) -> User:
    user.role = role
    db.commit()
    db.refresh(user)
    return user
