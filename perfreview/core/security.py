from fastapi import Depends, Header
from sqlalchemy.orm import Session

from perfreview.core.errors import AuthenticationError
from perfreview.db.session import get_db
from perfreview.models.user import User


def get_current_user(
    x_user_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """
    DEV AUTH: pass X-User-Email header to simulate logged-in user.
    Example: X-User-Email: admin@acme.test
    """
    if not x_user_email:
        raise AuthenticationError("Missing X-User-Email header (dev auth)")

    user = db.query(User).filter(User.email == x_user_email).one_or_none()
    if not user or not user.is_active:
        raise AuthenticationError("Invalid or inactive user")
    return user
