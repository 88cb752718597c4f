"""Owner profiles."""

from __future__ import annotations

from sqlmodel import select

from ..infra.database import SessionFactory
from ..models.user import User

LOCAL_USERNAME = "local"


def ensure_user(
    session_factory: SessionFactory, username: str = LOCAL_USERNAME, *, default_currency: str = "CHF"
) -> User:
    """Create or return the profile named ``username``."""

    with session_factory() as session:
        user = session.exec(select(User).where(User.username == username)).first()
        if user:
            session.expunge(user)
            return user
        user = User(username=username, default_currency=default_currency.upper())
        session.add(user)
        session.flush()
        session.refresh(user)
        session.expunge(user)
        return user
