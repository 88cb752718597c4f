"""Maintenance of the one-default-per-user flag on accounts and cards."""

from __future__ import annotations

from typing import Optional

from sqlmodel import Session, select


def clear_other_defaults(session: Session, model, *, user_id: int, keep_id: Optional[int]) -> int:
    """Unset ``is_default`` on every row of ``model`` for the user except ``keep_id``."""

    statement = select(model).where(model.user_id == user_id).where(model.is_default == True)  # noqa: E712
    if keep_id is not None:
        statement = statement.where(model.id != keep_id)
    cleared = 0
    for row in session.exec(statement).all():
        row.is_default = False
        session.add(row)
        cleared += 1
    return cleared
