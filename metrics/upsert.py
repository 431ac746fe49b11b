from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert(session: Session, model, keys: dict[str, Any], values: dict[str, Any]) -> None:
    """Insert or fully replace the row identified by ``keys``.

    ``keys`` must match a unique constraint on ``model``.
    """
    insert = _INSERTS.get(session.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(model).values(**keys, **values)
        stmt = stmt.on_conflict_do_update(index_elements=list(keys), set_=values)
        session.execute(stmt)
        return

    row = session.execute(select(model).filter_by(**keys)).scalar_one_or_none()
    if row is None:
        row = model(**keys)
    for key, value in values.items():
        setattr(row, key, value)
    session.add(row)
    session.flush()
