from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from locks import account_lock


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def ledger_mutation(session: Session, account_id: int) -> Iterator[Session]:
    """Serialize one account's mutation and commit it as a single unit.

    Everything flushed inside the block is committed together; any exception
    rolls the whole sequence back before it propagates. Objects loaded before
    the lock was taken are expired so the block reads what other sessions
    committed in the meantime.
    """
    with account_lock(account_id):
        session.expire_all()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
