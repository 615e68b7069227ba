from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from ticket_notifier.database import Base, create_ledger_engine


def test_sqlite_session_holds_write_lock_from_its_first_read(tmp_path) -> None:
    engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}", busy_timeout=0.1)
    Base.metadata.create_all(engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    holder, contender = Session(), Session()

    try:
        holder.execute(text("SELECT count(*) FROM notifications"))

        with pytest.raises(OperationalError, match="locked"):
            contender.execute(text("SELECT count(*) FROM notifications"))
        contender.close()

        holder.commit()
        follower = Session()
        assert follower.execute(text("SELECT count(*) FROM notifications")).scalar() == 0
        follower.close()
    finally:
        holder.close()
        engine.dispose()


def test_sqlite_busy_timeout_is_passed_to_the_driver(tmp_path) -> None:
    engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}", busy_timeout=2.5)

    try:
        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar() == 2500
    finally:
        engine.dispose()
