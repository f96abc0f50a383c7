from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Generator

from sqlalchemy import BigInteger, DateTime, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker


class Base(DeclarativeBase):
    pass


class SwapRun(Base):
    __tablename__ = "swap_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    chain_id: Mapped[int] = mapped_column(default=1)
    status: Mapped[str] = mapped_column(String(32), index=True)  # no_trade|success|failed|reverted
    token_in: Mapped[str | None] = mapped_column(String(64), index=True)
    token_out: Mapped[str | None] = mapped_column(String(64), index=True)

    # Detected signal
    feed_outcome: Mapped[str | None] = mapped_column(String(32))
    signal_tx_hash: Mapped[str | None] = mapped_column(String(80))
    signal_block_number: Mapped[int | None] = mapped_column(BigInteger)
    signal_amount: Mapped[str | None] = mapped_column(String(80))

    # Execution
    amount_in_wei: Mapped[str | None] = mapped_column(String(80))
    expected_out_wei: Mapped[str | None] = mapped_column(String(80))
    route_source: Mapped[str | None] = mapped_column(String(32))
    approve_tx_hash: Mapped[str | None] = mapped_column(String(80))
    swap_tx_hash: Mapped[str | None] = mapped_column(String(80), index=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger)
    gas_used: Mapped[int | None] = mapped_column(BigInteger)
    error_kind: Mapped[str | None] = mapped_column(String(64))
    error_step: Mapped[str | None] = mapped_column(String(32))
    error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


def make_engine(database_url: str):
    return create_engine(database_url, pool_pre_ping=True, future=True)


def make_session_factory(database_url: str):
    engine = make_engine(database_url)
    # Migrations are managed via Alembic. We intentionally avoid create_all here.
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(SessionFactory) -> Generator[Session, None, None]:
    session: Session = SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def record_run(SessionFactory, **fields) -> int:
    with session_scope(SessionFactory) as s:
        rec = SwapRun(**fields)
        s.add(rec)
        s.flush()
        return rec.id
