"""DB tables and engine helpers for the ledger store."""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String, Text, TypeDecorator, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

MONEY = Numeric(18, 2)


class UTCDateTime(TypeDecorator):
    """Store datetimes as naive UTC and hand them back as aware UTC values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: object) -> datetime | None:
        """Normalize an outgoing datetime to naive UTC."""
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: object) -> datetime | None:
        """Attach UTC to a datetime read from the database."""
        _ = dialect
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Declarative base for the ledger tables."""


class AccountRow(Base):
    """An account and its cached balance."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String, default="")
    balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    synced_transaction_ids: Mapped[str] = mapped_column(Text, default="[]")
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class TransactionRow(Base):
    """A ledger transaction."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_account_id_id", "account_id", "id"),
        Index("ix_transactions_user_id_date", "user_id", "date"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String)
    account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    credit_card_id: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    direction: Mapped[str] = mapped_column(String(3))
    date: Mapped[datetime] = mapped_column(UTCDateTime)
    status: Mapped[str] = mapped_column(String(16), default="pending")


def create_ledger_engine(url: str) -> Engine:
    """Create a SQLAlchemy engine, sharing one connection for in-memory SQLite URLs."""
    if url.startswith("sqlite") and (url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def get_engine() -> Engine:
    """Create a SQLAlchemy engine using the configured database URL."""
    from balance_sync.core.settings import get_settings

    return create_ledger_engine(get_settings().database_url)


def init_db(engine: Engine) -> None:
    """Create the ledger tables if they do not exist yet."""
    Base.metadata.create_all(engine)


SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, bind=get_engine())
