"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.
Alembic auto-generates migrations by comparing these models to the actual DB.

Key concepts:
- UUID primary keys for accounts and devices
- The ledger's request_id carries a UNIQUE constraint; that constraint is
  what makes duplicate webhook deliveries a no-op
- Generic column types (Uuid, Numeric) so the same models run on
  PostgreSQL in production and SQLite in tests
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


TRANSACTION_COMPLETED = "completed"
DEVICE_ACTIVE = "active"


class Account(Base):
    """A merchant account. Owns devices and dashboard sessions.

    Learn: The account id is the fan-out key — every live dashboard
    session is tagged with it, and every device points at it.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    devices: Mapped[list["Device"]] = relationship(back_populates="account")


class Device(Base):
    """A payment terminal with a voice-announcement speaker.

    Learn: `serial` is the public identifier the upstream webhook sends
    as metadata.terminal_id, and also the last segment of the MQTT topic.
    The unique constraint gives us an indexed point lookup per event.
    """

    __tablename__ = "devices"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    serial: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=DEVICE_ACTIVE)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    account: Mapped["Account"] = relationship(back_populates="devices")


class Transaction(Base):
    """One immutable ledger row per processed webhook event.

    Learn: device_serial is stored by value, not as a foreign key — the
    ledger records what the terminal reported even if the device is later
    re-provisioned. amount is an unscaled NUMERIC: the processor decides
    the precision, and the row keeps exactly what the speaker announced.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_account_created", "account_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=False
    )
    device_serial: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(), nullable=False)
    request_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=TRANSACTION_COMPLETED)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
