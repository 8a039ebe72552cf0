"""Core SQLAlchemy models (2.x style) for the sales import schema.

Natural keys carry unique constraints; they are what makes skip-if-exists
correct when two imports race on the same key.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class User(TimestampMixin, Base):
    """Users referenced by sales and invoice status events."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)


class Client(TimestampMixin, Base):
    """Clients table."""
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sales: Mapped[list[Sale]] = relationship("Sale", back_populates="client")


class Sale(TimestampMixin, Base):
    """Sales (commercializations) table."""
    __tablename__ = "sales"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_sale_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True, index=True)
    quote_code: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    start_date: Mapped[date | None] = mapped_column(Date)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    # Source client key kept on the row for reporting joins without the clients table
    client_external_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    creator_email: Mapped[str | None] = mapped_column(
        ForeignKey("users.email", ondelete="SET NULL"),
        index=True,
    )
    total_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=0)
    quote_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=0)
    state_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_status_code: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)

    # Relationships
    client: Mapped[Client] = relationship("Client", back_populates="sales")
    status_history: Mapped[list[SaleStatusEvent]] = relationship("SaleStatusEvent", back_populates="sale")

    __table_args__ = (
        Index("ix_sales_start_date", "start_date"),
    )


class SaleStatusEvent(TimestampMixin, Base):
    """Sale status history."""
    __tablename__ = "sale_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sale_id: Mapped[int] = mapped_column(ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    sale_external_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    status_code: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    event_date: Mapped[date | None] = mapped_column(Date)

    sale: Mapped[Sale] = relationship("Sale", back_populates="status_history")


class Invoice(TimestampMixin, Base):
    """Invoices table."""
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    billing_date: Mapped[date | None] = mapped_column(Date)
    status_event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sale_external_id: Mapped[int] = mapped_column(
        ForeignKey("sales.external_sale_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class InvoiceStatusEvent(TimestampMixin, Base):
    """Invoice status history."""
    __tablename__ = "invoice_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(
        ForeignKey("invoices.number", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status_code: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    event_date: Mapped[date | None] = mapped_column(Date)
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    observation: Mapped[str | None] = mapped_column(Text)
    actor_email: Mapped[str | None] = mapped_column(ForeignKey("users.email", ondelete="SET NULL"))
    sale_external_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    __table_args__ = (
        Index("ix_invoice_status_history_sale_invoice", "sale_external_id", "invoice_number"),
    )
