"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from dropwatch.utils.timeutil import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Retailer(Base):
    """Retail site with a registered adapter."""

    __tablename__ = "retailers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Product(Base):
    """Product whose availability is tracked across retailers."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    set_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    upc: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class DropEvent(Base):
    """Append-only signal log. Rows are never updated."""

    __tablename__ = "drop_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    signal_type: Mapped[str] = mapped_column(String(32), nullable=False)  # url_seen, url_live, ...
    signal_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    observed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    retailer: Mapped["Retailer"] = relationship("Retailer")

    __table_args__ = (
        Index("ix_drop_events_pair_time", "product_id", "retailer_id", "observed_at"),
        Index("ix_drop_events_type_time", "signal_type", "observed_at"),
    )


class DropOutcome(Base):
    """Derived timing facts for one drop occurrence of a product at a retailer."""

    __tablename__ = "drop_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    drop_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    first_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    first_instock_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    buy_window_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    success_flag: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_drop_outcomes_pair_drop", "product_id", "retailer_id", "drop_at"),
    )


class AvailabilitySnapshot(Base):
    """Point-in-time availability observed by an adapter."""

    __tablename__ = "availability_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False)
    availability_status: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    product_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snapshot_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_snapshots_pair_time", "product_id", "retailer_id", "snapshot_time"),
    )


class RetailerProduct(Base):
    """Retailer-specific identifiers and URL for a tracked product."""

    __tablename__ = "retailer_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    product: Mapped["Product"] = relationship("Product")
    retailer: Mapped["Retailer"] = relationship("Retailer")

    __table_args__ = (
        UniqueConstraint("product_id", "retailer_id", name="uq_retailer_product_pair"),
    )
