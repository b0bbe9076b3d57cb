"""SQLAlchemy database models."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid4())


CANDIDATE_STATUSES = ("unknown", "valid", "invalid", "live")

SIGNAL_TYPES = ("url_seen", "url_live", "in_stock", "price_present", "status_change")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Retailer(Base):
    """Retailer being watched (id -> slug lookup only)."""

    __tablename__ = "retailers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class UrlCandidate(Base):
    """Retailer product-page URL awaiting liveness confirmation."""

    __tablename__ = "url_candidates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    retailer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("retailers.id"), nullable=False
    )
    pattern_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), default="unknown", nullable=False
    )  # unknown, valid, invalid, live
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("retailer_id", "url", name="uq_url_candidates_retailer_url"),
        Index("idx_url_candidates_prod_retailer", "product_id", "retailer_id"),
        Index("idx_url_candidates_retailer_status", "retailer_id", "status"),
    )


class DropEvent(Base):
    """Append-only stream of detected drop signals."""

    __tablename__ = "drop_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    retailer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("retailers.id"), nullable=False
    )
    signal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    signal_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 0-100
    observed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_drop_events_prod_retailer_time", "product_id", "retailer_id", "observed_at"),
        Index("idx_drop_events_type_time", "signal_type", "observed_at"),
    )


class DropOutcome(Base):
    """Ground-truth drop outcome for a product/retailer pair."""

    __tablename__ = "drop_outcomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    retailer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("retailers.id"), nullable=False
    )
    drop_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    first_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    first_instock_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    buy_window_sec: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    success_flag: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_drop_outcomes_prod_retailer_dropat", "product_id", "retailer_id", "drop_at"),
    )


class AvailabilitySnapshot(Base):
    """Point-in-time stock observation for a product/retailer pair."""

    __tablename__ = "availability_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    retailer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("retailers.id"), nullable=False
    )
    snapshot_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        Index("idx_availability_prod_retailer_time", "product_id", "retailer_id", "snapshot_time"),
    )
