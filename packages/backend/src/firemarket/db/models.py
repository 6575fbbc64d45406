"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table.

Key concepts:
- UUID primary keys (generated app-side, portable across PostgreSQL and SQLite)
- status columns hold the values of the enums in services/bid_lifecycle.py;
  transitions are validated there, never ad hoc in route handlers
- user ids are opaque UUIDs issued by the portal's auth service (JWT "sub"),
  so there is no users table here
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ══════════════════════════════════════════════════════════════
# Marketplace: ads and bids
# ══════════════════════════════════════════════════════════════


class Ad(Base):
    """A work request posted by a customer.

    Learn: status walks open → completed | closed | cancelled. "in_progress"
    is never stored by this service — an open ad with bids is reported as
    in progress (see AdRead.effective_status). Keeping the stored value at
    "open" until a terminal transition is what lets accept/close use a
    single-column guard in their conditional UPDATEs.
    """

    __tablename__ = "ads"
    __table_args__ = (
        Index("idx_ads_status", "status"),
        Index("idx_ads_user_id", "user_id"),
        Index("idx_ads_category", "category_id"),
        Index("idx_ads_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    budget: Mapped[Optional[float]] = mapped_column(
        Numeric(12, 2, asdecimal=False), nullable=True
    )
    budget_currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="KZT"
    )
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="open"
    )  # open, in_progress, completed, cancelled, closed
    selected_bid_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    bids: Mapped[list["Bid"]] = relationship(
        back_populates="ad",
        cascade="all, delete-orphan",
        order_by="Bid.amount",
    )


class Bid(Base):
    """A supplier's priced proposal against exactly one ad."""

    __tablename__ = "bids"
    __table_args__ = (
        Index("idx_bids_ad_id", "ad_id"),
        Index("idx_bids_supplier_id", "supplier_id"),
        Index("idx_bids_status", "status"),
        CheckConstraint("amount > 0", name="ck_bids_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ads.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KZT")
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    proposed_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )  # pending, accepted, rejected, withdrawn
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    ad: Mapped["Ad"] = relationship(back_populates="bids")


# ══════════════════════════════════════════════════════════════
# Notifications + reviews
# ══════════════════════════════════════════════════════════════


class Notification(Base):
    """Durable inbox entry for one user.

    Learn: this row is the source of truth. The WebSocket push that
    accompanies it is best-effort — a client that was offline (or missed
    the frame) catches up by fetching /notifications.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
        Index("idx_notifications_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="info"
    )  # info, success, warning, error
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    link_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ad_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    bid_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Review(Base):
    """A customer's rating of a supplier, optionally tied to an ad."""

    __tablename__ = "reviews"
    __table_args__ = (
        Index("idx_reviews_reviewee", "reviewee_id"),
        Index("idx_reviews_ad", "ad_id"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    ad_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("ads.id", ondelete="SET NULL"), nullable=True
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reviewee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    would_recommend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
