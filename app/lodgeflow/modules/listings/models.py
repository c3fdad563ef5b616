from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    CheckConstraint,
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
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.lodgeflow.models import Base

if TYPE_CHECKING:
    from app.lodgeflow.models import User
    from app.lodgeflow.modules.bookings.models import Booking

LISTING_TYPES = ("hotel", "events", "restaurant")
PRICE_UNITS = ("night", "hour", "person")
CURRENCIES = ("USD", "EUR", "GBP", "NGN")
CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "NGN": "₦"}
REVIEW_STATUSES = ("pending", "approved")


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        Index("idx_listings_type", "type"),
        Index("idx_listings_location", "location"),
        CheckConstraint("max_guests >= 1", name="ck_listings_max_guests"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # hotel, events, restaurant
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    images: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # storage keys
    features: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_unit: Mapped[str] = mapped_column(String(16), nullable=False, default="night")  # night, hour, person
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    units: Mapped[list["ListingUnit"]] = relationship(
        back_populates="listing",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ListingUnit.id",
    )
    reviews: Mapped[list["Review"]] = relationship(
        back_populates="listing",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Review.created_at.desc()",
    )
    bookings: Mapped[list["Booking"]] = relationship(back_populates="listing", cascade="all, delete-orphan")

    @property
    def currency_symbol(self) -> str:
        return CURRENCY_SYMBOLS.get(self.currency, self.currency)

    @property
    def inventory_count(self) -> int:
        return len(self.units)

    @property
    def approved_reviews(self) -> list["Review"]:
        return [r for r in self.reviews if r.status == "approved"]


class ListingUnit(Base):
    """One bookable inventory unit (room, hall, table) of a listing."""

    __tablename__ = "listing_units"
    __table_args__ = (Index("idx_listing_units_listing", "listing_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    listing: Mapped[Listing] = relationship(back_populates="units")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("listing_id", "user_id", name="uq_reviews_listing_user"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending, approved

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    listing: Mapped[Listing] = relationship(back_populates="reviews")
    user: Mapped["User | None"] = relationship(lazy="selectin")
