from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.lodgeflow.models import Base

if TYPE_CHECKING:
    from app.lodgeflow.models import User
    from app.lodgeflow.modules.listings.models import Listing, ListingUnit

BOOKING_STATUSES = ("Pending", "Confirmed", "Cancelled", "Completed")
# Statuses that still claim inventory (block listing deletion / unit removal).
ACTIVE_STATUSES = ("Pending", "Confirmed")
PAYMENT_METHODS = ("cash", "card", "transfer", "other")


class BookingUnit(Base):
    __tablename__ = "booking_units"

    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("listing_units.id", ondelete="CASCADE"), primary_key=True)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_listing_dates", "listing_id", "start_date", "end_date"),
        Index("idx_bookings_user", "user_id"),
        Index("idx_bookings_status", "status"),
        CheckConstraint("end_date >= start_date", name="ck_bookings_dates"),
        CheckConstraint("guests >= 1", name="ck_bookings_guests"),
        CheckConstraint("discount >= 0 AND discount <= 100", name="ck_bookings_discount"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)  # percent

    action_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    status_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    listing: Mapped["Listing"] = relationship(back_populates="bookings", lazy="selectin")
    user: Mapped["User | None"] = relationship(foreign_keys=[user_id], lazy="selectin")
    action_by: Mapped["User | None"] = relationship(foreign_keys=[action_by_user_id], lazy="selectin")
    units: Mapped[list["ListingUnit"]] = relationship(
        secondary="booking_units",
        lazy="selectin",
        order_by="ListingUnit.id",
    )
    bills: Mapped[list["BookingBill"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BookingBill.id",
    )
    payments: Mapped[list["BookingPayment"]] = relationship(
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BookingPayment.id",
    )

    @property
    def num_units(self) -> int:
        return len(self.units)


class BookingBill(Base):
    __tablename__ = "booking_bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="bills")


class BookingPayment(Base):
    __tablename__ = "booking_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default="cash")
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="payments")
