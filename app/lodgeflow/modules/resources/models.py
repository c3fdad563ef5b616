from __future__ import annotations

from datetime import datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.lodgeflow.models import Base

if TYPE_CHECKING:
    from app.lodgeflow.modules.catalog.models import Facility, Group, Rule
    from app.lodgeflow.modules.locations.models import Location, Media

RESOURCE_TYPES = ("lodge", "event", "dining")
RESOURCE_STATUSES = ("draft", "published", "archived", "inactive")
SCHEDULE_TYPES = ("24/7", "custom", "weekdays", "weekends")
DAYS_OF_WEEK = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


resource_rules = Table(
    "resource_rules",
    Base.metadata,
    Column("resource_id", ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True),
    Column("rule_id", ForeignKey("rules.id", ondelete="CASCADE"), primary_key=True),
)

resource_facilities = Table(
    "resource_facilities",
    Base.metadata,
    Column("resource_id", ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True),
    Column("facility_id", ForeignKey("facilities.id", ondelete="CASCADE"), primary_key=True),
)

resource_groups = Table(
    "resource_groups",
    Base.metadata,
    Column("resource_id", ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)


class Resource(Base):
    __tablename__ = "resources"
    __table_args__ = (
        UniqueConstraint("name", "type", name="uq_resources_name_type"),
        Index("idx_resources_status", "status"),
        Index("idx_resources_location", "location_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # lodge, event, dining
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    schedule_type: Mapped[str] = mapped_column(String(16), nullable=False, default="24/7")
    thumbnail: Mapped[str | None] = mapped_column(Text, nullable=True)  # storage key

    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    location: Mapped["Location | None"] = relationship(back_populates="resources", lazy="selectin")
    schedules: Mapped[list["ResourceSchedule"]] = relationship(
        back_populates="resource",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ResourceSchedule.id",
    )
    media: Mapped[list["Media"]] = relationship(
        back_populates="resource",
        cascade="all, delete-orphan",
        lazy="selectin",
        foreign_keys="Media.resource_id",
    )
    rules: Mapped[list["Rule"]] = relationship(secondary=resource_rules, lazy="selectin")
    facilities: Mapped[list["Facility"]] = relationship(secondary=resource_facilities, lazy="selectin")
    groups: Mapped[list["Group"]] = relationship(secondary=resource_groups, lazy="selectin")


class ResourceSchedule(Base):
    __tablename__ = "resource_schedules"
    __table_args__ = (
        UniqueConstraint("resource_id", "day_of_week", name="uq_resource_schedules_day"),
        CheckConstraint("start_time < end_time", name="ck_resource_schedules_hours"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[str] = mapped_column(String(16), nullable=False)  # monday..sunday
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    resource: Mapped[Resource] = relationship(back_populates="schedules")
