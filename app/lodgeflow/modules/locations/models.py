from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.lodgeflow.models import Base

if TYPE_CHECKING:
    from app.lodgeflow.modules.resources.models import Resource

MEDIA_TYPES = ("image", "video", "document")


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (
        Index("idx_locations_state", "state"),
        Index("idx_locations_city", "city"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(128), nullable=False)
    city: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    resources: Mapped[list["Resource"]] = relationship(back_populates="location", lazy="selectin")
    media: Mapped[list["Media"]] = relationship(
        back_populates="location",
        cascade="all, delete-orphan",
        lazy="selectin",
        foreign_keys="Media.location_id",
    )

    @property
    def label(self) -> str:
        return f"{self.name} ({self.city}, {self.state})"


class Media(Base):
    """A stored file attached to exactly one resource or location."""

    __tablename__ = "media"
    __table_args__ = (
        Index("idx_media_resource", "resource_id"),
        Index("idx_media_location", "location_id"),
        CheckConstraint(
            "(resource_id IS NOT NULL AND location_id IS NULL) OR (resource_id IS NULL AND location_id IS NOT NULL)",
            name="ck_media_single_owner",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="image")  # image, video, document
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # content type
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=dict)

    resource_id: Mapped[int | None] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"), nullable=True)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    resource: Mapped["Resource | None"] = relationship(back_populates="media", foreign_keys=[resource_id])
    location: Mapped[Location | None] = relationship(back_populates="media", foreign_keys=[location_id])
