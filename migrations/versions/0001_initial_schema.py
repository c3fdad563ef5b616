"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-28 10:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create auth, catalog, location, resource, listing and booking tables."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    # --- Auth / RBAC ---
    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(64), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("name", sa.String(128), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("phone", sa.String(64), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="active"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
        )
        op.create_index("idx_users_role_id", "users", ["role_id"])

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("idx_audit_created_at", "audit_events", ["created_at"])
        op.create_index("idx_audit_entity", "audit_events", ["entity_type", "entity_id"])

    if "one_time_passwords" not in existing_tables:
        op.create_table(
            "one_time_passwords",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_email", sa.String(320), nullable=False),
            sa.Column("hashed_code", sa.String(64), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_otp_email", "one_time_passwords", ["user_email"])

    if "revoked_tokens" not in existing_tables:
        op.create_table(
            "revoked_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("token", sa.Text(), nullable=False, unique=True),
            sa.Column("revoked_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    # --- Catalog ---
    if "facilities" not in existing_tables:
        op.create_table(
            "facilities",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
        )

    if "rules" not in existing_tables:
        op.create_table(
            "rules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(32), nullable=False, server_default="house_rules"),
            *_timestamps(),
        )

    if "groups" not in existing_tables:
        op.create_table(
            "groups",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("num", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.CheckConstraint("num >= 1", name="ck_groups_num_positive"),
        )

    # --- Locations / resources ---
    if "locations" not in existing_tables:
        op.create_table(
            "locations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("state", sa.String(128), nullable=False),
            sa.Column("city", sa.String(128), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
        )
        op.create_index("idx_locations_state", "locations", ["state"])
        op.create_index("idx_locations_city", "locations", ["city"])

    if "resources" not in existing_tables:
        op.create_table(
            "resources",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
            sa.Column("schedule_type", sa.String(16), nullable=False, server_default="24/7"),
            sa.Column("thumbnail", sa.Text(), nullable=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True),
            *_timestamps(),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.UniqueConstraint("name", "type", name="uq_resources_name_type"),
        )
        op.create_index("idx_resources_status", "resources", ["status"])
        op.create_index("idx_resources_location", "resources", ["location_id"])

    for link_table, column, target in (
        ("resource_rules", "rule_id", "rules.id"),
        ("resource_facilities", "facility_id", "facilities.id"),
        ("resource_groups", "group_id", "groups.id"),
    ):
        if link_table not in existing_tables:
            op.create_table(
                link_table,
                sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id", ondelete="CASCADE"), primary_key=True),
                sa.Column(column, sa.Integer(), sa.ForeignKey(target, ondelete="CASCADE"), primary_key=True),
            )

    if "resource_schedules" not in existing_tables:
        op.create_table(
            "resource_schedules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id", ondelete="CASCADE"), nullable=False),
            sa.Column("day_of_week", sa.String(16), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.UniqueConstraint("resource_id", "day_of_week", name="uq_resource_schedules_day"),
            sa.CheckConstraint("start_time < end_time", name="ck_resource_schedules_hours"),
        )

    if "media" not in existing_tables:
        op.create_table(
            "media",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("type", sa.String(16), nullable=False, server_default="image"),
            sa.Column("storage_key", sa.Text(), nullable=False),
            sa.Column("file_type", sa.String(128), nullable=True),
            sa.Column("original_filename", sa.String(255), nullable=True),
            sa.Column("sha256", sa.String(64), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id", ondelete="CASCADE"), nullable=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.CheckConstraint(
                "(resource_id IS NOT NULL AND location_id IS NULL) OR (resource_id IS NULL AND location_id IS NOT NULL)",
                name="ck_media_single_owner",
            ),
        )
        op.create_index("idx_media_resource", "media", ["resource_id"])
        op.create_index("idx_media_location", "media", ["location_id"])

    # --- Listings ---
    if "listings" not in existing_tables:
        op.create_table(
            "listings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("location", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("images", sa.JSON(), nullable=False),
            sa.Column("features", sa.JSON(), nullable=False),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("price_unit", sa.String(16), nullable=False, server_default="night"),
            sa.Column("currency", sa.String(3), nullable=False, server_default="NGN"),
            sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
            sa.Column("max_guests", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.CheckConstraint("max_guests >= 1", name="ck_listings_max_guests"),
        )
        op.create_index("idx_listings_type", "listings", ["type"])
        op.create_index("idx_listings_location", "listings", ["location"])

    if "listing_units" not in existing_tables:
        op.create_table(
            "listing_units",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_listing_units_listing", "listing_units", ["listing_id"])

    if "reviews" not in existing_tables:
        op.create_table(
            "reviews",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("author", sa.String(255), nullable=False),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("comment", sa.Text(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            *_timestamps(),
            sa.UniqueConstraint("listing_id", "user_id", name="uq_reviews_listing_user"),
            sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        )

    # --- Bookings ---
    if "bookings" not in existing_tables:
        op.create_table(
            "bookings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("guests", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(16), nullable=False, server_default="Pending"),
            sa.Column("discount", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.Column("action_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("action_at", sa.DateTime(), nullable=True),
            sa.Column("status_message", sa.Text(), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("end_date >= start_date", name="ck_bookings_dates"),
            sa.CheckConstraint("guests >= 1", name="ck_bookings_guests"),
            sa.CheckConstraint("discount >= 0 AND discount <= 100", name="ck_bookings_discount"),
        )
        op.create_index("idx_bookings_listing_dates", "bookings", ["listing_id", "start_date", "end_date"])
        op.create_index("idx_bookings_user", "bookings", ["user_id"])
        op.create_index("idx_bookings_status", "bookings", ["status"])

    if "booking_units" not in existing_tables:
        op.create_table(
            "booking_units",
            sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("unit_id", sa.Integer(), sa.ForeignKey("listing_units.id", ondelete="CASCADE"), primary_key=True),
        )

    if "booking_bills" not in existing_tables:
        op.create_table(
            "booking_bills",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("description", sa.String(255), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        )

    if "booking_payments" not in existing_tables:
        op.create_table(
            "booking_payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("method", sa.String(32), nullable=False, server_default="cash"),
            sa.Column("reference", sa.String(255), nullable=True),
            sa.Column("paid_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        )


def downgrade() -> None:
    """Drop all tables, children first."""
    for table in (
        "booking_payments",
        "booking_bills",
        "booking_units",
        "bookings",
        "reviews",
        "listing_units",
        "listings",
        "media",
        "resource_schedules",
        "resource_groups",
        "resource_facilities",
        "resource_rules",
        "resources",
        "locations",
        "groups",
        "rules",
        "facilities",
        "revoked_tokens",
        "one_time_passwords",
        "audit_events",
        "users",
        "role_permissions",
        "permissions",
        "roles",
    ):
        op.drop_table(table)
