"""Initial pool, seat and subscription tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates resource_pools, resource_pool_seats, subscriptions and
subscription_events.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None

pool_type = sa.Enum("admin_console", "family", "team", "workspace", name="pooltype")
pool_status = sa.Enum("active", "paused", "completed", "overdue", "expired", name="poolstatus")
seat_status = sa.Enum("available", "reserved", "assigned", name="seatstatus")
renewal_strategy = sa.Enum("MONTHLY", "EVERY_N_DAYS", name="renewalstrategy")
subscription_status = sa.Enum(
    "active", "paused", "completed", "overdue", "canceled", "archived",
    name="subscriptionstatus",
)
overdue_reason = sa.Enum("renewal_due", "pool_expired", "manual", name="overduereason")
event_type = sa.Enum(
    "created", "renewed", "custom_date_set", "custom_date_cleared", "completed",
    "overdue", "reverted", "updated", "archived", "paused", "resumed", "canceled",
    name="subscriptioneventtype",
)


def upgrade() -> None:
    # ==========================================================================
    # Pools
    # ==========================================================================

    op.create_table(
        "resource_pools",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("pool_type", pool_type, nullable=False),
        sa.Column("login_email", sa.String(), nullable=False),
        sa.Column("login_secret", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("max_seats", sa.Integer(), nullable=False),
        sa.Column("used_seats", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", pool_status, nullable=False, server_default="active"),
        sa.Column("is_alive", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_seat_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("max_seats > 0", name="ck_resource_pools_max_seats"),
        sa.CheckConstraint(
            "used_seats >= 0 AND used_seats <= max_seats",
            name="ck_resource_pools_used_seats",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_resource_pools_id", "resource_pools", ["id"])
    op.create_index("ix_resource_pools_provider", "resource_pools", ["provider"])
    op.create_index("ix_resource_pools_pool_type", "resource_pools", ["pool_type"])
    op.create_index("ix_resource_pools_end_at", "resource_pools", ["end_at"])
    op.create_index("ix_resource_pools_status", "resource_pools", ["status"])

    op.create_table(
        "resource_pool_seats",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("pool_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("seat_index", sa.Integer(), nullable=False),
        sa.Column("seat_status", seat_status, nullable=False, server_default="available"),
        sa.Column("assigned_email", sa.String(), nullable=True),
        sa.Column("assigned_client_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=True),
        sa.Column("unassigned_at", sa.DateTime(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["pool_id"], ["resource_pools.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pool_id", "seat_index", name="uq_pool_seat_index"),
    )
    op.create_index("ix_resource_pool_seats_id", "resource_pool_seats", ["id"])
    op.create_index("ix_resource_pool_seats_pool_id", "resource_pool_seats", ["pool_id"])
    op.create_index("ix_resource_pool_seats_seat_status", "resource_pool_seats", ["seat_status"])
    op.create_index(
        "ix_resource_pool_seats_assigned_email", "resource_pool_seats", ["assigned_email"]
    )
    op.create_index(
        "ix_resource_pool_seats_assigned_client_id",
        "resource_pool_seats",
        ["assigned_client_id"],
    )
    op.create_index(
        "ix_resource_pool_seats_assigned_subscription_id",
        "resource_pool_seats",
        ["assigned_subscription_id"],
    )

    # ==========================================================================
    # Subscriptions
    # ==========================================================================

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("service_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sale_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("strategy", renewal_strategy, nullable=False, server_default="MONTHLY"),
        sa.Column("interval_days", sa.Integer(), nullable=True),
        sa.Column("target_end_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("current_cycle_start_at", sa.DateTime(), nullable=False),
        sa.Column("last_renewal_at", sa.DateTime(), nullable=True),
        sa.Column("next_renewal_at", sa.DateTime(), nullable=True),
        sa.Column("custom_next_renewal_at", sa.DateTime(), nullable=True),
        sa.Column("iterations_done", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", subscription_status, nullable=False, server_default="active"),
        sa.Column("overdue_reason", overdue_reason, nullable=True),
        sa.Column("resource_pool_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("resource_pool_seat_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["resource_pool_id"], ["resource_pools.id"]),
        sa.ForeignKeyConstraint(["resource_pool_seat_id"], ["resource_pool_seats.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"])
    op.create_index("ix_subscriptions_service_id", "subscriptions", ["service_id"])
    op.create_index("ix_subscriptions_client_id", "subscriptions", ["client_id"])
    op.create_index("ix_subscriptions_next_renewal_at", "subscriptions", ["next_renewal_at"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_resource_pool_id", "subscriptions", ["resource_pool_id"])
    op.create_index(
        "ix_subscriptions_resource_pool_seat_id", "subscriptions", ["resource_pool_seat_id"]
    )

    op.create_table(
        "subscription_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", event_type, nullable=False),
        sa.Column("at", sa.DateTime(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscription_events_id", "subscription_events", ["id"])
    op.create_index(
        "ix_subscription_events_subscription_id", "subscription_events", ["subscription_id"]
    )
    op.create_index("ix_subscription_events_type", "subscription_events", ["type"])


def downgrade() -> None:
    op.drop_table("subscription_events")
    op.drop_table("subscriptions")
    op.drop_table("resource_pool_seats")
    op.drop_table("resource_pools")

    bind = op.get_bind()
    for enum in (
        event_type,
        overdue_reason,
        subscription_status,
        renewal_strategy,
        seat_status,
        pool_status,
        pool_type,
    ):
        enum.drop(bind, checkfirst=True)
