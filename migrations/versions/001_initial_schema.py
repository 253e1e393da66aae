"""Initial schema: users, rides, the ride_events outbox and ride_archive.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUSES = (
    "requested",
    "matching",
    "accepted",
    "driver_en_route",
    "arrived",
    "waiting",
    "in_progress",
    "completed",
    "cancelled",
)
ROLES = ("rider", "driver", "system")

ENUM_TYPES = (
    "user_role",
    "ride_status",
    "cancelled_by",
    "safety_state",
    "safety_response",
    "safety_role",
    "safety_responder_role",
)


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "role", sa.Enum("rider", "driver", name="user_role"), nullable=False
        ),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("rating", sa.Float, default=5.0),
        sa.Column("vehicle", sa.String(120), nullable=True),
        sa.Column("emergency_contact", sa.String(120), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(36), primary_key=True),
        # identities come from the session context; users only feeds profile cards
        sa.Column("rider_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*RIDE_STATUSES, name="ride_status"),
            default="requested",
            nullable=False,
        ),
        sa.Column("passenger_count", sa.Integer, default=1, nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_address", sa.String(255), nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("en_route_origin_address", sa.String(255), nullable=True),
        sa.Column("en_route_origin_lat", sa.Float, nullable=True),
        sa.Column("en_route_origin_lng", sa.Float, nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("en_route_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("waiting_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("in_progress_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancelled_by",
            sa.Enum(*ROLES, name="cancelled_by"),
            nullable=True,
        ),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column(
            "cancellation_fee_applies", sa.Boolean, default=False, nullable=False
        ),
        sa.Column(
            "driver_compensation_eligible", sa.Boolean, default=False, nullable=False
        ),
        sa.Column("driver_moved_km", sa.Float, nullable=True),
        sa.Column("fare_estimate", sa.Float, nullable=True),
        sa.Column("fare_final", sa.Float, nullable=True),
        sa.Column("fare_currency", sa.String(3), nullable=True),
        sa.Column("fare_breakdown", sa.JSON, nullable=True),
        sa.Column(
            "safety_state",
            sa.Enum(
                "idle", "pending", "resolved_safe", "escalated", name="safety_state"
            ),
            default="idle",
            nullable=False,
        ),
        sa.Column("safety_last_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "safety_response",
            sa.Enum("safe", "need_help", name="safety_response"),
            nullable=True,
        ),
        sa.Column(
            "safety_requested_by",
            sa.Enum(*ROLES, name="safety_role"),
            nullable=True,
        ),
        sa.Column(
            "safety_responded_by",
            sa.Enum(*ROLES, name="safety_responder_role"),
            nullable=True,
        ),
        sa.Column("safety_source", sa.String(32), nullable=True),
        sa.Column("early_end", sa.Boolean, default=False, nullable=False),
        sa.Column("early_end_address", sa.String(255), nullable=True),
        sa.Column("early_end_lat", sa.Float, nullable=True),
        sa.Column("early_end_lng", sa.Float, nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("version", sa.Integer, default=0, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_safety", "rides", ["safety_state"])

    # ── ride_events (outbox) ──────────────────────────────────────────
    op.create_table(
        "ride_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ride_id", sa.String(36), sa.ForeignKey("rides.id"), nullable=False
        ),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("command_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer, default=0, nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "ride_id", "command_id", "type", name="uq_ride_events_command"
        ),
    )
    op.create_index(
        "idx_ride_events_due", "ride_events", ["dispatched_at", "next_attempt_at"]
    )
    op.create_index("idx_ride_events_ride", "ride_events", ["ride_id"])

    # ── ride_archive ──────────────────────────────────────────────────
    op.create_table(
        "ride_archive",
        sa.Column("ride_id", sa.String(36), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("snapshot", sa.JSON, nullable=False),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column(
            "archived_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("ride_archive")
    op.drop_table("ride_events")
    op.drop_table("rides")
    op.drop_table("users")
    for name in ENUM_TYPES:
        op.execute(f"DROP TYPE IF EXISTS {name}")
