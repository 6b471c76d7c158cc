"""Initial schema: routes, route stops, taxis and ride requests.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


TAXI_STATUSES = (
    "waiting",
    "available",
    "roaming",
    "almost_full",
    "full",
    "on_trip",
    "not_available",
)


def upgrade() -> None:
    # ── routes ────────────────────────────────────────────────────────
    op.create_table(
        "routes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), unique=True, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── route_stops ───────────────────────────────────────────────────
    op.create_table(
        "route_stops",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "route_id", sa.Integer, sa.ForeignKey("routes.id"), nullable=False
        ),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("order", sa.Integer, nullable=False),
        sa.UniqueConstraint("route_id", "name", name="uq_route_stops_name"),
        sa.UniqueConstraint("route_id", "order", name="uq_route_stops_order"),
    )
    op.create_index("idx_route_stops_name", "route_stops", ["name"])

    # ── taxis ─────────────────────────────────────────────────────────
    op.create_table(
        "taxis",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("number_plate", sa.String(32), unique=True, nullable=False),
        sa.Column(
            "route_id", sa.Integer, sa.ForeignKey("routes.id"), nullable=False
        ),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False),
        sa.Column("current_load", sa.Integer, default=0, nullable=False),
        sa.Column("current_stop", sa.String(120), nullable=False),
        sa.Column(
            "direction",
            sa.Enum("forward", "return", name="taxi_direction"),
            nullable=False,
        ),
        sa.Column("allow_return_pickups", sa.Boolean, nullable=False),
        sa.Column(
            "status",
            sa.Enum(*TAXI_STATUSES, name="taxi_status"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("capacity > 0", name="ck_taxis_capacity_positive"),
        sa.CheckConstraint(
            "current_load >= 0 AND current_load <= capacity",
            name="ck_taxis_load_within_capacity",
        ),
    )
    op.create_index("idx_taxis_route_status", "taxis", ["route_id", "status"])
    op.create_index("idx_taxis_driver", "taxis", ["driver_id"])

    # ── ride_requests ─────────────────────────────────────────────────
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        sa.Column(
            "route_id", sa.Integer, sa.ForeignKey("routes.id"), nullable=False
        ),
        sa.Column(
            "request_type",
            sa.Enum("ride", "pickup", name="request_type"),
            nullable=False,
        ),
        sa.Column("starting_stop", sa.String(120), nullable=False),
        sa.Column("destination_stop", sa.String(120), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", name="request_status"),
            nullable=False,
        ),
        sa.Column("taxi_id", sa.Integer, sa.ForeignKey("taxis.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "(status = 'accepted') = (taxi_id IS NOT NULL)",
            name="ck_ride_requests_assignment",
        ),
        sa.UniqueConstraint(
            "passenger_id", "route_id", name="uq_ride_requests_passenger_route"
        ),
    )
    op.create_index(
        "idx_ride_requests_route_status",
        "ride_requests",
        ["route_id", "status", "request_type"],
    )
    op.create_index("idx_ride_requests_passenger", "ride_requests", ["passenger_id"])
    op.create_index("idx_ride_requests_taxi", "ride_requests", ["taxi_id"])


def downgrade() -> None:
    op.drop_table("ride_requests")
    op.drop_table("taxis")
    op.drop_table("route_stops")
    op.drop_table("routes")
    op.execute("DROP TYPE IF EXISTS request_status")
    op.execute("DROP TYPE IF EXISTS request_type")
    op.execute("DROP TYPE IF EXISTS taxi_status")
    op.execute("DROP TYPE IF EXISTS taxi_direction")
