"""Initial schema: schools, drivers, vehicles, students, routes, assignments, shuttles.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", sa.String(100), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("school_uuid", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lon", sa.Float, nullable=False),
    )
    op.create_table(
        "drivers",
        sa.Column("user_uuid", sa.Uuid, primary_key=True),
        sa.Column("school_uuid", sa.Uuid, sa.ForeignKey("schools.school_uuid"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
    )
    op.create_table(
        "vehicles",
        sa.Column("vehicle_uuid", sa.Uuid, primary_key=True),
        sa.Column("school_uuid", sa.Uuid, sa.ForeignKey("schools.school_uuid"), nullable=False),
        sa.Column("vehicle_name", sa.String(100), nullable=False),
        sa.Column("vehicle_number", sa.String(20), nullable=False),
        sa.Column("vehicle_seats", sa.Integer, nullable=False),
        sa.Column("driver_uuid", sa.Uuid, sa.ForeignKey("drivers.user_uuid"), nullable=True, unique=True),
    )
    op.create_table(
        "students",
        sa.Column("student_uuid", sa.Uuid, primary_key=True),
        sa.Column("school_uuid", sa.Uuid, sa.ForeignKey("schools.school_uuid"), nullable=False),
        sa.Column("parent_uuid", sa.Uuid, nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("address", sa.Text, nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lon", sa.Float, nullable=True),
    )
    op.create_index("ix_students_parent", "students", ["parent_uuid"])
    op.create_table(
        "routes",
        sa.Column("route_uuid", sa.Uuid, primary_key=True),
        sa.Column("school_uuid", sa.Uuid, sa.ForeignKey("schools.school_uuid"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        *_audit_columns(),
    )
    op.create_index("ix_routes_school", "routes", ["school_uuid"])
    op.create_table(
        "route_assignments",
        sa.Column("assignment_uuid", sa.Uuid, primary_key=True),
        sa.Column("route_uuid", sa.Uuid, sa.ForeignKey("routes.route_uuid"), nullable=False),
        sa.Column("driver_uuid", sa.Uuid, sa.ForeignKey("drivers.user_uuid"), nullable=False),
        sa.Column("student_uuid", sa.Uuid, sa.ForeignKey("students.student_uuid"), nullable=False),
        sa.Column("school_uuid", sa.Uuid, sa.ForeignKey("schools.school_uuid"), nullable=False),
        sa.Column("student_order", sa.Integer, nullable=False),
        *_audit_columns(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_ra_route_driver_order", "route_assignments",
        ["route_uuid", "driver_uuid", "student_order"],
    )
    op.create_index("ix_ra_driver", "route_assignments", ["driver_uuid"])
    op.create_index("ix_ra_student", "route_assignments", ["student_uuid"])
    op.create_table(
        "shuttles",
        sa.Column("shuttle_uuid", sa.Uuid, primary_key=True),
        sa.Column("student_uuid", sa.Uuid, sa.ForeignKey("students.student_uuid"), nullable=False),
        sa.Column("driver_uuid", sa.Uuid, sa.ForeignKey("drivers.user_uuid"), nullable=False),
        sa.Column("school_uuid", sa.Uuid, sa.ForeignKey("schools.school_uuid"), nullable=False),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_shuttle_student_created", "shuttles", ["student_uuid", "created_at"])
    op.create_table(
        "device_tokens",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_uuid", sa.Uuid, nullable=False),
        sa.Column("device_token", sa.String(255), nullable=False),
        sa.UniqueConstraint("user_uuid", name="uq_device_token_user"),
    )


def downgrade() -> None:
    op.drop_table("device_tokens")
    op.drop_table("shuttles")
    op.drop_table("route_assignments")
    op.drop_table("routes")
    op.drop_table("students")
    op.drop_table("vehicles")
    op.drop_table("drivers")
    op.drop_table("schools")
