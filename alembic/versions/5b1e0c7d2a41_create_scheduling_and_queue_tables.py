"""create_scheduling_and_queue_tables

Revision ID: 5b1e0c7d2a41
Revises:
Create Date: 2026-10-19 09:12:40.311524

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "5b1e0c7d2a41"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE = "status IN ('WAITING', 'CALLED', 'IN_PROGRESS')"
SERVING = "status IN ('CALLED', 'IN_PROGRESS')"


def upgrade():
    op.create_table(
        "appointments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("patient_id", sa.String(length=24), nullable=False),
        sa.Column("doctor_id", sa.String(length=24), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=11), nullable=False, server_default="SCHEDULED"),
        sa.Column("reminder_24h_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_appointments_patient_id"), "appointments", ["patient_id"])
    op.create_index(op.f("ix_appointments_doctor_id"), "appointments", ["doctor_id"])
    op.create_index(
        "ix_appointments_doctor_window", "appointments", ["doctor_id", "start_time", "end_time"]
    )
    op.create_index(
        "ix_appointments_patient_window", "appointments", ["patient_id", "start_time", "end_time"]
    )

    op.create_table(
        "queue_tickets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "appointment_id",
            sa.String(length=36),
            sa.ForeignKey("appointments.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("patient_id", sa.String(length=24), nullable=False),
        sa.Column("doctor_id", sa.String(length=24), nullable=False),
        sa.Column("queue_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=11), nullable=False, server_default="WAITING"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_queue_tickets_patient_id"), "queue_tickets", ["patient_id"])
    op.create_index(op.f("ix_queue_tickets_doctor_id"), "queue_tickets", ["doctor_id"])
    op.create_index(
        "uq_queue_active_number",
        "queue_tickets",
        ["doctor_id", "queue_number"],
        unique=True,
        postgresql_where=sa.text(ACTIVE),
    )
    op.create_index(
        "uq_queue_serving_doctor",
        "queue_tickets",
        ["doctor_id"],
        unique=True,
        postgresql_where=sa.text(SERVING),
    )

    op.create_table(
        "queue_counters",
        sa.Column("doctor_id", sa.String(length=24), primary_key=True),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # Store-level guarantee against double booking: two non-cancelled
    # appointments of one doctor (or one patient) may not share any instant.
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    for owner in ("doctor_id", "patient_id"):
        op.execute(
            f"""
            ALTER TABLE appointments
            ADD CONSTRAINT ex_appointments_{owner}_overlap
            EXCLUDE USING gist (
                {owner} WITH =,
                tstzrange(start_time, end_time, '[)') WITH &&
            ) WHERE (status <> 'CANCELLED')
            """
        )


def downgrade():
    op.drop_table("queue_counters")
    op.drop_index("uq_queue_serving_doctor", table_name="queue_tickets")
    op.drop_index("uq_queue_active_number", table_name="queue_tickets")
    op.drop_index(op.f("ix_queue_tickets_doctor_id"), table_name="queue_tickets")
    op.drop_index(op.f("ix_queue_tickets_patient_id"), table_name="queue_tickets")
    op.drop_table("queue_tickets")
    op.execute("ALTER TABLE appointments DROP CONSTRAINT IF EXISTS ex_appointments_patient_id_overlap")
    op.execute("ALTER TABLE appointments DROP CONSTRAINT IF EXISTS ex_appointments_doctor_id_overlap")
    op.drop_index("ix_appointments_patient_window", table_name="appointments")
    op.drop_index("ix_appointments_doctor_window", table_name="appointments")
    op.drop_index(op.f("ix_appointments_doctor_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_patient_id"), table_name="appointments")
    op.drop_table("appointments")
