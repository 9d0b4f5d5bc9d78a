from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "trainers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), unique=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    member_status = postgresql.ENUM("active", "inactive", "suspended", name="memberstatus", create_type=False)
    member_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), unique=True),
        sa.Column("status", member_status, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    session_status = postgresql.ENUM(
        "scheduled", "in_progress", "completed", "cancelled", name="sessionstatus", create_type=False
    )
    session_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "training_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trainer_id", sa.Integer(), sa.ForeignKey("trainers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("status", session_status, server_default="scheduled"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("scheduled_end > scheduled_start", name="ck_training_session_end_after_start"),
        sa.CheckConstraint("max_participants > 0", name="ck_training_session_capacity_positive"),
        sa.CheckConstraint("current_participants >= 0", name="ck_training_session_participants_non_negative"),
        sa.CheckConstraint(
            "current_participants <= max_participants",
            name="ck_training_session_participants_within_capacity",
        ),
    )
    op.create_index(
        "ix_training_session_trainer_start",
        "training_sessions",
        ["trainer_id", "scheduled_start"],
    )

    booking_status = postgresql.ENUM("confirmed", "cancelled", name="bookingstatus", create_type=False)
    booking_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "session_bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("training_sessions.id", ondelete="RESTRICT"),
            nullable=False,
            index=True,
        ),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("status", booking_status, server_default="confirmed"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("session_id", "member_id", name="uq_session_booking_member"),
    )

    actor_type = postgresql.ENUM("admin", "trainer", "member", "system", name="actortype", create_type=False)
    actor_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_type", actor_type),
        sa.Column("actor_id", sa.Integer()),
        sa.Column("action", sa.String(length=255)),
        sa.Column("payload", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("session_bookings")
    op.drop_index("ix_training_session_trainer_start", table_name="training_sessions")
    op.drop_table("training_sessions")
    op.drop_table("members")
    op.drop_table("trainers")
    for enum_name in ("actortype", "bookingstatus", "sessionstatus", "memberstatus"):
        postgresql.ENUM(name=enum_name).drop(op.get_bind(), checkfirst=True)
