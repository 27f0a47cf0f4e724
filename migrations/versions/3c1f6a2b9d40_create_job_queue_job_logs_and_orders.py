"""create job_queue, job_logs and orders tables

Revision ID: 3c1f6a2b9d40
Revises:
Create Date: 2026-10-17 09:12:41.518203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1f6a2b9d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "job_queue",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.String(64), nullable=False, unique=True),
        sa.Column("user_id", sa.String(255), nullable=False, comment="Owning user"),
        sa.Column("team_id", sa.String(255), nullable=True, comment="Owning team"),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Job-specific parameters"
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="pending",
            comment="pending|processing|completed|failed|cancelled",
        ),
        sa.Column(
            "queue_position",
            sa.Integer,
            nullable=True,
            comment="Advisory rank among pending jobs",
        ),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Higher dequeues first",
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Number of attempts made",
        ),
        sa.Column(
            "max_attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="3",
            comment="Attempt cap",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Job result data"),
        sa.Column("error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "heartbeat_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last worker heartbeat",
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="job_queue_status_check",
        ),
        sa.CheckConstraint("attempts <= max_attempts", name="job_queue_attempts_check"),
    )

    # Dequeue order and owner lookups
    op.create_index(
        "ix_job_queue_priority_status_created",
        "job_queue",
        [sa.text("priority DESC"), "status", "created_at"],
    )
    op.create_index("ix_job_queue_status", "job_queue", ["status"])
    op.create_index("ix_job_queue_user_id", "job_queue", ["user_id"])
    op.create_index("ix_job_queue_team_id", "job_queue", ["team_id"])
    op.create_index("ix_job_queue_created_at", "job_queue", ["created_at"])

    op.create_table(
        "job_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.String(64),
            sa.ForeignKey("job_queue.job_id"),
            nullable=False,
        ),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "level IN ('info', 'warning', 'error')", name="job_logs_level_check"
        ),
    )
    op.create_index("ix_job_logs_job_id", "job_logs", ["job_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(128), nullable=False, unique=True),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("team_id", sa.String(255), nullable=True),
        sa.Column("post_id", sa.Text, nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("like_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("save_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("comment_group_id", sa.Integer, nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("api_created_at", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")

    op.drop_index("ix_job_logs_job_id", table_name="job_logs")
    op.drop_table("job_logs")

    op.drop_index("ix_job_queue_created_at", table_name="job_queue")
    op.drop_index("ix_job_queue_team_id", table_name="job_queue")
    op.drop_index("ix_job_queue_user_id", table_name="job_queue")
    op.drop_index("ix_job_queue_status", table_name="job_queue")
    op.drop_index("ix_job_queue_priority_status_created", table_name="job_queue")
    op.drop_table("job_queue")
