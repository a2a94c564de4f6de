"""Initial questcycle schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the template catalog, active task and reroll quota tables."""
    json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    op.create_table(
        "task_templates",
        sa.Column("task_key", sa.String(length=64), primary_key=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("task_data", json_type, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_task_templates_enabled", "task_templates", ["enabled"])

    op.create_table(
        "active_tasks",
        sa.Column("player_id", sa.String(length=64), primary_key=True),
        sa.Column("task_key", sa.String(length=64), primary_key=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), primary_key=True),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("task_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claimed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("task_data", json_type, nullable=False),
    )
    op.create_index(
        "idx_active_tasks_player_category", "active_tasks", ["player_id", "category"]
    )
    op.create_index("idx_active_tasks_assigned_at", "active_tasks", ["assigned_at"])

    op.create_table(
        "reroll_quota",
        sa.Column("player_id", sa.String(length=64), primary_key=True),
        sa.Column("category_id", sa.String(length=64), primary_key=True),
        sa.Column("reroll_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset_time", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop all questcycle tables."""
    op.drop_table("reroll_quota")
    op.drop_index("idx_active_tasks_assigned_at", table_name="active_tasks")
    op.drop_index("idx_active_tasks_player_category", table_name="active_tasks")
    op.drop_table("active_tasks")
    op.drop_index("idx_task_templates_enabled", table_name="task_templates")
    op.drop_table("task_templates")
