"""add_health_profile_fields

Revision ID: 8c2d5e1a4f6b
Revises: 1f4e2a9c7b3d
Create Date: 2026-10-05

Adds nullable health profile columns to users. Existing rows keep their
data and read these fields as NULL until the next profile sync.
"""

from alembic import op
import sqlalchemy as sa

revision = "8c2d5e1a4f6b"
down_revision = "1f4e2a9c7b3d"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("users", sa.Column("height", sa.Float(), nullable=True))
    op.add_column("users", sa.Column("weight", sa.Float(), nullable=True))
    op.add_column("users", sa.Column("blood_pressure_systolic", sa.Integer(), nullable=True))
    op.add_column("users", sa.Column("blood_pressure_diastolic", sa.Integer(), nullable=True))
    op.add_column("users", sa.Column("diabetes_type", sa.String(20), nullable=True))
    op.add_column("users", sa.Column("treatment_type", sa.String(50), nullable=True))


def downgrade() -> None:
    # SQLite needs a table rebuild to drop columns
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("treatment_type")
        batch_op.drop_column("diabetes_type")
        batch_op.drop_column("blood_pressure_diastolic")
        batch_op.drop_column("blood_pressure_systolic")
        batch_op.drop_column("weight")
        batch_op.drop_column("height")
