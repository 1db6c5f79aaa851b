"""Initial schema.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Ability catalog and encrypted credential tables.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Abilities table
    op.create_table(
        "abilities",
        sa.Column("ability_id", sa.String(), nullable=False),
        sa.Column("owner_user_id", sa.String(), nullable=True),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("requires_dynamic_headers", sa.Boolean(), nullable=False),
        sa.Column("definition", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("ability_id"),
    )
    op.create_index(
        "ix_abilities_owner_user_id", "abilities", ["owner_user_id"]
    )
    op.create_index("ix_abilities_service_name", "abilities", ["service_name"])

    # Credentials table
    op.create_table(
        "credentials",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("domain", sa.String(), nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("encrypted_value", sa.Text(), nullable=False),
        sa.Column("expired", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "domain", "key", name="uq_credentials_user_domain_key"
        ),
    )
    op.create_index(
        "ix_credentials_user_domain", "credentials", ["user_id", "domain"]
    )


def downgrade() -> None:
    op.drop_index("ix_credentials_user_domain", table_name="credentials")
    op.drop_table("credentials")
    op.drop_index("ix_abilities_service_name", table_name="abilities")
    op.drop_index("ix_abilities_owner_user_id", table_name="abilities")
    op.drop_table("abilities")
