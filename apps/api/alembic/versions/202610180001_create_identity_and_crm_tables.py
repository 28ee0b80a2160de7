"""create identity and tenant-scoped crm tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _tenant_scoped_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("visible_to", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=64), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_by", sa.String(length=64), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _entity_tables() -> dict[str, list[sa.Column]]:
    return {
        "crm_lead": [
            sa.Column("lead_owner", sa.String(length=256), nullable=False),
            sa.Column("first_name", sa.String(length=128), nullable=False),
            sa.Column("last_name", sa.String(length=128), nullable=False),
            sa.Column("company", sa.String(length=256), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("lead_source", sa.String(length=64), nullable=True),
            sa.Column("lead_status", sa.String(length=32), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("value", sa.Float(), nullable=True),
        ],
        "crm_deal": [
            sa.Column("deal_owner", sa.String(length=256), nullable=False),
            sa.Column("deal_name", sa.String(length=256), nullable=False),
            sa.Column("lead_source", sa.String(length=64), nullable=True),
            sa.Column("stage", sa.String(length=64), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("probability", sa.Integer(), nullable=False),
            sa.Column("close_date", sa.Date(), nullable=True),
            sa.Column("description", sa.Text(), nullable=False),
        ],
        "crm_contact": [
            sa.Column("contact_owner", sa.String(length=256), nullable=False),
            sa.Column("first_name", sa.String(length=128), nullable=False),
            sa.Column("company_name", sa.String(length=256), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("lead_source", sa.String(length=64), nullable=True),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("title", sa.String(length=128), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
        ],
        "crm_dealer": [
            sa.Column("dealer_owner", sa.String(length=256), nullable=False),
            sa.Column("name", sa.String(length=256), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("company", sa.String(length=256), nullable=False),
            sa.Column("location", sa.String(length=256), nullable=True),
            sa.Column("territory", sa.String(length=128), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
        ],
        "crm_subsidiary": [
            sa.Column("subsidiary_owner", sa.String(length=256), nullable=False),
            sa.Column("name", sa.String(length=256), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("contact", sa.String(length=128), nullable=True),
            sa.Column("total_employees", sa.Integer(), nullable=False),
        ],
    }


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("username", sa.String(length=256), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_by", sa.String(length=64), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("email"),
        sa.UniqueConstraint("user_id", name="uq_identity_user_user_id"),
        sa.UniqueConstraint("phone_number", name="uq_identity_user_phone_number"),
    )
    op.create_index("ix_identity_user_tenant_id", "identity_user", ["tenant_id"], unique=False)
    op.create_index("ix_identity_user_created_by", "identity_user", ["created_by"], unique=False)

    op.create_table(
        "identity_refresh_token",
        sa.Column("jti", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("jti"),
    )
    op.create_index("ix_identity_refresh_token_user_id", "identity_refresh_token", ["user_id"], unique=False)

    for table_name, columns in _entity_tables().items():
        op.create_table(
            table_name,
            *_tenant_scoped_columns(),
            *columns,
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(f"ix_{table_name}_tenant_id", table_name, ["tenant_id"], unique=False)


def downgrade() -> None:
    for table_name in reversed(list(_entity_tables())):
        op.drop_index(f"ix_{table_name}_tenant_id", table_name=table_name)
        op.drop_table(table_name)
    op.drop_index("ix_identity_refresh_token_user_id", table_name="identity_refresh_token")
    op.drop_table("identity_refresh_token")
    op.drop_index("ix_identity_user_created_by", table_name="identity_user")
    op.drop_index("ix_identity_user_tenant_id", table_name="identity_user")
    op.drop_table("identity_user")
