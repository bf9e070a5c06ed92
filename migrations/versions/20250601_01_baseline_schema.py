"""baseline schema: households, contacts, invites, delivery log

Revision ID: 20250601_01
Revises: None
Create Date: 2025-06-01
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20250601_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "households",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("status_state", sa.String(length=20), nullable=False, server_default="available"),
        sa.Column("status_note", sa.String(length=200), nullable=True),
        sa.Column("status_time_window", sa.String(length=50), nullable=True),
        sa.Column("status_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("phone", sa.String(length=20), nullable=True, unique=True),
        sa.Column("push_subscription", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "household_members",
        sa.Column("household_id", sa.String(length=36),
                  sa.ForeignKey("households.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.String(length=36),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "contacts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_household_id", sa.String(length=36),
                  sa.ForeignKey("households.id", ondelete="CASCADE"), nullable=False),
        sa.Column("linked_household_id", sa.String(length=36),
                  sa.ForeignKey("households.id", ondelete="SET NULL"), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_contacts_owner_household_id", "contacts", ["owner_household_id"])
    op.create_index("ix_contacts_linked_household_id", "contacts", ["linked_household_id"])

    op.create_table(
        "invites",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_by_household_id", sa.String(length=36),
                  sa.ForeignKey("households.id", ondelete="CASCADE"), nullable=False),
        sa.Column("activity_type", sa.String(length=50), nullable=True),
        sa.Column("activity_name", sa.String(length=100), nullable=True),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("proposed_date", sa.String(length=10), nullable=True),
        sa.Column("proposed_time", sa.String(length=50), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_invites_created_by_household_id", "invites", ["created_by_household_id"])
    op.create_index("ix_invites_status", "invites", ["status"])

    op.create_table(
        "invite_recipients",
        sa.Column("invite_id", sa.String(length=36),
                  sa.ForeignKey("invites.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("household_id", sa.String(length=36),
                  sa.ForeignKey("households.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("response", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "invite_delivery_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("invite_id", sa.String(length=36),
                  sa.ForeignKey("invites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("results", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_invite_delivery_logs_invite_id", "invite_delivery_logs", ["invite_id"])


def downgrade() -> None:
    op.drop_table("invite_delivery_logs")
    op.drop_table("invite_recipients")
    op.drop_table("invites")
    op.drop_table("contacts")
    op.drop_table("household_members")
    op.drop_table("users")
    op.drop_table("households")
