"""Initial schema for coffee rotation."""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

membership_status = sa.Enum(
    "NOT_PAID", "PAID", "SKIPPED", name="membership_status"
)


def upgrade() -> None:
    """Upgrade database schema."""

    op.create_table(
        "coffee_users",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("auth_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint("user_id", name="pk_coffee_users"),
        sa.UniqueConstraint("auth_id", name="uq_coffee_users_auth_id"),
        sa.UniqueConstraint("username", name="uq_coffee_users_username"),
    )
    op.create_table(
        "coffee_groups",
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("group_id", name="pk_coffee_groups"),
        sa.UniqueConstraint("name", name="uq_coffee_groups_name"),
    )
    op.create_table(
        "user_group_memberships",
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("status", membership_status, nullable=False),
        sa.Column("my_turn", sa.Boolean(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["group_id"],
            ["coffee_groups.group_id"],
            name="fk_user_group_memberships_group_id_coffee_groups",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["coffee_users.user_id"],
            name="fk_user_group_memberships_user_id_coffee_users",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("membership_id", name="pk_user_group_memberships"),
        sa.UniqueConstraint(
            "user_id", "group_id", name="uq_user_group_memberships_user_id"
        ),
    )
    op.create_index(
        "ix_user_group_memberships_group_id",
        "user_group_memberships",
        ["group_id"],
    )
    op.create_table(
        "payments",
        sa.Column("payment_id", sa.Uuid(), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column(
            "payment_date",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["membership_id"],
            ["user_group_memberships.membership_id"],
            name="fk_payments_membership_id_user_group_memberships",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("payment_id", name="pk_payments"),
    )
    op.create_index("ix_payments_membership_id", "payments", ["membership_id"])
    op.create_table(
        "outbox_events",
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint("event_id", name="pk_outbox_events"),
    )
    op.create_index(
        "ix_outbox_events_pending",
        "outbox_events",
        ["processed_at", "created_at"],
    )


def downgrade() -> None:
    """Downgrade database schema."""

    op.drop_index("ix_outbox_events_pending", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_payments_membership_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index(
        "ix_user_group_memberships_group_id", table_name="user_group_memberships"
    )
    op.drop_table("user_group_memberships")
    op.drop_table("coffee_groups")
    op.drop_table("coffee_users")
    membership_status.drop(op.get_bind(), checkfirst=True)
