"""create users, groups, chat settings, whitelist keywords, strikes and audit log

Revision ID: a1f3c9d2e7b4
Revises:
Create Date: 2026-10-18 12:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1f3c9d2e7b4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


AUDIT_EVENT_TYPES = (
    "SCANNED",
    "VIOLATION",
    "STRIKE",
    "PENALTY",
    "MANUAL-STRIKE-ADD",
    "MANUAL-STRIKE-REMOVE",
    "MANUAL-STRIKE-SET",
    "STRIKE-EXPIRED",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("is_bot", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_username", "users", ["username"])

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "chat_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("chat_id", "key", name="uq_chat_settings_chat_key"),
    )
    op.create_index("ix_chat_settings_chat_id", "chat_settings", ["chat_id"])

    op.create_table(
        "whitelist_keywords",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("keyword", sa.String(length=255), nullable=False),
        sa.Column("added_by", sa.BigInteger(), nullable=True),
        sa.Column("added_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("chat_id", "keyword", name="uq_whitelist_keywords_chat_keyword"),
    )
    op.create_index("ix_whitelist_keywords_chat_id", "whitelist_keywords", ["chat_id"])

    op.create_table(
        "user_strikes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("strike_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_strike_at", sa.DateTime(), nullable=True),
        sa.Column("last_forgiven_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("chat_id", "user_id", name="uq_user_strikes_chat_user"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "event_type",
            sa.Enum(*AUDIT_EVENT_TYPES, name="audit_event_type_enum"),
            nullable=False,
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index("ix_audit_log_chat_user", "audit_log", ["chat_id", "user_id"])
    op.create_index("ix_audit_log_chat_type_created", "audit_log", ["chat_id", "event_type", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_log_chat_type_created", table_name="audit_log")
    op.drop_index("ix_audit_log_chat_user", table_name="audit_log")
    op.drop_index("ix_audit_log_created_at", table_name="audit_log")
    op.drop_table("audit_log")
    sa.Enum(name="audit_event_type_enum").drop(op.get_bind(), checkfirst=True)

    op.drop_table("user_strikes")

    op.drop_index("ix_whitelist_keywords_chat_id", table_name="whitelist_keywords")
    op.drop_table("whitelist_keywords")

    op.drop_index("ix_chat_settings_chat_id", table_name="chat_settings")
    op.drop_table("chat_settings")

    op.drop_table("groups")

    op.drop_index("ix_users_username", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
