"""Initial schema: users, invites, templates, memes, votes, audit, oauth state

Revision ID: 5f0c2a9d7e41
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5f0c2a9d7e41"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create every Possumbly table."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("email", sa.String(320), unique=True),
        sa.Column("name", sa.String(200)),
        sa.Column("avatar_url", sa.String(500)),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("provider_id", sa.String(128), nullable=False),
        sa.Column("role", sa.String(10), nullable=False, server_default="user"),
        sa.Column("invite_redeemed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.UniqueConstraint("provider", "provider_id", name="uq_users_provider_identity"),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "invite_codes",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("code", sa.String(12), nullable=False, unique=True),
        sa.Column("created_by", sa.String(32), sa.ForeignKey("users.id")),
        sa.Column("used_by", sa.String(32), sa.ForeignKey("users.id")),
        _created_at(),
        sa.Column("used_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "templates",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(600), nullable=False),
        sa.Column("filename", sa.String(64), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("uploaded_by", sa.String(32), sa.ForeignKey("users.id")),
        _created_at(),
    )
    op.create_index("ix_templates_uploaded_by", "templates", ["uploaded_by"])

    op.create_table(
        "memes",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(32),
            sa.ForeignKey("templates.id", ondelete="SET NULL"),
        ),
        sa.Column("created_by", sa.String(32), sa.ForeignKey("users.id")),
        sa.Column("editor_state", sa.Text(), nullable=False),
        sa.Column("output_filename", sa.String(64)),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_memes_created_by", "memes", ["created_by"])
    op.create_index("ix_memes_template_id", "memes", ["template_id"])
    op.create_index("ix_memes_public_created", "memes", ["is_public", "created_at"])

    op.create_table(
        "votes",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "meme_id",
            sa.String(32),
            sa.ForeignKey("memes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(32), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vote_type", sa.SmallInteger(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("meme_id", "user_id", name="uq_votes_meme_user"),
    )
    op.create_index("ix_votes_user_id", "votes", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("user_id", sa.String(32)),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(50)),
        sa.Column("resource_id", sa.String(64)),
        sa.Column("details", JSON_TYPE),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        sa.Column("provider", sa.String(20), nullable=False),
        _created_at(),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])


def downgrade() -> None:
    """Drop every Possumbly table."""
    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_votes_user_id", table_name="votes")
    op.drop_table("votes")
    op.drop_index("ix_memes_public_created", table_name="memes")
    op.drop_index("ix_memes_template_id", table_name="memes")
    op.drop_index("ix_memes_created_by", table_name="memes")
    op.drop_table("memes")
    op.drop_index("ix_templates_uploaded_by", table_name="templates")
    op.drop_table("templates")
    op.drop_table("invite_codes")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_table("users")
