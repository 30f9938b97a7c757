"""
possumbly.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- users         — OAuth-backed accounts with role + invite state
- invite_codes  — Single-use access tokens
- templates     — Uploaded base images
- memes         — Saved editor state + optional rendered output
- votes         — One up/down vote per (meme, user)
- audit_logs    — Append-only security event journal
- oauth_states  — One-time CSRF tokens for the OAuth round trip
"""

from __future__ import annotations

import enum
import secrets
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    """URL-safe random identifier (22 chars of ``[A-Za-z0-9_-]``)."""
    return secrets.token_urlsafe(16)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_millis(value: datetime) -> int:
    return int(as_utc(value).timestamp() * 1000)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Possumbly ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AuditAction(enum.StrEnum):
    """Closed set of security-relevant events recorded in audit_logs."""
    AUTH_LOGIN = "auth.login"
    AUTH_LOGOUT = "auth.logout"
    AUTH_LOGIN_FAILED = "auth.login_failed"
    USER_CREATED = "user.created"
    USER_ROLE_CHANGED = "user.role_changed"
    USER_INVITE_REDEEMED = "user.invite_redeemed"
    INVITE_CREATED = "invite.created"
    INVITE_DELETED = "invite.deleted"
    INVITE_REDEEM_FAILED = "invite.redeem_failed"
    TEMPLATE_CREATED = "template.created"
    TEMPLATE_DELETED = "template.deleted"
    MEME_CREATED = "meme.created"
    MEME_UPDATED = "meme.updated"
    MEME_DELETED = "meme.deleted"
    MEME_VISIBILITY_CHANGED = "meme.visibility_changed"
    VOTE_CAST = "vote.cast"
    VOTE_REMOVED = "vote.removed"
    ADMIN_BOOTSTRAP = "admin.bootstrap"
    ACCESS_DENIED = "access.denied"


SECURITY_ACTIONS = frozenset({
    AuditAction.AUTH_LOGIN,
    AuditAction.AUTH_LOGOUT,
    AuditAction.AUTH_LOGIN_FAILED,
    AuditAction.USER_ROLE_CHANGED,
    AuditAction.ADMIN_BOOTSTRAP,
    AuditAction.ACCESS_DENIED,
})


# ---------------------------------------------------------------------------
# Users — one row per (provider, provider_id)
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, default=None)
    name: Mapped[str | None] = mapped_column(String(200), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False, default="user")
    invite_redeemed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_users_provider_identity"),
        Index("ix_users_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def has_access(self) -> bool:
        """True once the user may use the workshop (invited or admin)."""
        return self.invite_redeemed or self.is_admin

    @property
    def display_name(self) -> str | None:
        return self.name or self.email or None

    def __repr__(self) -> str:
        return f"<User id={self.id} provider={self.provider} role={self.role}>"


# ---------------------------------------------------------------------------
# InviteCode — single-use capability token
# ---------------------------------------------------------------------------
class InviteCode(Base):
    __tablename__ = "invite_codes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(12), nullable=False, unique=True)
    created_by: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id"), default=None
    )
    used_by: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id"), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    creator: Mapped[User | None] = relationship(foreign_keys=[created_by])
    redeemer: Mapped[User | None] = relationship(foreign_keys=[used_by])

    def __repr__(self) -> str:
        return f"<InviteCode id={self.id} used={self.used_by is not None}>"


# ---------------------------------------------------------------------------
# Template — uploaded base image
# ---------------------------------------------------------------------------
class Template(Base):
    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(600), nullable=False)  # escaped, ≤100 raw chars
    filename: Mapped[str] = mapped_column(String(64), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    uploaded_by: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id"), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_templates_uploaded_by", "uploaded_by"),
    )

    def __repr__(self) -> str:
        return f"<Template id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Meme — editor state + rendered output
# ---------------------------------------------------------------------------
class Meme(Base):
    __tablename__ = "memes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    template_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("templates.id", ondelete="SET NULL"), default=None
    )
    created_by: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id"), default=None
    )
    editor_state: Mapped[str] = mapped_column(Text, nullable=False)
    output_filename: Mapped[str | None] = mapped_column(String(64), default=None)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_memes_created_by", "created_by"),
        Index("ix_memes_template_id", "template_id"),
        Index("ix_memes_public_created", "is_public", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Meme id={self.id} public={self.is_public}>"


# ---------------------------------------------------------------------------
# Vote — one per (meme, user); the unique constraint is load-bearing
# ---------------------------------------------------------------------------
class Vote(Base):
    __tablename__ = "votes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    meme_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("memes.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id"), nullable=False
    )
    vote_type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("meme_id", "user_id", name="uq_votes_meme_user"),
        Index("ix_votes_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Vote meme={self.meme_id} user={self.user_id} type={self.vote_type}>"


# ---------------------------------------------------------------------------
# AuditLog — append-only; only the retention sweep deletes
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    user_id: Mapped[str | None] = mapped_column(String(32), default=None)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(50), default=None)
    resource_id: Mapped[str | None] = mapped_column(String(64), default=None)
    details: Mapped[dict | None] = mapped_column(JSONType, default=None)
    ip_address: Mapped[str | None] = mapped_column(String(64), default=None)
    user_agent: Mapped[str | None] = mapped_column(String(500), default=None)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_audit_logs_timestamp", "timestamp"),
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_action", "action"),
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action} ok={self.success}>"


# ---------------------------------------------------------------------------
# OAuthState — one-time CSRF tokens for OAuth callback validation
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}... provider={self.provider}>"
