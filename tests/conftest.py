"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of possumbly.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import base64  # noqa: E402
from datetime import datetime  # noqa: E402
from io import BytesIO  # noqa: E402

import pytest  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from possumbly.api.providers import IdentityProvider, ProviderError  # noqa: E402
from possumbly.config import PossumblyConfig  # noqa: E402
from possumbly.database.models import Base, Meme, Template, User  # noqa: E402
from possumbly.services import upload_service  # noqa: E402
from possumbly.services.audit_service import AuditLogger  # noqa: E402
from possumbly.services.identity_service import ExternalIdentity  # noqa: E402


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Possumbly tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``run_db`` / Starlette's threadpool).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session for direct assertions against the test database."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def audit(db_engine):
    return AuditLogger(db_engine)


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    """Point the upload service at a throwaway directory."""
    root = tmp_path / "uploads"
    monkeypatch.setattr(upload_service, "UPLOAD_DIR", root)
    upload_service.ensure_upload_dirs()
    return root


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_user(db_engine):
    """Factory: insert a user and return it (detached, attributes loaded)."""
    counter = {"n": 0}

    def _make(
        *,
        role: str = "user",
        invited: bool = False,
        name: str | None = None,
        email: str | None = None,
        provider: str = "github",
    ) -> User:
        counter["n"] += 1
        user = User(
            name=name if name is not None else f"User {counter['n']}",
            email=email,
            provider=provider,
            provider_id=f"pid-{counter['n']}",
            role=role,
            invite_redeemed=invited,
        )
        with Session(db_engine, expire_on_commit=False) as session:
            session.add(user)
            session.commit()
        return user

    return _make


@pytest.fixture
def make_template(db_engine):
    def _make(owner: User, *, name: str = "Distracted Possum", filename: str = "tpl1.png") -> Template:
        template = Template(
            name=name, filename=filename, width=10, height=10, uploaded_by=owner.id
        )
        with Session(db_engine, expire_on_commit=False) as session:
            session.add(template)
            session.commit()
        return template

    return _make


@pytest.fixture
def make_meme(db_engine):
    def _make(
        owner: User,
        template: Template | None = None,
        *,
        public: bool = False,
        created_at: datetime | None = None,
    ) -> Meme:
        meme = Meme(
            template_id=template.id if template else None,
            created_by=owner.id,
            editor_state='{"textBoxes":[]}',
            is_public=public,
        )
        if created_at is not None:
            meme.created_at = created_at
        with Session(db_engine, expire_on_commit=False) as session:
            session.add(meme)
            session.commit()
        return meme

    return _make


def png_bytes(width: int = 10, height: int = 10, fmt: str = "PNG") -> bytes:
    """Encode a solid-colour image with Pillow."""
    buf = BytesIO()
    Image.new("RGB", (width, height), (120, 90, 60)).save(buf, format=fmt)
    return buf.getvalue()


def data_url(width: int = 10, height: int = 10, fmt: str = "png") -> str:
    pil_format = "JPEG" if fmt == "jpeg" else fmt.upper()
    encoded = base64.b64encode(png_bytes(width, height, pil_format)).decode()
    return f"data:image/{fmt};base64,{encoded}"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
def make_token(user_id: str, hours: int = 1) -> str:
    from possumbly.api.deps import issue_session_token

    return issue_session_token(user_id, hours)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(user.id)}"}


@pytest.fixture
def auth():
    """``auth(user)`` → Authorization header dict for that user."""
    return auth_headers


# ---------------------------------------------------------------------------
# Identity provider stub
# ---------------------------------------------------------------------------
class StubProvider(IdentityProvider):
    """Offline provider: code ``fail`` raises, anything else logs in ``gh-<code>``."""

    name = "github"
    authorize_endpoint = "https://idp.example.test/authorize"
    token_endpoint = "https://idp.example.test/token"
    scope = "user:email"

    async def complete(self, code: str) -> ExternalIdentity:
        if code == "fail":
            raise ProviderError("stub refused the code")
        return ExternalIdentity(
            provider=self.name,
            provider_id=f"gh-{code}",
            email=f"{code}@example.test",
            name=f"Possum {code}",
            avatar_url=None,
        )


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------
@pytest.fixture
def app_config() -> PossumblyConfig:
    return PossumblyConfig(public_url="http://frontend.test")


@pytest.fixture
def client(db_engine, audit, upload_dir, app_config):
    """FastAPI TestClient wired to the in-memory engine and stub provider.

    The lifespan is not run; every process-wide object is injected through
    ``app.dependency_overrides``.
    """
    from fastapi.testclient import TestClient

    from possumbly.api import deps, providers, rate_limit
    from possumbly.api.main import app

    stub = StubProvider("client-id", "client-secret", "http://frontend.test/auth/github/callback")
    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_config] = lambda: app_config
    app.dependency_overrides[deps.get_audit] = lambda: audit
    app.dependency_overrides[providers.get_identity_providers] = lambda: {"github": stub}
    rate_limit.reset_rate_limiters()

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
    rate_limit.reset_rate_limiters()
