"""
possumbly.constants — Shared Constants
=======================================

Single source of truth for identifier patterns, upload limits and the
ranking parameters.  Import from here instead of duplicating in services
and routes.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------
ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
INVITE_CODE_PATTERN = re.compile(r"^[A-F0-9]{12}$")
INVITE_CODE_BYTES = 6

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

PROVIDERS = ("google", "github", "discord")

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
MAX_TEMPLATE_NAME_LENGTH = 100
MAX_TEMPLATE_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_IMAGE_DIMENSION = 4096

TEMPLATE_MIME_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
TEMPLATE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})
TEMPLATE_FILENAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+\.(jpg|jpeg|png|gif|webp)$")

# ---------------------------------------------------------------------------
# Memes
# ---------------------------------------------------------------------------
MAX_EDITOR_STATE_SIZE = 100 * 1024  # serialized bytes
MAX_TEXT_BOXES = 50
MAX_TEXT_LENGTH = 1000
TEXT_BOX_NUMERIC_FIELDS = ("x", "y", "width", "fontSize", "strokeWidth", "rotation")

RENDER_DATA_URL_PATTERN = re.compile(r"^data:image/(png|jpeg|webp);base64,(.+)$", re.DOTALL)
MAX_RENDER_BASE64_LENGTH = 15 * 1024 * 1024
RENDER_FILENAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+\.(png|jpeg|webp)$")

# ---------------------------------------------------------------------------
# Votes & ranking
# ---------------------------------------------------------------------------
UPVOTE = 1
DOWNVOTE = -1

HOT_EPOCH_SECONDS = 1704067200  # 2024-01-01T00:00:00Z
HOT_DECAY_SECONDS = 45000

_DAY_MS = 24 * 60 * 60 * 1000
GALLERY_PERIODS_MS: dict[str, int | None] = {
    "7d": 7 * _DAY_MS,
    "30d": 30 * _DAY_MS,
    "year": 365 * _DAY_MS,
    "all": None,
}
GALLERY_SORTS = ("hot", "top", "new")
GALLERY_DEFAULT_LIMIT = 20
GALLERY_MAX_LIMIT = 50

# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------
MAX_USER_AGENT_LENGTH = 500
DEFAULT_AUDIT_QUERY_LIMIT = 100
