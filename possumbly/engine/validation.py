"""
possumbly.engine.validation — Input Validation Policies
========================================================

Every identifier, name and payload that reaches a lookup or a filesystem
path is checked here first.  All failures raise
:class:`~possumbly.errors.BadRequestError` with a message safe to show the
caller.
"""

from __future__ import annotations

import html
import json
from typing import Any

from possumbly.constants import (
    ID_PATTERN,
    INVITE_CODE_PATTERN,
    MAX_EDITOR_STATE_SIZE,
    MAX_TEMPLATE_NAME_LENGTH,
    MAX_TEXT_BOXES,
    MAX_TEXT_LENGTH,
    TEXT_BOX_NUMERIC_FIELDS,
)
from possumbly.errors import BadRequestError


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------
def is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and ID_PATTERN.fullmatch(value) is not None


def require_id(value: Any, label: str) -> str:
    """Return *value* if it is a well-formed id, else raise ``Invalid <label> ID``."""
    if not is_valid_id(value):
        raise BadRequestError(f"Invalid {label} ID")
    return value


def normalize_invite_code(raw: str) -> str:
    return raw.strip().upper()


def is_valid_invite_code(code: str) -> bool:
    return INVITE_CODE_PATTERN.fullmatch(code) is not None


# ---------------------------------------------------------------------------
# Template names
# ---------------------------------------------------------------------------
def sanitize_template_name(raw: Any) -> str:
    """Validate a template name and return it trimmed and HTML-escaped."""
    if not isinstance(raw, str) or not raw.strip():
        raise BadRequestError("Template name is required")
    if len(raw) > MAX_TEMPLATE_NAME_LENGTH:
        raise BadRequestError(
            f"Template name must be {MAX_TEMPLATE_NAME_LENGTH} characters or less"
        )
    return html.escape(raw.strip()[:MAX_TEMPLATE_NAME_LENGTH], quote=True)


# ---------------------------------------------------------------------------
# Editor state
# ---------------------------------------------------------------------------
def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_editor_state(state: Any) -> str:
    """Check the editor payload and return its JSON serialization.

    The layout is opaque to the server apart from these bounds: a
    ``textBoxes`` list of at most 50 objects, text up to 1000 characters,
    numeric geometry fields, and 100 KB serialized.
    """
    if not isinstance(state, dict):
        raise BadRequestError("Editor state must be an object")

    boxes = state.get("textBoxes")
    if not isinstance(boxes, list):
        raise BadRequestError("Editor state must contain textBoxes array")
    if len(boxes) > MAX_TEXT_BOXES:
        raise BadRequestError(f"Maximum {MAX_TEXT_BOXES} text boxes allowed")

    for box in boxes:
        if not isinstance(box, dict):
            raise BadRequestError("Invalid text box format")
        text = box.get("text")
        if isinstance(text, str) and len(text) > MAX_TEXT_LENGTH:
            raise BadRequestError(f"Text must be {MAX_TEXT_LENGTH} characters or less")
        for field in TEXT_BOX_NUMERIC_FIELDS:
            if field in box and not _is_number(box[field]):
                raise BadRequestError(f"{field} must be a number")

    serialized = json.dumps(state, separators=(",", ":"))
    if len(serialized) > MAX_EDITOR_STATE_SIZE:
        raise BadRequestError("Editor state too large")
    return serialized


def parse_editor_state(raw: str) -> dict[str, Any]:
    """Decode stored editor state; corrupt rows read back as an empty layout."""
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {"textBoxes": []}
    if isinstance(parsed, dict):
        return parsed
    return {"textBoxes": []}
