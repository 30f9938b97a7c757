"""
possumbly.api.routes.uploads — Authenticated image serving
===========================================================

Uploaded templates and rendered memes are only served to signed-in users,
by name, from the two known upload folders.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from possumbly.api.deps import AuthContext, require_user
from possumbly.services import upload_service

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.get("/{kind}/{filename}")
def serve_upload(
    kind: str,
    filename: str,
    ctx: AuthContext = Depends(require_user),
):
    path = upload_service.stored_path(kind, filename)
    if not path.is_file():
        raise HTTPException(404, "File not found")
    return FileResponse(
        path,
        headers={
            "X-Content-Type-Options": "nosniff",
            "Content-Disposition": "inline",
        },
    )
