"""
Possumbly — A Self-Hosted, Invite-Only Meme Workshop
======================================================
Users sign in through Google, GitHub or Discord, unlock the workshop with a
single-use invite code, upload templates, save their memes and publish them
to a voted, ranked gallery.

Package layout::

    possumbly/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Validation patterns, limits, ranking constants
    ├── errors.py          # Domain exceptions raised by services
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── ranking.py     # Hot score, gallery sort + pagination
    │   └── validation.py  # Identifier, name and editor-state checks
    ├── services/
    │   ├── identity_service.py  # OAuth identity → local user
    │   ├── invite_service.py    # Invite ledger
    │   ├── vote_service.py      # Vote transitions + live counts
    │   ├── gallery_service.py   # Public gallery listing
    │   ├── template_service.py  # Template store
    │   ├── meme_service.py      # Meme store
    │   ├── admin_service.py     # Users, roles, stats, bootstrap
    │   ├── audit_service.py     # Buffered append-only audit log
    │   ├── retention_service.py # Audit retention sweep
    │   └── upload_service.py    # Image inspection + file storage
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Sessions, guards, DI
        ├── auth.py        # OAuth → session cookie
        ├── providers.py   # Google / GitHub / Discord identity providers
        ├── rate_limit.py  # Per-IP sliding-window limits
        └── routes/        # REST endpoints
"""

__version__ = "0.1.0"
