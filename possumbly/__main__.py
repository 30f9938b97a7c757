"""
possumbly.__main__ — Entry point for ``python -m possumbly``
=============================================================

Wiring:
1. Load .env (secrets, ``DATABASE_URL``, OAuth credentials).
2. Configure logging.
3. Serve :data:`possumbly.api.main.app` with uvicorn; the app lifespan
   creates the schema, starts audit flushing and the retention sweep.

Run with::

    uv run python -m possumbly
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("possumbly")


def main() -> None:
    """Run the Possumbly API server."""
    load_dotenv()

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    logger.info("Starting Possumbly on %s:%d", host, port)

    uvicorn.run(
        "possumbly.api.main:app",
        host=host,
        port=port,
        proxy_headers=True,
        log_config=None,
    )


if __name__ == "__main__":
    main()
