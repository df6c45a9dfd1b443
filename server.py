#!/usr/bin/env python3
"""Server entrypoint for the back-office API."""

import logging
import os

import uvicorn

logger = logging.getLogger(__name__)


def _as_bool(value: str, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def main():
    """Run uvicorn with settings from HOST, PORT, WORKERS, RELOAD and LOG_LEVEL."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    workers = int(os.environ.get("WORKERS", "1"))
    reload = _as_bool(os.environ.get("RELOAD"), default=False)
    # Token cache and leads scheduler live in process memory.
    if workers > 1:
        logger.warning(f"WORKERS={workers}: each worker keeps its own token cache and scheduler")
    if reload:
        workers = 1
    uvicorn.run(
        "app:app",
        host=host,
        port=port,
        workers=workers,
        reload=reload,
        log_level=os.environ.get("LOG_LEVEL", "info"),
    )


if __name__ == "__main__":
    main()
