#!/usr/bin/env python3
"""
Main entrypoint: bootstrap the database and serve the web API.
Run with: python run.py
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure app loggers (lakron.api, task_service, reconciler) emit to the same stream as uvicorn
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)

# Project root
ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(ROOT))

from config import load as load_config
from database import init_database, get_db_path


def main() -> None:
    db_path = init_database(get_db_path())
    logging.getLogger("lakron").info("Database ready at %s", db_path)

    # Run web app (blocking)
    import uvicorn
    config = load_config()
    uvicorn.run(
        "web_app:create_app",
        factory=True,
        host=config.web_ui_host,
        port=config.web_ui_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
