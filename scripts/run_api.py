#!/usr/bin/env python3
# Copyright 2026 DealFlow
# SPDX-License-Identifier: MIT
"""Run the DealFlow REST API. Serves /api/allocations, /api/capital-calls, /api/deals, /api/funds."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root))

from dotenv import load_dotenv

load_dotenv(repo_root / ".env")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run DealFlow API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=8000, help="Port")
    parser.add_argument("--db", default=None, help="SQLite path (overrides DEALFLOW_DB_PATH)")
    args = parser.parse_args()

    if args.db:
        os.environ["DEALFLOW_DB_PATH"] = args.db

    import uvicorn

    from dealflow.core.config import get_db_path, load_config
    from dealflow.db.database import init_db

    config = load_config(reload=True)
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db(get_db_path())

    from dealflow.api.server import app

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
