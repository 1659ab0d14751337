#!/usr/bin/env python3
"""
Start the Flask API server.

Usage:
    python serve.py [--port PORT] [--db PATH]

The database defaults to $LIFECYCLE_DB_PATH, or lifecycle.db in the project root.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import api.server
from api.server import app


def main() -> None:
    parser = argparse.ArgumentParser(description="Start the session-tracking and account lifecycle API")
    parser.add_argument(
        "--port",
        type=int,
        default=5001,
        help="Port to run the server on",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (overrides LIFECYCLE_DB_PATH)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.db is not None:
        api.server._DB_PATH = args.db

    print(f"Database: {api.server._DB_PATH}")
    print(f"Starting server on http://127.0.0.1:{args.port}")
    app.run(debug=True, port=args.port)


if __name__ == "__main__":
    main()
