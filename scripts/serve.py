from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from ageme.api.app import create_app
from ageme.config import load_config
from ageme.log import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the AgeMe API.")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1).")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000).")
    parser.add_argument(
        "--dotenv",
        type=Path,
        default=None,
        help="Optional path to a .env file containing OPENAI_API_KEY and AGEME_* settings.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = load_config(args.dotenv)
    configure_logging(config.log_level)
    uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
