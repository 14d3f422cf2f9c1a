"""Launch the review API under uvicorn.

Settings come from the environment (``.env`` is loaded first); command-line
flags override them for one run.
"""

import argparse
import os
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from loguru import logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the private fund document review API")
    parser.add_argument("--host", default=os.getenv("API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=os.getenv("API_RELOAD", "false").lower() == "true",
        help="Restart on code changes (development only)"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)

    logger.info(
        "Starting review API",
        host=args.host,
        port=args.port,
        reload=args.reload,
        environment=os.getenv("ENVIRONMENT", "production")
    )

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower()
    )


if __name__ == "__main__":
    main()
