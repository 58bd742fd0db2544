"""
Avatar Chat — chat backend for a talking avatar.

Entry point. Run with: python main.py [--host H] [--port P] [--reload | --no-reload]
Flags override API_HOST / API_PORT from the environment; reload defaults on in development.
"""

import argparse

import uvicorn

from app.core.config import get_settings
from app.factory import create_app

app = create_app()


def build_parser(settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Avatar chat API server")
    parser.add_argument("--host", default=settings.api_host, help="Bind address (default: API_HOST)")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Port (default: API_PORT)")
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=settings.env == "development",
        help="Restart on code changes (default: on when ENV=development)",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level.lower(),
        choices=["critical", "error", "warning", "info", "debug"],
    )
    return parser


def main(argv=None) -> None:
    args = build_parser(get_settings()).parse_args(argv)
    uvicorn.run("main:app", host=args.host, port=args.port, reload=args.reload, log_level=args.log_level)


if __name__ == "__main__":
    main()
