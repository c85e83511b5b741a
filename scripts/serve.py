from __future__ import annotations

import argparse

import uvicorn


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Pulsewatch API")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    return parser


def main() -> None:
    # Build the app through its factory so settings are read at startup, not import time.
    args = _build_parser().parse_args()
    uvicorn.run("pulsewatch.apps.api.main:create_app", factory=True, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
