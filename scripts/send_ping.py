from __future__ import annotations

import argparse
import json
import os
import sys

import httpx

from pulsewatch.sdk.client import PulsewatchApiError, PulsewatchClient


def _build_parser() -> argparse.ArgumentParser:
    # Mirror what a heartbeat sender does so operators can test a tenant end to end.
    parser = argparse.ArgumentParser(description="Send one heartbeat ping")
    parser.add_argument("--id", required=True, help="Client id to report")
    parser.add_argument("--tenant", default="public", help="Tenant identifier")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Pulsewatch base URL")
    parser.add_argument(
        "--secret",
        default=os.environ.get("HEARTBEAT_SIGNING_SECRET"),
        help="Shared signing secret (defaults to $HEARTBEAT_SIGNING_SECRET); omit to send unsigned",
    )
    parser.add_argument("--meta", default=None, help="Optional JSON metadata")
    parser.add_argument("--timeout", type=float, default=5.0, help="Request timeout in seconds")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    meta = None
    if args.meta is not None:
        try:
            meta = json.loads(args.meta)
        except ValueError as exc:
            print(f"--meta is not valid JSON: {exc}", file=sys.stderr)
            return 2
    with PulsewatchClient(
        args.base_url,
        tenant_id=args.tenant,
        signing_secret=args.secret,
        timeout=args.timeout,
    ) as client:
        try:
            data = client.ping(args.id, meta=meta)
        except PulsewatchApiError as exc:
            print(f"ping rejected: {exc}", file=sys.stderr)
            return 1
        except httpx.HTTPError as exc:
            print(f"send_ping failed: {exc}", file=sys.stderr)
            return 1
    print(json.dumps(data, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
