#!/usr/bin/env python3
"""
verify_cli.py - Re-check the on-chain verification of submissions.

Runs independently of the API process and talks to it over HTTP. Each id
is polled until it is verified or the attempts run out; the wait between
attempts doubles each time. The service itself never retries, so this is
where backoff lives.

Usage:
    ewaste-verify abc123 def456
    ewaste-verify --attempts 6 --initial-delay 2 --output results.json abc123
"""
import argparse
import json
import os
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import requests

DEFAULT_API = os.getenv("EWASTE_API_URL", "http://localhost:8000")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def build_session(role: str = "user") -> requests.Session:
    s = requests.Session()
    s.headers["X-Role"] = role
    return s


def fetch_verification(session: requests.Session, base_url: str,
                       submission_id: str) -> Dict[str, Any]:
    resp = session.get(f"{base_url}/submissions/{submission_id}/verification", timeout=15)
    resp.raise_for_status()
    return resp.json()


def poll_submission(session: requests.Session, base_url: str, submission_id: str,
                    attempts: int = 5, initial_delay: float = 1.0, max_delay: float = 30.0,
                    sleep: Callable[[float], None] = time.sleep) -> Dict[str, Any]:
    """Poll until verified or attempts run out. Transport errors count as attempts."""
    delay = initial_delay
    last: Dict[str, Any] = {}
    for attempt in range(1, attempts + 1):
        try:
            last = fetch_verification(session, base_url, submission_id)
        except requests.RequestException as exc:
            last = {"submission_id": submission_id, "unavailable": "ApiUnreachable",
                    "message": str(exc)}
        last["attempts"] = attempt
        if not last.get("unavailable"):
            return last
        if attempt < attempts:
            sleep(delay)
            delay = min(delay * 2, max_delay)
    return last


def summarise(result: Dict[str, Any]) -> str:
    sid = result.get("submission_id", "?")
    if result.get("unavailable"):
        return f"  PENDING   {sid}: {result['unavailable']} after {result.get('attempts')} attempt(s)"
    records = result.get("records", [])
    latest = records[-1] if records else {}
    return (f"  VERIFIED  {sid}: {len(records)} record(s), latest status "
            f"{latest.get('status')} tx={str(latest.get('transaction_hash', ''))[:18]}...")


def main(argv: List[str] = None) -> int:
    parser = argparse.ArgumentParser(description="Re-check on-chain verification of submissions")
    parser.add_argument("submission_ids", nargs="+")
    parser.add_argument("--api", default=DEFAULT_API)
    parser.add_argument("--role", default="user")
    parser.add_argument("--attempts", type=int, default=5)
    parser.add_argument("--initial-delay", type=float, default=1.0)
    parser.add_argument("--max-delay", type=float, default=30.0)
    parser.add_argument("--output", default="", help="Write JSON report to this file")
    args = parser.parse_args(argv)

    session = build_session(args.role)
    results = []
    for sid in args.submission_ids:
        result = poll_submission(session, args.api.rstrip("/"), sid, attempts=args.attempts,
                                 initial_delay=args.initial_delay, max_delay=args.max_delay)
        print(summarise(result))
        results.append(result)

    verified = sum(1 for r in results if not r.get("unavailable"))
    print(f"\n{verified}/{len(results)} verified")

    if args.output:
        report = {"generated_at": utc_now(), "api": args.api, "results": results}
        with open(args.output, "w") as f:
            json.dump(report, f, indent=2)
        print(f"Saved to: {args.output}")

    return 0 if verified == len(results) else 1


if __name__ == "__main__":
    sys.exit(main())
