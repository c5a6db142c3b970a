from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Config hot-reload CLI")
    p.add_argument("--api", default="http://localhost:8080", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show aggregate system status")
    sub.add_parser("paths", help="Show watched paths")
    sub.add_parser("deps", help="Show the service dependency graph")

    s_ev = sub.add_parser("events", help="Show log events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_ch = sub.add_parser("changes", help="Show recent config changes and their restart results")
    s_ch.add_argument("--limit", type=int, default=10)

    s_rs = sub.add_parser("restart", help="Trigger a restart of one service")
    s_rs.add_argument("service")
    s_rs.add_argument("--force", action="store_true", help="Full restart of every service in dependency order")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "status":
        _print(requests.get(f"{base}/api/status", timeout=10).json())
        return 0

    if args.cmd == "paths":
        _print(requests.get(f"{base}/api/watched-paths", timeout=10).json())
        return 0

    if args.cmd == "deps":
        _print(requests.get(f"{base}/api/dependencies", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/api/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "changes":
        _print(requests.get(f"{base}/api/changes", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "restart":
        # A full restart waits on every container's health poll; allow for it.
        r = requests.post(f"{base}/api/restart/{args.service}", json={"force": args.force}, timeout=600)
        _print(r.json())
        return 0 if r.ok and r.json().get("success") else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
