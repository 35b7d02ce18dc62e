from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _load_json(path: str):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Gateway Route Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_route = sub.add_parser("route", help="Register a route (no-op if it exists)")
    s_route.add_argument("--namespace", default="default")
    s_route.add_argument("--name", required=True)
    s_route.add_argument("--label", action="append", default=[], help="key=value, repeatable")

    s_get = sub.add_parser("get", help="Show a route and its status")
    s_get.add_argument("--namespace", default="default")
    s_get.add_argument("--name", required=True)

    s_rec = sub.add_parser("reconcile", help="Run a reconciliation pass for a route")
    s_rec.add_argument("--namespace", default="default")
    s_rec.add_argument("--name", required=True)
    s_rec.add_argument("--traffic-file", required=True, help="JSON file with {'targets': {...}, 'visibility': {...}}")
    s_rec.add_argument("--gateway-class", default="")

    s_cfg = sub.add_parser("config", help="Push a configuration source, or show the current snapshot")
    s_cfg.add_argument("--source", choices=["defaults", "features"])
    s_cfg.add_argument("--file", help="JSON file with the source's values")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "route":
        labels = dict(kv.split("=", 1) for kv in args.label)
        payload = {"namespace": args.namespace, "name": args.name, "labels": labels}
        r = requests.put(f"{base}/routes", json=payload, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "get":
        r = requests.get(f"{base}/routes/{args.namespace}/{args.name}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        payload = {"traffic": _load_json(args.traffic_file), "gateway_class": args.gateway_class}
        r = requests.post(f"{base}/routes/{args.namespace}/{args.name}/reconcile", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "config":
        if not args.source:
            _print(requests.get(f"{base}/config", timeout=10).json())
            return 0
        data = json.dumps(_load_json(args.file)) if args.file else ""
        r = requests.put(
            f"{base}/config/{args.source}", data=data, headers={"Content-Type": "application/json"}, timeout=10
        )
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
