from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Overlay Network Controller CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default=os.getenv("ONC_API_USER", "admin"))
    p.add_argument("--password", default=os.getenv("ONC_API_PASSWORD", "admin"))
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show adapter state")

    s_ev = sub.add_parser("events", help="Show journal events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--level", choices=["DEBUG", "INFO", "WARN", "ERROR"])

    s_ni = sub.add_parser("node-info", help="Push node info (triggers router convergence)")
    s_ni.add_argument("--peer", action="append", default=[], help="Peer router address (repeatable)")
    s_ni.add_argument("--trusted-subnet", action="append", help="Trusted subnet CIDR (repeatable)")
    s_ni.add_argument("--node-number", type=int)

    sub.add_parser("ipam-ready", help="Signal that the address allocator is up")

    for name, help_text in (("attach", "Attach a container at a CIDR"), ("migrate", "Move a container to a CIDR")):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("container_id")
        s.add_argument("cidr")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd == "status":
        r = requests.get(f"{base}/status", auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.level:
            params["level"] = args.level
        r = requests.get(f"{base}/events", params=params, auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "node-info":
        payload = {
            "peer_ips": args.peer,
            "trusted_subnets": args.trusted_subnet,
            "node_number": args.node_number,
        }
        r = requests.post(f"{base}/node-info", json=payload, auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "ipam-ready":
        r = requests.post(f"{base}/ipam/ready", auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd in {"attach", "migrate"}:
        # weave commands run synchronously and may take a while
        r = requests.post(
            f"{base}/containers/{args.container_id}/{args.cmd}",
            json={"cidr": args.cidr},
            auth=auth,
            timeout=120,
        )
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
