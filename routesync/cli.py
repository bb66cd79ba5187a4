from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

import requests

from .discovery import DiscoveryClient, DiscoveryError
from .resolver import resolve
from .settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="routesync: load-balancer route synchronizer")
    p.add_argument("--api", default="http://localhost:3000", help="Admin API base URL")
    p.add_argument("--user", default=settings.admin_user)
    p.add_argument("--password", default=settings.admin_password)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_serve = sub.add_parser("serve", help="Run the reconciler and admin API")
    s_serve.add_argument("--host", default="0.0.0.0")
    s_serve.add_argument("--port", type=int, default=3000)

    s_res = sub.add_parser("resolve", help="Fetch discovery once and print the service map")
    s_res.add_argument("--url", default=settings.discovery_url)

    sub.add_parser("declarations", help="Show active frontend declarations")
    sub.add_parser("config", help="Show the committed configuration")

    s_apply = sub.add_parser("apply", help="Replace declarations with a JSON file")
    s_apply.add_argument("file")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--level")

    args = p.parse_args(argv)

    if args.cmd == "serve":
        import uvicorn

        from .api import create_app

        uvicorn.run(create_app(), host=args.host, port=args.port)
        return 0

    if args.cmd == "resolve":
        if not args.url:
            print("No discovery URL; set ROUTESYNC_DISCOVERY_URL or pass --url.", file=sys.stderr)
            return 2
        client = DiscoveryClient(args.url, timeout_s=settings.discovery_timeout_s, auth=settings.discovery_auth)
        try:
            services = resolve(client.fetch_raw())
        except DiscoveryError as e:
            print(f"{type(e).__name__}: {e}", file=sys.stderr)
            return 1
        _print(
            {
                link: {port: {inst: asdict(ep) for inst, ep in insts.items()} for port, insts in ports.items()}
                for link, ports in services.items()
            }
        )
        return 0

    base = args.api.rstrip("/")
    auth = (args.user, args.password or "")

    if args.cmd == "declarations":
        r = requests.get(f"{base}/declarations", auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "config":
        r = requests.get(f"{base}/config", auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "apply":
        with open(args.file, encoding="utf-8") as fh:
            payload = json.load(fh)
        r = requests.post(f"{base}/", json=payload, auth=auth, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.level:
            params["level"] = args.level
        r = requests.get(f"{base}/events", params=params, auth=auth, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
