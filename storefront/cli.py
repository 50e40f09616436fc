from __future__ import annotations

import argparse
import json

import uvicorn

from storefront.core.config import get_settings
from storefront.core.logging import configure_logging
from storefront.core.security import Actor
from storefront.demo.seed import seed_demo_catalog
from storefront.domain.errors import StorefrontError
from storefront.domain.orders import OrderEventLog, add_note, transition_with_retry
from storefront.persistence.pg import init_db, session_scope


def _admin_actor(actor_id: str | None) -> Actor:
    return Actor(type="admin", id=actor_id or get_settings().admin_actor_id)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Storefront order administration CLI")
    parser.add_argument("--actor-id", default=None, help="Admin actor id recorded on events")
    top = parser.add_subparsers(dest="command", required=True)

    top.add_parser("init-db", help="Create database tables")
    top.add_parser("seed-demo", help="Insert the demo catalog and discount codes")

    serve = top.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    order = top.add_parser("order", help="Order operations")
    order_sub = order.add_subparsers(dest="order_command", required=True)

    transition = order_sub.add_parser("transition", help="Request an order status change")
    transition.add_argument("order_id")
    transition.add_argument("status")

    timeline = order_sub.add_parser("timeline", help="Print an order's event timeline")
    timeline.add_argument("order_id")

    note = order_sub.add_parser("note", help="Append an admin note to an order")
    note.add_argument("order_id")
    note.add_argument("message")

    return parser


def _print(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _run_order_command(args: argparse.Namespace) -> int:
    actor = _admin_actor(args.actor_id)
    if args.order_command == "transition":
        result = transition_with_retry(args.order_id, args.status, actor)
        _print(result.to_dict())
        return 0

    with session_scope() as session:
        if args.order_command == "timeline":
            events = OrderEventLog(session).timeline(args.order_id)
            _print({"order_id": args.order_id, "events": [e.to_dict() for e in events]})
        else:
            event = add_note(session, args.order_id, args.message, actor)
            _print(event.to_dict())
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        settings = get_settings()
        uvicorn.run("storefront.main:app", host=args.host or settings.api_host, port=args.port or settings.api_port)
        return 0

    init_db()
    if args.command == "init-db":
        return 0

    if args.command == "seed-demo":
        with session_scope() as session:
            _print(seed_demo_catalog(session))
        return 0

    if args.command == "order":
        try:
            return _run_order_command(args)
        except StorefrontError as exc:
            _print(exc.to_payload())
            return 1

    parser.error("unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
