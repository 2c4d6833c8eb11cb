#!/usr/bin/env python3
"""
Command-line interface for the live notification service.

Usage:
    uv run python cli.py [command] [options]

Commands:
    demo        Run demo scenarios in-process
    publish     Publish one order event to Kafka
    test        Run the test suite
    serve       Start the API server

Examples:
    uv run python cli.py demo lifecycle
    uv run python cli.py demo all
    uv run python cli.py publish ORDER_CREATED --order-id 42 --user-id 7 --amount 18.50
    uv run python cli.py serve
"""

import argparse
import subprocess
import sys

from shared.config import ConfigError, load_settings
from shared.models import EventType


def run_demo(scenario: str) -> None:
    """Run a demo scenario."""
    from live_notifications.demo import (
        run_all,
        run_cancellation_demo,
        run_fanout_demo,
        run_lifecycle_demo,
    )

    scenarios = {
        "lifecycle": run_lifecycle_demo,
        "cancel": run_cancellation_demo,
        "fanout": run_fanout_demo,
        "all": run_all,
    }
    if scenario not in scenarios:
        print(f"Unknown scenario: {scenario}")
        sys.exit(1)
    scenarios[scenario]()


def run_publish(args: argparse.Namespace) -> None:
    """Publish one event to the configured Kafka topic."""
    from kafka import KafkaProducer

    from live_notifications.events import encode_order_event, message_key, order_event

    settings = load_settings()
    if not settings.bus.brokers:
        print("No brokers configured; set NOTIFY_BUS_BROKERS (e.g. localhost:9092)")
        sys.exit(1)

    event = order_event(
        args.event_type,
        order_id=args.order_id,
        user_id=args.user_id,
        restaurant_id=args.restaurant_id,
        total_amount=args.amount,
        delivery_address=args.address,
    )
    producer = KafkaProducer(bootstrap_servers=settings.bus.brokers)
    try:
        producer.send(settings.bus.topic, value=encode_order_event(event), key=message_key(event))
        producer.flush()
    finally:
        producer.close()
    print(f"Published {event} to {settings.bus.topic}")


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    cmd = ["uv", "run", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"Live channel at ws://{host}:{port}/ws")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Live Order Notification Service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo lifecycle
  %(prog)s demo all
  %(prog)s publish ORDER_OUT_FOR_DELIVERY --order-id 42 --user-id 7
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo scenarios")
    demo_parser.add_argument(
        "scenario",
        choices=["lifecycle", "cancel", "fanout", "all"],
        help="Which scenario to run",
    )

    # Publish command
    publish_parser = subparsers.add_parser("publish", help="Publish an order event to Kafka")
    publish_parser.add_argument(
        "event_type",
        choices=[t.value for t in EventType],
        help="Lifecycle tag of the event",
    )
    publish_parser.add_argument("--order-id", type=int, required=True)
    publish_parser.add_argument("--user-id", type=int, required=True)
    publish_parser.add_argument("--restaurant-id", type=int, default=1)
    publish_parser.add_argument("--amount", default="0.00", help="Total amount, e.g. 18.50")
    publish_parser.add_argument("--address", default="", help="Delivery address")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command; defaults come from NOTIFY_TRANSPORT_LISTEN
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "publish":
        run_publish(args)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        try:
            transport = load_settings().transport
        except ConfigError as e:
            print(f"Invalid configuration: {e}")
            sys.exit(2)
        run_server(args.host or transport.host, args.port or transport.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
