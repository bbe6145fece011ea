#!/usr/bin/env python3
"""
CLI for the promotion engine.

Usage:
    python cli.py job daily-cycle             # Run the midnight cycle once
    python cli.py job expiring-low-sales --at 2025-03-10T00:00
    python cli.py analytics                   # Print usage analytics
    python cli.py dynamic                     # Print the dynamic promotions view
    python cli.py schedule                    # Run the cron triggers in the foreground
    python cli.py serve --reload              # Start the API server
    python cli.py test -v                     # Run the test suite
"""

import argparse
import json
import subprocess
import sys
import time
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from promotion_engine.exceptions import PromotionEngineError
from promotion_engine.scheduler import PromotionScheduler, build_default_triggers
from promotion_engine.service import PromotionService
from shared.clock import FixedClock
from shared.data_store import DataStore
from shared.logging_config import setup_logging
from shared.settings import get_settings

def build_service(data_dir: Optional[str], at: Optional[str]) -> PromotionService:
    """Service over the given fixtures, optionally pinned to a point in time."""
    data_store = DataStore(Path(data_dir)) if data_dir else DataStore()
    clock = FixedClock(datetime.fromisoformat(at)) if at else None
    return PromotionService(data_store=data_store, clock=clock)


def to_jsonable(value: Any) -> Any:
    """Convert job results and projections for printing."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def print_json(value: Any) -> None:
    print(json.dumps(to_jsonable(value), indent=2, default=str))


def run_schedule(service: PromotionService) -> None:
    """Run the cron triggers until interrupted."""
    settings = get_settings()
    scheduler = PromotionScheduler(settings=settings)
    for trigger in build_default_triggers(service, settings):
        scheduler.add_trigger(trigger)
    scheduler.start()

    print(f"Scheduler running with triggers: {', '.join(scheduler.trigger_names())}")
    print("Press Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        scheduler.shutdown()


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = [sys.executable, "-m", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Promotion Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s job daily-cycle
  %(prog)s job black-friday-start --data-dir ./data
  %(prog)s analytics
  %(prog)s schedule
  %(prog)s serve --reload
        """,
    )
    parser.add_argument("--data-dir", default=None, help="Directory with the JSON fixtures")
    parser.add_argument("--log-level", default=None, help="Override PROMO_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Job command
    job_parser = subparsers.add_parser("job", help="Run a scheduled job once")
    job_parser.add_argument("name", choices=sorted(PromotionService.JOBS), help="Which job to run")
    job_parser.add_argument("--at", default=None, help="Pretend it is this ISO datetime")

    # Read-only commands
    subparsers.add_parser("analytics", help="Print promotion usage analytics")
    dynamic_parser = subparsers.add_parser("dynamic", help="Print the dynamic promotions view")
    dynamic_parser.add_argument("--at", default=None, help="Pretend it is this ISO datetime")

    # Schedule command
    subparsers.add_parser("schedule", help="Run the cron triggers in the foreground")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    setup_logging(args.log_level or get_settings().log_level)

    try:
        if args.command == "job":
            print_json(build_service(args.data_dir, args.at).run_job(args.name))
        elif args.command == "analytics":
            print_json(build_service(args.data_dir, None).get_promotion_analytics())
        elif args.command == "dynamic":
            print_json(build_service(args.data_dir, args.at).get_dynamic_promotions_view())
        elif args.command == "schedule":
            run_schedule(build_service(args.data_dir, None))
        elif args.command == "test":
            run_tests(args.pytest_args)
        elif args.command == "serve":
            run_server(args.host, args.port, args.reload)
        else:
            parser.print_help()
    except PromotionEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
