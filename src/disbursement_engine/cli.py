"""Disbursement engine command line interface.

Provides operational tools for:
- Running the HTTP API
- Running a job worker
- Manual reconciliation
- Wallet balance queries
- Schema creation for development databases

Usage:
    python -m disbursement_engine.cli serve --port 8000
    python -m disbursement_engine.cli worker
    python -m disbursement_engine.cli reconcile --batch-id 42
    python -m disbursement_engine.cli balance
    python -m disbursement_engine.cli init-db
    python -m disbursement_engine.cli check-config
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Callable

from disbursement_engine.bootstrap import ServiceContainer
from disbursement_engine.config import Settings, get_settings, validate_production_settings
from disbursement_engine.errors import DisbursementError
from disbursement_engine.logging_config import configure_logging

logger = logging.getLogger(__name__)


class DisbursementCli:
    """Disbursement engine command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self.parser = self._build_parser()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m disbursement_engine.cli",
            description="Disbursement engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # serve command
        serve = subparsers.add_parser("serve", help="Run the HTTP API")
        serve.add_argument("--host", help="Bind address (default: HOST setting)")
        serve.add_argument("--port", type=int, help="Bind port (default: PORT setting)")

        # worker command
        worker = subparsers.add_parser("worker", help="Run a job worker")
        worker.add_argument("--worker-id", help="Worker identity (default: host:pid)")
        worker.add_argument(
            "--once",
            action="store_true",
            help="Run at most one job and exit",
        )

        # reconcile command
        reconcile = subparsers.add_parser(
            "reconcile",
            help="Reconcile a batch against the gateway",
        )
        reconcile.add_argument("--batch-id", type=int, required=True, help="Batch to reconcile")
        reconcile.add_argument("--json", action="store_true", help="Output as JSON")

        # balance command
        balance = subparsers.add_parser("balance", help="Show the source wallet balance")
        balance.add_argument("--json", action="store_true", help="Output as JSON")

        # init-db command
        subparsers.add_parser("init-db", help="Create tables (development only)")

        # check-config command
        subparsers.add_parser("check-config", help="Validate settings for live use")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(self.settings.log_level, self.settings.log_format)

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "serve": self._cmd_serve,
            "worker": self._cmd_worker,
            "reconcile": self._cmd_reconcile,
            "balance": self._cmd_balance,
            "init-db": self._cmd_init_db,
            "check-config": self._cmd_check_config,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except DisbursementError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run the API under uvicorn."""
        import uvicorn

        uvicorn.run(
            "disbursement_engine.api.app:create_app",
            factory=True,
            host=args.host or self.settings.host,
            port=args.port or self.settings.port,
            reload=self.settings.debug,
            log_config=None,
        )
        return 0

    def _cmd_worker(self, args: argparse.Namespace) -> int:
        """Run a job worker until SIGINT/SIGTERM."""
        return asyncio.run(self._run_worker(args.worker_id, once=args.once))

    async def _run_worker(self, worker_id: str | None, *, once: bool) -> int:
        container = ServiceContainer.build(self.settings)
        runner = container.job_runner(worker_id)
        try:
            if once:
                await container.queue.release_stale()
                result = await runner.run_once()
                if result is None:
                    print("No due jobs")
                else:
                    print(f"Job {result.job_id} (batch {result.batch_id}): {result.status.value}")
                return 0

            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    pass
            await runner.run_forever(stop)
            return 0
        finally:
            await container.aclose()

    def _cmd_reconcile(self, args: argparse.Namespace) -> int:
        """Reconcile one batch."""
        return asyncio.run(self._run_reconcile(args.batch_id, as_json=args.json))

    async def _run_reconcile(self, batch_id: int, *, as_json: bool) -> int:
        container = ServiceContainer.build(self.settings)
        try:
            summary = await container.service.reconcile(batch_id)
        finally:
            await container.aclose()

        if as_json:
            print(json.dumps({**summary.as_dict(), "error_details": summary.error_details}))
        else:
            print(f"Reconciliation for batch {batch_id}")
            print("=" * 40)
            print(f"  Examined: {summary.examined}")
            print(f"  Updated:  {summary.updated}")
            print(f"  Errors:   {summary.errors}")
            for detail in summary.error_details:
                print(f"    - item {detail['item_id']}: {detail['message']}")
        return 0 if summary.success else 2

    def _cmd_balance(self, args: argparse.Namespace) -> int:
        """Query the source wallet balance."""
        return asyncio.run(self._run_balance(as_json=args.json))

    async def _run_balance(self, *, as_json: bool) -> int:
        container = ServiceContainer.build(self.settings)
        try:
            balance = await container.service.get_balance()
        finally:
            await container.aclose()

        if as_json:
            print(json.dumps({
                "account_number": balance.account_number,
                "available_balance": str(balance.available_balance),
                "ledger_balance": str(balance.ledger_balance),
            }))
        else:
            print(f"Balance for account: {balance.account_number}")
            print(f"\n  Available: {balance.available_balance:>15,.2f}")
            print(f"  Ledger:    {balance.ledger_balance:>15,.2f}")
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        return asyncio.run(self._run_init_db())

    async def _run_init_db(self) -> int:
        container = ServiceContainer.build(self.settings)
        try:
            await container.database.create_schema()
        finally:
            await container.aclose()
        print("Schema created")
        return 0

    def _cmd_check_config(self, args: argparse.Namespace) -> int:
        """Print configuration issues."""
        issues = validate_production_settings(self.settings)
        if not issues:
            print("Configuration OK")
            return 0
        for issue in issues:
            print(f"  - {issue}")
        return 1 if any(i.startswith("CRITICAL") for i in issues) else 0


def main() -> int:
    """CLI entry point."""
    cli = DisbursementCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
