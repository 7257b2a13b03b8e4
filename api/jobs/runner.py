"""
Run one background job once and exit.

    python -m jobs.runner email-queue --batch-size 50
    python -m jobs.runner reminders --dry-run
    python -m jobs.runner retention
    python -m jobs.runner alerts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict

from core import db, log
from notifications import processor
from reminders import service as reminders

from . import alerts, retention

logger = logging.getLogger(__name__)

JOBS = ("email-queue", "reminders", "retention", "alerts")


async def run_job(name: str, *, dry_run: bool = False, batch_size: int | None = None) -> dict:
    await db.init_pool()
    try:
        if name == "email-queue":
            return (await processor.process_email_queue(batch_size=batch_size)).to_dict()
        if name == "reminders":
            return await reminders.run_reminder_job("manual", dry_run=dry_run) or {"error": "reminder job failed"}
        if name == "retention":
            return (await retention.run_retention_cleanup()).to_dict()
        if name == "alerts":
            found = await alerts.check_alert_thresholds()
            return {"alerts": [asdict(alert) for alert in found]}
        raise ValueError(f"Unknown job: {name}")
    finally:
        await db.close_pool()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a background job once.")
    parser.add_argument("job", choices=JOBS)
    parser.add_argument("--dry-run", action="store_true", help="reminders only: report without queueing")
    parser.add_argument("--batch-size", type=int, default=None, help="email-queue only: rows to claim")
    args = parser.parse_args(argv)

    log.configure()
    result = asyncio.run(run_job(args.job, dry_run=args.dry_run, batch_size=args.batch_size))
    print(json.dumps(result, indent=2, default=str))
    return 1 if "error" in result else 0


if __name__ == "__main__":
    raise SystemExit(main())
