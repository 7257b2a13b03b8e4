"""
Email queue processor.

Only one process drains the queue at a time (PostgreSQL advisory lock).
Each run claims a batch of due rows with FOR UPDATE SKIP LOCKED, renders and
sends them, and records the outcome per row. A row that keeps failing backs
off 2^attempts seconds between tries and becomes `failed` once it reaches
`max_attempts`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from core import db, mailer, settings

from . import repository, templates

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


@dataclass(frozen=True)
class QueueRunStats:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    retried: int = 0
    skipped: bool = False
    reason: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if not self.skipped:
            data.pop("skipped")
            data.pop("reason")
        return data


def configured_batch_size() -> int:
    size = settings.env_int("EMAIL_QUEUE_BATCH_SIZE", DEFAULT_BATCH_SIZE)
    return size if size > 0 else DEFAULT_BATCH_SIZE


async def deliver(row: dict) -> mailer.SendResult:
    try:
        html, text = templates.render(str(row["template"]), row.get("template_data") or {})
    except (templates.TemplateError, OSError) as exc:
        return mailer.SendResult(success=False, error=f"render_failed: {exc}")
    return await mailer.send_email(
        to_email=str(row["to_email"]),
        subject=str(row["subject"]),
        html=html,
        text=text,
    )


async def _record_outcome(conn, row: dict, result: mailer.SendResult) -> str:
    async with conn.transaction():
        if result.success:
            await repository.mark_sent(conn, int(row["id"]))
            return "sent"
        return await repository.mark_attempt_failed(conn, int(row["id"]), error=result.error or "unknown error")


async def process_email_queue(*, batch_size: int | None = None) -> QueueRunStats:
    """
    Drain one batch. Rows are claimed in a short transaction, each email is
    sent with no transaction open, and each outcome commits on its own.
    """
    size = batch_size or configured_batch_size()
    sent = failed = retried = 0
    async with db.pool().acquire() as conn:
        if not await repository.try_lock(conn):
            logger.info("email_queue_skipped reason=lock_held")
            return QueueRunStats(skipped=True, reason="lock_held")

        try:
            async with conn.transaction():
                rows = await repository.claim_pending(conn, batch_size=size)

            for row in rows:
                result = await deliver(row)
                outcome = await _record_outcome(conn, row, result)
                if outcome == "sent":
                    sent += 1
                elif outcome == "failed":
                    failed += 1
                    logger.error(
                        "email_failed id=%s attempts=%s error=%s",
                        row["id"],
                        int(row["attempts"]) + 1,
                        result.error,
                    )
                else:
                    retried += 1
        finally:
            await repository.unlock(conn)

    stats = QueueRunStats(processed=len(rows), sent=sent, failed=failed, retried=retried)
    if stats.processed:
        logger.info(
            "email_queue_processed processed=%s sent=%s failed=%s retried=%s",
            stats.processed,
            stats.sent,
            stats.failed,
            stats.retried,
        )
    return stats


async def queue_stats() -> dict[str, int]:
    return await repository.stats_last_24h()
