import argparse
import asyncio
import logging

from agenda.core import config
from agenda.database import SessionLocal
from agenda.models import appointment, notification  # noqa: F401
from agenda.notifications.delivery_queue import DeliveryQueue
from agenda.notifications.dispatcher import NotificationDispatcher
from agenda.notifications.gateway import build_gateway
from agenda.notifications.reminders import REMINDER_KINDS, run_reminder_scan

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


async def run(kind: str | None, retry: bool) -> int:
    queue = DeliveryQueue(
        build_gateway(),
        pacing=config.pacing_bounds(),
        send_timeout=config.NOTIFICATION_SEND_TIMEOUT_SECONDS,
        maxsize=config.NOTIFICATION_QUEUE_MAXSIZE,
    )
    dispatcher = NotificationDispatcher(
        SessionLocal,
        queue,
        enabled=config.NOTIFICATIONS_ENABLED,
        max_attempts=config.NOTIFICATION_MAX_ATTEMPTS,
    )

    await queue.start()
    try:
        summaries = await run_reminder_scan(SessionLocal, dispatcher, kind)
        for summary in summaries:
            logger.info(
                "%s: processed=%s sent=%s failed=%s skipped=%s",
                summary.kind,
                summary.processed,
                summary.sent,
                summary.failed,
                summary.skipped,
            )

        if retry:
            logger.info("Retry: %s", await dispatcher.retry_failed())
    finally:
        await queue.stop()
        await queue.gateway.aclose()

    return 1 if any(summary.failed for summary in summaries) else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Send due appointment reminders and exit")
    parser.add_argument("--kind", choices=REMINDER_KINDS, help="Only scan for this reminder kind")
    parser.add_argument("--retry", action="store_true", help="Also resend failed notifications")
    args = parser.parse_args()

    _setup_logging()
    config.validate_runtime_config()

    return asyncio.run(run(args.kind, args.retry))


if __name__ == "__main__":
    raise SystemExit(main())
