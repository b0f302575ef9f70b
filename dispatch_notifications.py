"""
Drains the notification outbox and sweeps overdue RFQs.

Run from cron (or after a restart) to deliver anything queued while the API
process was down:

    python dispatch_notifications.py
"""
from loguru import logger
from sqlmodel import Session

from app.core.logging import setup_logging
from app.db.core import engine
from app.services.notification import NotificationWorker
from app.services.rfq import RfqService


def main():
    setup_logging()

    with Session(engine) as session:
        expired = RfqService(session).expire_overdue()
        logger.info(f"Expiry sweep done: {expired} RFQs expired")

    worker = NotificationWorker()
    total = 0
    while True:
        summary = worker.dispatch_pending()
        total += summary.processed
        if summary.processed < worker.batch_size:
            break

    logger.info(f"Outbox drained: {total} notifications processed")


if __name__ == "__main__":
    main()
