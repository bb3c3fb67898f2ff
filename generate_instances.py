"""Run one instance generation pass and exit.

    python generate_instances.py [--days-ahead 14] [--all-days] [--date 2025-01-06]

Meant for cron or manual backfills alongside the daily loop in the service.
"""
from datetime import date
import argparse
import asyncio
import logging
import firebase_admin
from firebase_admin import credentials, firestore_async
import socketio
from config import settings
from notifier import RealtimeNotifier
from store import FirestoreCollection
from services.instance_generator import run_generation

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("generate_instances")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Generate ride instances for active recurring requests")
    parser.add_argument("--days-ahead", type=int, default=settings.INSTANCE_WINDOW_DAYS,
                        help="Size of the generation window in days")
    parser.add_argument("--all-days", action="store_true",
                        help="Include weekends instead of school days only")
    parser.add_argument("--date", type=date.fromisoformat, default=None,
                        help="Treat this ISO date as today")
    return parser.parse_args(argv)


async def main(args) -> int:
    cred = credentials.Certificate(settings.CREDENTIALS_PATH)
    firebase_app = firebase_admin.initialize_app(cred, {'databaseURL': settings.DATABASE_URL})
    db = firestore_async.client(app=firebase_app, database_id=settings.FIRESTORE_DATABASE_ID)
    try:
        report = await run_generation(
            FirestoreCollection(db, "ride_requests", settings.STORE_TIMEOUT_SECONDS),
            FirestoreCollection(db, "ride_instances", settings.STORE_TIMEOUT_SECONDS),
            # No sockets are connected to a one-shot run, so missed-ride events are dropped
            RealtimeNotifier(socketio.AsyncServer(async_mode="asgi")),
            today=args.date,
            days_ahead=args.days_ahead,
            school_days_only=settings.SCHOOL_DAYS_ONLY and not args.all_days,
        )
    finally:
        firebase_admin.delete_app(firebase_app)

    print(f"Processed {report.requests} requests: {report.created} instances created, "
          f"{report.missed} marked missed, {len(report.failed)} failed")
    for request_id in report.failed:
        print(f"  failed: {request_id}")
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main(parse_args())))
