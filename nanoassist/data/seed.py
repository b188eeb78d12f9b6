"""
Demo data seeding.

Usage:
    nanoassist-seed --email demo@example.com --stores "Magazin Central,Magazin Online"
    nanoassist-seed --create-tables --notify
"""

import argparse
import asyncio
from typing import List, Optional

import structlog
from sqlalchemy import delete

from nanoassist.auth.profiles import parse_stores
from nanoassist.backend.base import ChangeEvent, ChangeType
from nanoassist.backend.realtime import RedisChangeFeed
from nanoassist.config.logging import configure_logging
from nanoassist.data.generators import DEFAULT_STORES, DemoDataGenerator, to_records
from nanoassist.database.connection import close_database, get_db, init_database
from nanoassist.database.models import Base, CallMetric, CallRecording, Profile
from nanoassist.serving.cache import close_redis, init_redis

logger = structlog.get_logger(__name__)


async def seed(
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    stores: Optional[List[str]] = None,
    days: int = 30,
    calls_per_day: int = 40,
    create_tables: bool = False,
    replace: bool = False,
    notify: bool = False,
    seed_value: Optional[int] = 42,
) -> dict:
    """Insert a demo profile with its calls and metrics. Returns row counts."""
    engine = await init_database()
    try:
        if create_tables:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        
        data = DemoDataGenerator(seed=seed_value).generate_all(
            user_id=user_id,
            email=email,
            stores=stores or DEFAULT_STORES,
            days=days,
            calls_per_day=calls_per_day,
        )
        profile = data["profile"]
        calls = to_records(data["calls"])
        metrics = to_records(data["metrics"])
        
        async with get_db() as db:
            if replace:
                await db.execute(delete(CallRecording).where(CallRecording.user_id == profile["id"]))
                await db.execute(delete(CallMetric).where(CallMetric.user_id == profile["id"]))
                await db.execute(delete(Profile).where(Profile.id == profile["id"]))
            
            db.add(Profile(**profile))
            recordings = [CallRecording(**row) for row in calls]
            db.add_all(recordings)
            db.add_all(CallMetric(**row) for row in metrics)
            await db.flush()
            inserted = [
                {column.name: getattr(rec, column.name) for column in CallRecording.__table__.columns}
                for rec in recordings
            ]
        
        logger.info(
            "Demo data seeded",
            user_id=profile["id"],
            email=profile["email"],
            stores=parse_stores(profile["stores"]),
            calls=len(calls),
            snapshots=len(metrics),
        )
        
        if notify:
            await _announce(inserted)
        
        return {"user_id": profile["id"], "calls": len(calls), "snapshots": len(metrics)}
    finally:
        await close_database()


async def _announce(rows: List[dict]) -> None:
    """Publish INSERT notifications so running dashboards refresh."""
    try:
        redis = await init_redis()
    except Exception as e:
        logger.warning("Skipping notifications, redis unavailable", error=str(e))
        return
    
    feed = RedisChangeFeed(redis)
    try:
        receivers = 0
        for row in rows:
            receivers += await feed.publish(ChangeEvent(table="call_recordings", event=ChangeType.INSERT, new=row))
        logger.info("Insert notifications published", count=len(rows), receivers=receivers)
    finally:
        await feed.close()
        await close_redis()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Seed Nanoassist demo data")
    parser.add_argument("--user-id", help="Profile id (default: random UUID)")
    parser.add_argument("--email", help="Profile email")
    parser.add_argument("--stores", help="Comma-separated store names")
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--calls-per-day", type=int, default=40)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    parser.add_argument("--replace", action="store_true", help="Delete the user's existing rows first")
    parser.add_argument("--notify", action="store_true", help="Publish INSERT notifications")
    args = parser.parse_args(argv)
    
    configure_logging()
    asyncio.run(
        seed(
            user_id=args.user_id,
            email=args.email,
            stores=parse_stores(args.stores) or None,
            days=args.days,
            calls_per_day=args.calls_per_day,
            create_tables=args.create_tables,
            replace=args.replace,
            notify=args.notify,
            seed_value=args.seed,
        )
    )


if __name__ == "__main__":
    main()
