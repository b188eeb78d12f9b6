"""
Demo Data Generator

Synthetic dashboard data for development:
- a profile with its store list
- call recordings with a daytime-weighted hour distribution
- one metric snapshot per store and day, consistent with the calls
"""

import random
import uuid
from datetime import datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import polars as pl
from faker import Faker

from nanoassist.config import get_settings
from nanoassist.database.models import CallDirection, UserRole

settings = get_settings()

DEFAULT_STORES = ["Magazin Central", "Magazin Online"]

# Relative call volume per local hour; the assistant is busiest mid-day
HOUR_WEIGHTS = [
    1, 1, 1, 1, 1, 1, 2, 4, 8, 12, 14, 15,
    14, 13, 13, 12, 11, 10, 8, 6, 4, 3, 2, 1,
]

CALL_STATUSES = [
    ("completed", 0.80),
    ("missed", 0.12),
    ("failed", 0.08),
]

TRANSCRIPT_LINES = [
    "Bună ziua, vă sun în legătură cu comanda dumneavoastră.",
    "Doriți să confirmați livrarea la adresa din cont?",
    "Produsul este încă în coș, vă pot ajuta să finalizați comanda?",
    "Vă mulțumim, comanda a fost confirmată.",
    "Revin cu un apel mai târziu.",
]


class ProfileGenerator:
    """Generate the demo operator profile"""
    
    def __init__(self, fake: Faker):
        self.fake = fake
    
    def generate(
        self,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        stores: Sequence[str] = DEFAULT_STORES,
        role: UserRole = UserRole.USER,
    ) -> Dict[str, Optional[str]]:
        return {
            "id": user_id or str(uuid.uuid4()),
            "email": email or self.fake.email(),
            "role": role.value,
            "full_name": self.fake.name(),
            "avatar_url": None,
            # stored the way operators type it, with stray spaces
            "stores": " , ".join(stores),
        }


class CallGenerator:
    """Generate call recordings for one user"""
    
    def __init__(self, fake: Faker, rng: random.Random, tz: ZoneInfo):
        self.fake = fake
        self.rng = rng
        self.tz = tz
    
    def generate(
        self,
        user_id: str,
        stores: Sequence[str],
        days: int,
        calls_per_day: int,
        now: datetime,
    ) -> pl.DataFrame:
        """Calls over the ``days`` local days ending today, never in the future."""
        statuses, weights = zip(*CALL_STATUSES)
        local_today = now.astimezone(self.tz).date()
        rows = []
        
        for offset in range(days, -1, -1):
            day = local_today - timedelta(days=offset)
            count = max(0, int(self.rng.gauss(calls_per_day, calls_per_day * 0.3)))
            
            for _ in range(count):
                hour = self.rng.choices(range(24), weights=HOUR_WEIGHTS)[0]
                local = datetime.combine(day, time(hour, self.rng.randint(0, 59), self.rng.randint(0, 59)), tzinfo=self.tz)
                created_at = local.astimezone(timezone.utc)
                if created_at > now:
                    continue
                
                status = self.rng.choices(statuses, weights=weights)[0]
                duration = self.rng.randint(20, 600) if status == "completed" else 0
                rows.append({
                    "user_id": user_id,
                    "created_at": created_at,
                    "duration_seconds": duration,
                    "recording_url": f"https://recordings.example.com/{self.rng.getrandbits(64):016x}.mp3" if duration else None,
                    "phone_number": self.fake.phone_number(),
                    "direction": self.rng.choice([d.value for d in CallDirection]),
                    "store_name": self.rng.choice(list(stores)),
                    "client_personal_id": f"CL-{self.rng.randint(10000, 99999)}",
                    "recording_transcript": " ".join(self.rng.sample(TRANSCRIPT_LINES, 3)) if duration else None,
                    "status": status,
                })
        
        schema = {
            "user_id": pl.Utf8,
            "created_at": pl.Datetime(time_zone="UTC"),
            "duration_seconds": pl.Int64,
            "recording_url": pl.Utf8,
            "phone_number": pl.Utf8,
            "direction": pl.Utf8,
            "store_name": pl.Utf8,
            "client_personal_id": pl.Utf8,
            "recording_transcript": pl.Utf8,
            "status": pl.Utf8,
        }
        return pl.DataFrame(rows, schema=schema).sort("created_at")


class MetricsGenerator:
    """Derive daily metric snapshots from generated calls"""
    
    def __init__(self, rng: random.Random, tz: ZoneInfo):
        self.rng = rng
        self.tz = tz
    
    def generate(self, calls: pl.DataFrame, admin_name: Optional[str] = None) -> pl.DataFrame:
        if calls.is_empty():
            return pl.DataFrame()
        
        daily = (
            calls.with_columns(
                pl.col("created_at").dt.convert_time_zone(str(self.tz)).dt.date().alias("day"),
            )
            .group_by(["user_id", "store_name", "day"])
            .agg(
                pl.len().alias("total_apeluri"),
                (pl.col("direction") == CallDirection.OUTBOUND.value).sum().alias("apeluri_initiate"),
                (pl.col("direction") == CallDirection.INBOUND.value).sum().alias("apeluri_primite"),
                (pl.col("duration_seconds").sum() / 60).round(1).alias("minute_consumate"),
            )
            .sort(["day", "store_name"])
        )
        
        rows = []
        for row in daily.iter_rows(named=True):
            total = int(row["total_apeluri"])
            orders = self.rng.randint(0, max(total // 2, 1))
            confirmed = self.rng.randint(0, orders)
            abandoned = self.rng.randint(0, max(total - orders, 0))
            recovered = self.rng.randint(0, abandoned)
            rows.append({
                "user_id": row["user_id"],
                # snapshots are written at local midnight of their day
                "created_at": datetime.combine(row["day"], time.min, tzinfo=self.tz).astimezone(timezone.utc),
                "store_name": row["store_name"],
                "total_apeluri": total,
                "apeluri_initiate": int(row["apeluri_initiate"]),
                "apeluri_primite": int(row["apeluri_primite"]),
                "rata_conversie": round(100 * confirmed / total, 1) if total else 0.0,
                "rata_conversie_drafturi": round(100 * recovered / abandoned, 1) if abandoned else 0.0,
                "minute_consumate": float(row["minute_consumate"] or 0),
                "total_comenzi": orders,
                "cosuri_abandonate": abandoned,
                "cosuri_recuperate": recovered,
                "vanzari_generate": round(confirmed * self.rng.uniform(80, 450), 2),
                "comenzi_confirmate": confirmed,
                "nume_admin": admin_name,
            })
        return pl.DataFrame(rows)


class DemoDataGenerator:
    """
    Main generator producing a consistent demo dataset.
    
    Example:
        data = DemoDataGenerator(seed=42).generate_all(days=30)
        data["calls"].head()
    """
    
    def __init__(self, seed: Optional[int] = 42, tz: Optional[ZoneInfo] = None):
        self.fake = Faker("ro_RO")
        self.rng = random.Random(seed)
        if seed is not None:
            self.fake.seed_instance(seed)
        self.tz = tz or ZoneInfo(settings.dashboard.timezone)
    
    def generate_all(
        self,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        stores: Sequence[str] = DEFAULT_STORES,
        days: int = 30,
        calls_per_day: int = 40,
        now: Optional[datetime] = None,
    ) -> Dict[str, object]:
        """Profile dict plus ``calls`` and ``metrics`` frames."""
        now = now or datetime.now(timezone.utc)
        profile = ProfileGenerator(self.fake).generate(user_id, email, stores)
        calls = CallGenerator(self.fake, self.rng, self.tz).generate(
            profile["id"], stores, days, calls_per_day, now
        )
        metrics = MetricsGenerator(self.rng, self.tz).generate(calls, admin_name=profile["full_name"])
        return {"profile": profile, "calls": calls, "metrics": metrics}


def to_records(df: pl.DataFrame) -> List[dict]:
    """Row dicts ready for ORM construction"""
    return df.to_dicts()
