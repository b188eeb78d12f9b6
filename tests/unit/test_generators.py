"""
Unit Tests - Demo Data
"""
from datetime import datetime, timezone

from nanoassist.auth.profiles import parse_stores
from nanoassist.backend.records import CallRecord, MetricSnapshot
from nanoassist.data.generators import DemoDataGenerator, to_records

from tests.fakes import TZ

NOW = datetime(2025, 6, 18, 9, 0, tzinfo=timezone.utc)


class TestDemoDataGenerator:
    """Tests for DemoDataGenerator"""
    
    def test_profile_stores_parse(self):
        """Test generated profile stores"""
        data = DemoDataGenerator(seed=1, tz=TZ).generate_all(user_id="u1", stores=["Acme", "Beta"], days=2, now=NOW)
        
        assert data["profile"]["id"] == "u1"
        assert parse_stores(data["profile"]["stores"]) == ["Acme", "Beta"]
    
    def test_calls_are_valid_records_in_the_past(self):
        """Test generated calls are valid records"""
        data = DemoDataGenerator(seed=1, tz=TZ).generate_all(user_id="u1", stores=["Acme"], days=3, calls_per_day=20, now=NOW)
        
        records = [CallRecord(id=i, **row) for i, row in enumerate(to_records(data["calls"]), start=1)]
        
        assert records
        assert all(r.created_at <= NOW for r in records)
        assert all(r.store_name == "Acme" for r in records)
    
    def test_one_snapshot_per_store_and_day(self):
        """Test one snapshot per store and day"""
        data = DemoDataGenerator(seed=1, tz=TZ).generate_all(user_id="u1", stores=["Acme", "Beta"], days=4, calls_per_day=30, now=NOW)
        
        snapshots = [MetricSnapshot(**row) for row in to_records(data["metrics"])]
        keys = [(s.store_name, s.created_at.astimezone(TZ).date()) for s in snapshots]
        
        assert len(keys) == len(set(keys))
        assert all(s.created_at.astimezone(TZ).hour == 0 for s in snapshots)
        assert all(s.comenzi_confirmate <= s.total_comenzi for s in snapshots)
        assert sum(s.total_apeluri for s in snapshots) == len(data["calls"])
    
    def test_seed_is_reproducible(self):
        """Test seeded generation is reproducible"""
        first = DemoDataGenerator(seed=7, tz=TZ).generate_all(user_id="u1", days=2, now=NOW)
        second = DemoDataGenerator(seed=7, tz=TZ).generate_all(user_id="u1", days=2, now=NOW)
        
        assert first["calls"].equals(second["calls"])
