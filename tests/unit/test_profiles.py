"""
Unit Tests - Profiles
"""
import pytest

from nanoassist.auth.profiles import Profile, degraded_profile, parse_stores, profile_from_row
from nanoassist.backend.records import ProfileRow


class TestParseStores:
    """Tests for parse_stores"""
    
    def test_trims_and_drops_blank_segments(self):
        """Test store list trimming"""
        assert parse_stores("a, b ,,c") == ["a", "b", "c"]
    
    @pytest.mark.parametrize("value", ["", None, " , ,"])
    def test_empty_inputs(self, value):
        """Test empty and missing store lists"""
        assert parse_stores(value) == []
    
    def test_keeps_order_and_duplicates(self):
        """Test store order and duplicates are kept"""
        assert parse_stores("Zeta,Alpha,Zeta") == ["Zeta", "Alpha", "Zeta"]


class TestProfileFromRow:
    """Tests for profile_from_row"""
    
    def test_full_row(self):
        """Test profile from a complete row"""
        row = ProfileRow(id="u1", email="a@x.ro", role="admin", full_name="Ana", stores="Acme, Beta")
        
        profile = profile_from_row(row, "u1", "session@x.ro")
        
        assert profile.id == "u1"
        assert profile.email == "a@x.ro"
        assert profile.is_admin
        assert profile.stores == ["Acme", "Beta"]
    
    def test_unknown_role_reads_as_user(self):
        """Test unknown role falls back to user"""
        row = ProfileRow(id="u1", role="superuser")
        
        profile = profile_from_row(row, "u1")
        
        assert profile.role == "user"
    
    def test_missing_email_falls_back_to_session(self):
        """Test session email fallback"""
        profile = profile_from_row(ProfileRow(id="u1"), "u1", "session@x.ro")
        
        assert profile.email == "session@x.ro"
        assert profile.stores == []
    
    def test_uuid_ids_are_stringified(self):
        """Test UUID ids become strings"""
        import uuid
        
        value = uuid.uuid4()
        
        assert ProfileRow(id=value).id == str(value)


class TestProfileAccess:
    """Tests for store visibility"""
    
    def test_degraded_profile(self):
        """Test degraded profile defaults"""
        profile = degraded_profile("u1", "u1@x.ro")
        
        assert profile == Profile(id="u1", email="u1@x.ro", role="user", stores=[])
    
    def test_user_sees_only_listed_stores(self):
        """Test user store access"""
        profile = Profile(id="u1", stores=["Acme"])
        
        assert profile.can_view_store("Acme")
        assert not profile.can_view_store("Beta")
    
    def test_admin_sees_every_store(self):
        """Test admin store access"""
        profile = Profile(id="u1", role="admin")
        
        assert profile.can_view_store("Beta")
