"""
Unit Tests - API Routes
"""
import httpx
import pytest

from nanoassist.analytics import DashboardMetricsService, MetricsAggregator
from nanoassist.auth import SessionResolver
from nanoassist.backend.records import CallRecord, ProfileRow
from nanoassist.main import create_app
from nanoassist.recordings import RecordingsService

from tests.fakes import TZ, FakeAuthClient, FakeRecordStore, make_session

CREDENTIALS = {"email": "u1@example.com", "password": "secret"}


@pytest.fixture
def api_store() -> FakeRecordStore:
    return FakeRecordStore(
        profiles=[ProfileRow(id="u1", email="u1@example.com", role="user", stores="Acme")],
        calls=[
            CallRecord(
                id=5,
                user_id="u1",
                created_at="2025-06-01T09:00:00Z",
                store_name="Acme",
                duration_seconds=90,
                recording_transcript="Salut",
            ),
            CallRecord(id=6, user_id="u1", created_at="2025-06-01T09:00:00Z", store_name="Secret"),
        ],
    )


@pytest.fixture
async def client(api_store):
    auth = FakeAuthClient(accounts={(CREDENTIALS["email"], CREDENTIALS["password"]): make_session("u1")})
    resolver = SessionResolver(auth, api_store, bootstrap_timeout=1.0, sign_out_timeout=0.5, fetch_timeout=1.0, profile_lookup="id")
    await resolver.init()
    
    app = create_app()
    app.state.feed = None
    app.state.resolver = resolver
    app.state.aggregator = MetricsAggregator(api_store, tz=TZ)
    app.state.dashboard = DashboardMetricsService(api_store)
    app.state.recordings = RecordingsService(api_store, tz=TZ)
    app.state.watchers = {}
    
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    
    await resolver.teardown()


async def login(client) -> None:
    response = await client.post("/api/v1/auth/login", json=CREDENTIALS)
    assert response.status_code == 200


class TestAuthRoutes:
    """Tests for /auth"""
    
    async def test_session_before_login(self, client):
        """Test session endpoint when signed out"""
        response = await client.get("/api/v1/auth/session")
        
        assert response.status_code == 200
        assert response.json()["state"] == "unauthenticated"
    
    async def test_login_rejected(self, client):
        """Test login with wrong password"""
        response = await client.post("/api/v1/auth/login", json={"email": "u1@example.com", "password": "nope"})
        
        assert response.status_code == 401
        assert response.json()["detail"] == "Incorrect email or password."
    
    async def test_login_then_logout(self, client):
        """Test login followed by logout"""
        response = await client.post("/api/v1/auth/login", json=CREDENTIALS)
        
        body = response.json()
        assert body["state"] == "authenticated"
        assert body["stores"] == ["Acme"]
        assert "access_token" not in body
        
        assert (await client.post("/api/v1/auth/logout")).status_code == 204
        assert (await client.get("/api/v1/auth/session")).json()["state"] == "unauthenticated"
    
    async def test_profile_requires_session(self, client):
        """Test profile endpoint needs a session"""
        assert (await client.get("/api/v1/auth/profile")).status_code == 401
    
    async def test_profile_refresh(self, client):
        """Test profile refresh endpoint"""
        await login(client)
        
        response = await client.post("/api/v1/auth/profile/refresh")
        
        assert response.status_code == 200
        assert response.json()["id"] == "u1"


class TestAnalyticsRoutes:
    """Tests for /analytics"""
    
    async def test_chart_requires_session(self, client):
        """Test chart endpoint needs a session"""
        response = await client.get("/api/v1/analytics/chart", params={"store_name": "Acme"})
        
        assert response.status_code == 401
    
    async def test_chart(self, client):
        """Test chart series for an own store"""
        await login(client)
        
        response = await client.get("/api/v1/analytics/chart", params={"store_name": "Acme", "period": "month"})
        
        assert response.status_code == 200
        assert len(response.json()) == 31
    
    async def test_chart_of_foreign_store(self, client):
        """Test chart of an unlisted store is forbidden"""
        await login(client)
        
        response = await client.get("/api/v1/analytics/chart", params={"store_name": "Secret"})
        
        assert response.status_code == 403
    
    async def test_unknown_period(self, client):
        """Test invalid chart period"""
        await login(client)
        
        response = await client.get("/api/v1/analytics/chart", params={"store_name": "Acme", "period": "year"})
        
        assert response.status_code == 422
    
    async def test_summary_without_data(self, client):
        """Test summary with no snapshots"""
        await login(client)
        
        response = await client.get("/api/v1/analytics/summary")
        
        assert response.status_code == 200
        assert response.json()["total_calls"] == 0


class TestRecordingsRoutes:
    """Tests for /recordings"""
    
    params = {"store_name": "Acme", "start_date": "2025-06-01", "end_date": "2025-06-01"}
    
    async def test_list(self, client):
        """Test recordings page listing"""
        await login(client)
        
        response = await client.get("/api/v1/recordings", params=self.params)
        
        body = response.json()
        assert response.status_code == 200
        assert body["total"] == 1
        assert body["items"][0]["duration"] == "01:30"
    
    async def test_reversed_dates(self, client):
        """Test reversed date range is rejected"""
        await login(client)
        
        response = await client.get(
            "/api/v1/recordings",
            params={**self.params, "start_date": "2025-06-02"},
        )
        
        assert response.status_code == 422
    
    async def test_query_failure_is_502(self, client, api_store):
        """Test recordings query failure maps to 502"""
        await login(client)
        api_store.fail.add("recordings_page")
        
        response = await client.get("/api/v1/recordings", params=self.params)
        
        assert response.status_code == 502
    
    async def test_transcript(self, client):
        """Test transcript endpoint"""
        await login(client)
        
        response = await client.get("/api/v1/recordings/5/transcript")
        
        assert response.json() == {"id": 5, "transcript": "Salut"}
    
    async def test_transcript_of_foreign_store(self, client):
        """Test transcript access checks"""
        await login(client)
        
        assert (await client.get("/api/v1/recordings/6/transcript")).status_code == 403
        assert (await client.get("/api/v1/recordings/404/transcript")).status_code == 404


class TestHealthRoutes:
    """Tests for /health"""
    
    async def test_liveness(self, client):
        """Test liveness probe"""
        response = await client.get("/api/v1/health/live")
        
        assert response.json() == {"status": "alive"}
    
    async def test_report_without_backends(self, client):
        """Test health report with no database or redis"""
        response = await client.get("/api/v1/health")
        
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["checks"]["database"]["status"] == "unhealthy"
        assert body["checks"]["redis"]["status"] == "unavailable"
        assert body["checks"]["realtime"] == {"status": "disabled"}
        assert body["checks"]["auth"]["state"] == "unauthenticated"
    
    async def test_not_ready_without_database(self, client):
        """Test readiness without a database"""
        response = await client.get("/api/v1/health/ready")
        
        assert response.status_code == 503
        assert response.json()["reason"] == "database_unavailable"
