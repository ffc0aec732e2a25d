"""Tests for the Insights Engine HTTP handler."""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from creatorpulse.services.analytics_service import AggregationIncomplete
from creatorpulse.services.engine import EngineConfig, InsightsEngine, create_app
from creatorpulse.services.engine.handler import SESSION_COOKIE, SESSION_HEADER, _parse_timestamp
from creatorpulse.shared.database import StorageError
from creatorpulse.shared.utils import is_valid_session_format

SALT = "handler_test_salt_that_is_long_enough_99"
NOW = datetime(2026, 6, 15, 12, 0, 0)
SUBJECT = "a1" * 16


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def engine(clock):
    return InsightsEngine.build(EngineConfig(salt=SALT), clock=clock)


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


def post_event(client, subject=SUBJECT, **overrides):
    body = {
        "event_type": "feature_used",
        "purpose": "user_insights",
        "session_id": subject,
        "payload": {"feature": "caption_writer", "platform": "instagram"},
    }
    body.update(overrides)
    return client.post("/events", json=body)


def grant(client, *categories, subject=SUBJECT):
    client.post(f"/consent/{subject}", json={"consents": {c: True for c in categories}})


class TestParseTimestamp:
    def test_naive_unchanged(self):
        assert _parse_timestamp("2026-06-10T08:00:00") == datetime(2026, 6, 10, 8)

    def test_offset_converted_to_utc(self):
        assert _parse_timestamp("2026-06-10T10:00:00+02:00") == datetime(2026, 6, 10, 8)

    def test_zulu_suffix(self):
        assert _parse_timestamp("2026-06-10T08:00:00Z") == datetime(2026, 6, 10, 8)


class TestHealthEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ready"
        assert response.get_json()["backend"] == "memory"

    def test_not_ready(self):
        engine = MagicMock()
        engine.status.return_value = {"backend": "postgresql", "ready": False}
        app = create_app(engine)

        with app.test_client() as client:
            response = client.get("/ready")

        assert response.status_code == 503
        assert response.get_json()["status"] == "not_ready"


class TestSessionEndpoint:
    """Tests for POST /session."""

    def test_new_session_derived(self, client):
        response = client.post("/session", headers={"User-Agent": "Mozilla/5.0"})

        data = response.get_json()
        assert response.status_code == 200
        assert data["reused"] is False
        assert is_valid_session_format(data["session_id"])
        assert SESSION_COOKIE in response.headers.get("Set-Cookie", "")

    def test_well_formed_token_reused(self, client):
        response = client.post("/session", json={"session_id": SUBJECT})

        assert response.get_json() == {"session_id": SUBJECT, "reused": True}

    def test_header_token_reused(self, client):
        response = client.post("/session", headers={SESSION_HEADER: SUBJECT})

        assert response.get_json()["session_id"] == SUBJECT

    def test_forged_token_rederived(self, client):
        response = client.post("/session", json={"session_id": "forged-token-0001"})

        data = response.get_json()
        assert data["reused"] is False
        assert data["session_id"] != "forged-token-0001"
        assert is_valid_session_format(data["session_id"])

    def test_account_id(self, client, engine):
        response = client.post("/session", json={"user_id": "user-42"})

        assert response.get_json()["session_id"] == engine.account_subject("user-42")
        assert "Set-Cookie" not in response.headers


class TestEventsEndpoint:
    """Tests for POST /events."""

    def test_untracked_without_consent(self, client):
        response = post_event(client)

        assert response.status_code == 200
        data = response.get_json()
        assert data["tracked"] is False
        assert data["reason"] == "consent_missing"
        assert data["session_id"] == SUBJECT

    def test_tracked_with_consent(self, client):
        grant(client, "performance_benchmarking")

        response = post_event(client)

        assert response.status_code == 201
        assert response.get_json()["tracked"] is True
        assert response.get_json()["event_id"].startswith("evt_")

    def test_session_from_cookie(self, client):
        grant(client, "performance_benchmarking")
        client.set_cookie(SESSION_COOKIE, SUBJECT)

        response = post_event(client, subject=None)

        assert response.status_code == 201
        assert response.get_json()["session_id"] == SUBJECT

    def test_forged_token_rederived_and_not_stored(self, client, engine):
        grant(client, "performance_benchmarking")

        response = post_event(client, subject="forged-token-0001")

        data = response.get_json()
        assert response.status_code == 200
        assert data["reason"] == "consent_missing"
        assert data["session_id"] != "forged-token-0001"
        assert is_valid_session_format(data["session_id"])
        assert engine.compliance_report().events_checked == 0

    def test_subject_id_field_is_not_trusted(self, client, engine):
        grant(client, "performance_benchmarking")

        response = client.post("/events", json={
            "event_type": "feature_used",
            "purpose": "user_insights",
            "subject_id": SUBJECT,
            "payload": {"feature": "caption_writer"},
        })

        assert response.get_json()["session_id"] != SUBJECT
        assert engine.delete_subject_data(SUBJECT) == 0

    def test_account_id(self, client, engine):
        key = engine.account_subject("user-42")
        grant(client, "performance_benchmarking", subject=key)

        response = post_event(client, subject=None, user_id="user-42")

        assert response.status_code == 201
        assert "session_id" not in response.get_json()
        assert engine.delete_subject_data(key) == 1

    def test_invalid_field(self, client):
        grant(client, "performance_benchmarking")

        response = post_event(client, payload={"feature": "Write me a caption about my cat"})

        assert response.status_code == 400
        assert response.get_json()["reason"] == "invalid_field"

    def test_missing_fields(self, client):
        response = client.post("/events", json={"event_type": "feature_used"})

        assert response.status_code == 400
        assert "purpose" in response.get_json()["error"]

    def test_non_json_body(self, client):
        response = client.post("/events", data="not json", content_type="text/plain")

        assert response.status_code == 400

    def test_storage_unavailable(self):
        engine = MagicMock()
        engine.resolve_session.return_value = (SUBJECT, True)
        engine.ingest_event.side_effect = StorageError("down")
        app = create_app(engine)

        with app.test_client() as client:
            response = post_event(client)

        assert response.status_code == 503
        assert response.get_json()["error"] == "storage unavailable"


class TestCaptionHashtagsEndpoint:
    """Tests for POST /events/hashtags."""

    def test_tracks_each_tag(self, client, engine):
        grant(client, "hashtag_trends")

        response = client.post("/events/hashtags", json={
            "session_id": SUBJECT,
            "text": "Morning light #Sunrise #coffee",
            "platform": "instagram",
        })

        assert response.status_code == 200
        assert response.get_json()["tracked"] == 2
        assert engine.delete_subject_data(SUBJECT) == 2

    def test_without_consent(self, client):
        response = client.post("/events/hashtags", json={"session_id": SUBJECT, "text": "#sunrise"})

        data = response.get_json()
        assert data["tracked"] == 0
        assert data["results"][0]["reason"] == "consent_missing"

    def test_requires_text(self, client):
        assert client.post("/events/hashtags", json={"session_id": SUBJECT}).status_code == 400


class TestConsentEndpoints:
    """Tests for /consent/<subject_id>."""

    def test_defaults_to_denied(self, client):
        response = client.get(f"/consent/{SUBJECT}")

        assert response.status_code == 200
        assert not any(response.get_json()["consents"].values())
        assert response.get_json()["pending_erasure"] is None

    def test_set_consents(self, client):
        response = client.post(
            f"/consent/{SUBJECT}",
            json={"consents": {"basic_analytics": True, "hashtag_trends": True}},
        )

        assert response.status_code == 200
        consents = response.get_json()["consents"]
        assert consents["basic_analytics"] is True
        assert consents["hashtag_trends"] is True
        assert consents["product_improvement"] is False

    @pytest.mark.parametrize("method", ["get", "post", "delete"])
    def test_malformed_subject(self, client, method):
        response = getattr(client, method)(
            "/consent/creator-1", json={"consents": {"basic_analytics": True}}
        )

        assert response.status_code == 400
        assert "session hash" in response.get_json()["error"]

    def test_unknown_category(self, client):
        response = client.post(f"/consent/{SUBJECT}", json={"consents": {"everything": True}})

        assert response.status_code == 400

    def test_requires_consents_mapping(self, client):
        response = client.post(f"/consent/{SUBJECT}", json={})

        assert response.status_code == 400

    def test_withdraw_one_category(self, client):
        grant(client, "basic_analytics")

        response = client.delete(f"/consent/{SUBJECT}?category=basic_analytics")

        assert response.status_code == 200
        assert response.get_json()["consents"]["basic_analytics"] is False

    def test_withdraw_all_schedules_erasure(self, client):
        grant(client, "basic_analytics")

        response = client.delete(f"/consent/{SUBJECT}")

        assert response.status_code == 202
        expected = (NOW + timedelta(days=30)).isoformat()
        assert response.get_json()["pending_erasure"] == expected


class TestAnalyticsEndpoints:
    """Tests for baseline, trends and benchmark endpoints."""

    def test_baseline(self, client):
        response = client.get("/baseline")

        assert response.status_code == 200
        data = response.get_json()
        assert data["subject_count"] == 0
        assert data["stale"] is False

    def test_baseline_bad_window(self, client):
        response = client.get("/baseline?start=2026-06-10T00:00:00")

        assert response.status_code == 400

    @pytest.mark.parametrize("start,end", [
        ("2026-06-01T00:00:00+02:00", "2026-06-10T00:00:00+02:00"),
        ("2026-06-01T00:00:00Z", "2026-06-10T00:00:00Z"),
        ("2026-06-01T00:00:00Z", "2026-06-10T00:00:00"),
    ])
    def test_baseline_offset_window(self, client, start, end):
        response = client.get("/baseline", query_string={"start": start, "end": end})

        assert response.status_code == 200
        assert response.get_json()["window"]["end"].startswith("2026-06-")

    def test_baseline_unavailable(self):
        engine = MagicMock()
        engine.now.return_value = NOW
        engine.get_baseline.side_effect = AggregationIncomplete("down")
        app = create_app(engine)

        with app.test_client() as client:
            response = client.get("/baseline")

        assert response.status_code == 503

    def test_trends(self, client, clock):
        grant(client, "hashtag_trends")
        for _ in range(6):
            post_event(
                client,
                event_type="hashtag_added",
                purpose="hashtag_trend_analysis",
                payload={"hashtag": "#sunset", "platform": "tiktok"},
            )
        clock.now += timedelta(hours=1)

        response = client.get("/trends?days=7&top_n=5")

        assert response.status_code == 200
        data = response.get_json()
        assert data["dimension"] == "hashtag"
        assert len(data["trends"]) == 1
        assert data["trends"][0]["current_usage"] == 6

    @pytest.mark.parametrize("top_n", ["0", "-1", "many"])
    def test_trends_bad_top_n(self, client, top_n):
        response = client.get(f"/trends?top_n={top_n}")

        assert response.status_code == 400

    def test_trends_unknown_dimension(self, client):
        response = client.get("/trends?dimension=colour")

        assert response.status_code == 400

    def test_monthly_trends(self, client):
        response = client.get("/trends/monthly/2026/6")

        assert response.status_code == 200
        assert response.get_json()["period"] == "2026-06"

    def test_monthly_trends_bad_month(self, client):
        assert client.get("/trends/monthly/2026/13").status_code == 400

    def test_user_trends(self, client):
        response = client.get(f"/trends/user/{SUBJECT}?days=14")

        assert response.status_code == 200
        data = response.get_json()
        assert data["personalized"] is False
        assert data["trending_hashtags"] == []

    def test_user_trends_bad_days(self, client):
        assert client.get(f"/trends/user/{SUBJECT}?days=0").status_code == 400
        assert client.get("/trends/user/creator-1").status_code == 400

    def test_benchmarks_insufficient_data(self, client):
        response = client.get(f"/benchmarks/{SUBJECT}")

        assert response.status_code == 200
        data = response.get_json()
        assert data["insufficient_data"] is True
        assert data["percentile_rank"] is None
        assert len(data["achievements"]) == 3

    def test_benchmarks_malformed_subject(self, client):
        assert client.get("/benchmarks/newcomer").status_code == 400

    def test_monthly_benchmarks(self, client):
        grant(client, "performance_benchmarking")
        for _ in range(3):
            post_event(client)

        response = client.get(f"/benchmarks/{SUBJECT}/monthly/2026/6")

        assert response.status_code == 200
        data = response.get_json()
        assert data["month_over_month"]["events_tracked"]["current"] == 3.0
        assert data["insufficient_data"] is False

    def test_monthly_benchmarks_bad_month(self, client):
        assert client.get(f"/benchmarks/{SUBJECT}/monthly/2026/0").status_code == 400


class TestLifecycleEndpoints:
    def test_delete_subject_data(self, client):
        grant(client, "performance_benchmarking")
        post_event(client)
        post_event(client)

        response = client.delete(f"/subjects/{SUBJECT}/data")

        assert response.status_code == 200
        assert response.get_json()["events_deleted"] == 2

    def test_delete_malformed_subject(self, client):
        assert client.delete("/subjects/creator-1/data").status_code == 400

    def test_retention_sweep(self, client):
        response = client.post("/retention/sweep")

        assert response.status_code == 200
        assert response.get_json()["total"] == 0

    def test_retention_sweep_already_running(self):
        engine = MagicMock()
        engine.run_retention_sweep.return_value = {}
        app = create_app(engine)

        with app.test_client() as client:
            response = client.post("/retention/sweep")

        assert response.status_code == 409

    def test_compliance(self, client):
        response = client.get("/compliance")

        assert response.status_code == 200
        assert response.get_json()["compliant"] is True
