"""
Integration tests for API endpoints.

The FastAPI lifespan (init_db) and the background notifiers are patched out
for every test.  Each test gets its own in-memory SQLite database via the
db_session / client fixtures, so tests are fully isolated.
"""

import asyncio
import inspect
import pytest
from datetime import date
from unittest.mock import patch

from fastapi.routing import APIRoute
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base, MemberStatus, Trip, TripMember
from db.session import get_session

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
MALLORY = {"X-User-Id": "mallory"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database, schema pre-created, per test.

    StaticPool is required so that create_all and the session both use
    the same single connection; otherwise each pool checkout gets a new
    in-memory DB that has no tables.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def trip(db_session):
    """Trip T1 (2025-12-01..2025-12-05): alice creator, bob accepted, carol pending."""
    db_session.add(Trip(
        id="T1", name="Ski trip", creator_id="alice",
        start_date=date(2025, 12, 1), end_date=date(2025, 12, 5),
    ))
    db_session.add_all([
        TripMember(trip_id="T1", user_id="alice", role="creator", status=MemberStatus.ACCEPTED),
        TripMember(trip_id="T1", user_id="bob", status=MemberStatus.ACCEPTED),
        TripMember(trip_id="T1", user_id="carol", status=MemberStatus.PENDING),
    ])
    db_session.commit()
    return "T1"


@pytest.fixture
def client(db_session):
    """
    TestClient with:
      - lifespan init_db patched to a no-op
      - get_session dependency overridden to use the test db_session
      - background notifications patched out
    """
    from api.main import app

    def override_get_session():
        yield db_session

    with (
        patch("api.main.init_db"),
        patch("api.main.notify_availability_submitted") as submitted,
        patch("periods.generator.notify_generated") as generated,
    ):
        app.dependency_overrides[get_session] = override_get_session
        with TestClient(app, raise_server_exceptions=True) as c:
            c.notify_submitted = submitted
            c.notify_generated = generated
            yield c
        app.dependency_overrides.clear()


def _submit(client, headers, days):
    return client.post(
        "/trips/T1/availability",
        json={"dates": [f"2025-12-{d:02d}" for d in days]},
        headers=headers,
    )


def _seed_scenario(client):
    assert _submit(client, ALICE, [1, 2, 3]).status_code == 200
    assert _submit(client, BOB, [2, 3, 4]).status_code == 200


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class TestHealth:
    def test_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_contains_status_ok(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert "timestamp" in body

    def test_empty_db_returns_zero_counts(self, client):
        storage = client.get("/health").json()["storage"]
        assert storage == {"trips": 0, "availability_rows": 0, "generated_periods": 0}

    def test_counts_reflect_rows(self, client, trip):
        _submit(client, BOB, [1, 2])
        storage = client.get("/health").json()["storage"]
        assert storage["trips"] == 1
        assert storage["availability_rows"] == 2


# ---------------------------------------------------------------------------
# Handlers run off the event loop
# ---------------------------------------------------------------------------

class TestHandlersOffEventLoop:
    def test_route_handlers_are_sync(self):
        from api.main import app

        for route in app.routes:
            if isinstance(route, APIRoute):
                assert not inspect.iscoroutinefunction(route.endpoint), route.path

    def test_transaction_runs_without_a_running_loop(self, client, trip):
        from availability.ledger import submit_availability

        seen = []

        def _record_then_submit(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                seen.append("loop")
            except RuntimeError:
                seen.append("threadpool")
            return submit_availability(*args, **kwargs)

        with patch("api.main.submit_availability", side_effect=_record_then_submit):
            assert _submit(client, BOB, [1]).status_code == 200
        assert seen == ["threadpool"]


# ---------------------------------------------------------------------------
# Identity header
# ---------------------------------------------------------------------------

class TestIdentity:
    def test_missing_header_returns_401(self, client, trip):
        assert client.get("/trips/T1/dates").status_code == 401

    def test_blank_header_returns_401(self, client, trip):
        assert client.get("/trips/T1/dates", headers={"X-User-Id": "  "}).status_code == 401


# ---------------------------------------------------------------------------
# GET /trips/{trip_id}/dates
# ---------------------------------------------------------------------------

class TestTripDates:
    def test_returns_window(self, client, trip):
        body = client.get("/trips/T1/dates", headers=BOB).json()
        assert body["trip"] == {
            "id": "T1", "name": "Ski trip",
            "start_date": "2025-12-01", "end_date": "2025-12-05",
        }
        assert body["date_range"]["total_dates"] == 5

    def test_unknown_trip_returns_404(self, client):
        assert client.get("/trips/nope/dates", headers=BOB).status_code == 404

    def test_non_participant_returns_403(self, client, trip):
        assert client.get("/trips/T1/dates", headers=MALLORY).status_code == 403


# ---------------------------------------------------------------------------
# POST /trips/{trip_id}/availability
# ---------------------------------------------------------------------------

class TestSaveAvailability:
    def test_saves_and_summarises(self, client, trip):
        resp = _submit(client, BOB, [1, 2, 2])
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Availability saved successfully"
        assert body["summary"] == {"total_dates": 5, "submitted_dates": 2}

    def test_creator_notified_in_background(self, client, trip):
        _submit(client, BOB, [1, 2])
        client.notify_submitted.assert_called_once()
        window, user_id, submitted = client.notify_submitted.call_args.args
        assert window.creator_id == "alice"
        assert (user_id, submitted) == ("bob", 2)

    def test_out_of_range_returns_400(self, client, trip):
        resp = _submit(client, BOB, [5, 6])
        assert resp.status_code == 400
        assert "2025-12-06" in resp.json()["detail"]
        client.notify_submitted.assert_not_called()

    def test_empty_list_returns_422(self, client, trip):
        resp = client.post("/trips/T1/availability", json={"dates": []}, headers=BOB)
        assert resp.status_code == 422

    def test_malformed_date_returns_422(self, client, trip):
        resp = client.post("/trips/T1/availability", json={"dates": ["12/01/2025"]}, headers=BOB)
        assert resp.status_code == 422

    def test_non_participant_returns_403(self, client, trip):
        assert _submit(client, MALLORY, [1]).status_code == 403

    def test_pending_invitee_returns_403(self, client, trip):
        assert _submit(client, {"X-User-Id": "carol"}, [1]).status_code == 403
        client.notify_submitted.assert_not_called()

    def test_unknown_trip_returns_404(self, client):
        resp = client.post("/trips/nope/availability", json={"dates": ["2025-12-01"]}, headers=BOB)
        assert resp.status_code == 404

    def test_storage_conflict_returns_503(self, client, trip):
        with (
            patch("db.session.TX_RETRY_BACKOFF_SECONDS", 0),
            patch("availability.ledger.mark_availability_submitted",
                  side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))),
        ):
            resp = _submit(client, BOB, [1])
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"


# ---------------------------------------------------------------------------
# GET /trips/{trip_id}/availability/me
# ---------------------------------------------------------------------------

class TestMyAvailability:
    def test_resubmission_replaces(self, client, trip):
        _submit(client, ALICE, [1, 2])
        _submit(client, ALICE, [3])
        body = client.get("/trips/T1/availability/me", headers=ALICE).json()
        assert body["availability"] == [{"date": "2025-12-03"}]
        assert body["summary"] == {"total_dates": 5, "submitted_dates": 1}

    def test_nothing_submitted(self, client, trip):
        body = client.get("/trips/T1/availability/me", headers=BOB).json()
        assert body["availability"] == []

    def test_non_participant_returns_403(self, client, trip):
        assert client.get("/trips/T1/availability/me", headers=MALLORY).status_code == 403


# ---------------------------------------------------------------------------
# POST /trips/{trip_id}/availability/generate-periods
# ---------------------------------------------------------------------------

class TestGeneratePeriods:
    def test_everyone_free(self, client, trip):
        _seed_scenario(client)
        resp = client.post(
            "/trips/T1/availability/generate-periods",
            json={"min_days": 1, "min_availability_member": 2},
            headers=ALICE,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Periods generated successfully"
        assert body["periods"] == [{
            "period_number": 1,
            "start_date": "2025-12-02",
            "end_date": "2025-12-03",
            "duration_days": 2,
            "free_count": 2,
            "total_members": 2,
            "availability_percentage": 100.0,
        }]
        assert body["stats"] == {
            "total_periods": 1,
            "total_members": 2,
            "all_members_available_days": 2,
            "min_days": 1,
            "min_availability_member": 2,
            "trip": {"id": "T1", "name": "Ski trip"},
        }

    def test_body_optional(self, client, trip):
        _seed_scenario(client)
        with (
            patch("periods.generator.DEFAULT_MIN_DAYS", 1),
            patch("periods.generator.DEFAULT_MIN_AVAILABILITY_MEMBER", 1),
        ):
            resp = client.post("/trips/T1/availability/generate-periods", headers=ALICE)
        assert resp.status_code == 200
        assert resp.json()["periods"][0]["start_date"] == "2025-12-01"
        assert resp.json()["periods"][0]["end_date"] == "2025-12-04"

    def test_members_notified(self, client, trip):
        _seed_scenario(client)
        client.post("/trips/T1/availability/generate-periods", json={}, headers=BOB)
        client.notify_generated.assert_called_once()
        assert client.notify_generated.call_args.args[1] == {"alice", "bob"}

    def test_no_accepted_members(self, client, db_session, trip):
        db_session.query(TripMember).filter_by(trip_id="T1").update({"status": MemberStatus.PENDING})
        db_session.commit()
        body = client.post("/trips/T1/availability/generate-periods", json={}, headers=ALICE).json()
        assert body["periods"] == []
        assert body["stats"]["total_members"] == 0
        assert body["message"].startswith("No accepted members")

    def test_no_accepted_members_rejected_when_configured(self, client, db_session, trip):
        db_session.query(TripMember).filter_by(trip_id="T1").update({"status": MemberStatus.PENDING})
        db_session.commit()
        with patch("periods.generator.REJECT_EMPTY_MEMBERSHIP", True):
            resp = client.post("/trips/T1/availability/generate-periods", json={}, headers=ALICE)
        assert resp.status_code == 422

    def test_non_participant_returns_403(self, client, trip):
        resp = client.post("/trips/T1/availability/generate-periods", json={}, headers=MALLORY)
        assert resp.status_code == 403

    def test_unknown_trip_returns_404(self, client):
        resp = client.post("/trips/nope/availability/generate-periods", json={}, headers=ALICE)
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# GET /trips/{trip_id}/available-periods
# ---------------------------------------------------------------------------

class TestAvailablePeriods:
    def test_empty_before_first_run(self, client, trip):
        body = client.get("/trips/T1/available-periods", headers=ALICE).json()
        assert body == {"periods": []}

    def test_returns_last_generated_set(self, client, trip):
        _seed_scenario(client)
        client.post(
            "/trips/T1/availability/generate-periods",
            json={"min_days": 1, "min_availability_member": 1},
            headers=ALICE,
        )
        client.post(
            "/trips/T1/availability/generate-periods",
            json={"min_days": 1, "min_availability_member": 2},
            headers=ALICE,
        )
        periods = client.get("/trips/T1/available-periods", headers=BOB).json()["periods"]
        assert len(periods) == 1
        assert periods[0]["start_date"] == "2025-12-02"
        assert periods[0]["free_count"] == 2
        assert "id" in periods[0]
        assert "created_at" in periods[0]

    def test_does_not_recompute(self, client, trip):
        _seed_scenario(client)
        client.post(
            "/trips/T1/availability/generate-periods",
            json={"min_days": 1, "min_availability_member": 2},
            headers=ALICE,
        )
        _submit(client, BOB, [5])
        periods = client.get("/trips/T1/available-periods", headers=ALICE).json()["periods"]
        assert [(p["start_date"], p["end_date"]) for p in periods] == [("2025-12-02", "2025-12-03")]

    def test_unknown_trip_returns_404(self, client):
        assert client.get("/trips/nope/available-periods", headers=ALICE).status_code == 404
