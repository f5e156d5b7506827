"""
Unit tests for the assignment engine.

Covers the full alert path against a real (SQLite) store:
gate -> cooldown -> duplicate window -> incident -> technician ->
rate limit -> capacity -> slot -> SLA.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from facility_dispatch.errors import OverlapError, StoreUnavailableError, ValidationError
from facility_dispatch.models.incident import Incident, IncidentSource, IncidentStatus
from facility_dispatch.models.incident_event import IncidentEventType
from facility_dispatch.models.notification import NotificationType
from facility_dispatch.models.rate_limit_counter import SYSTEM_SUBJECT, RateLimitCounter
from facility_dispatch.models.schedule import Schedule
from facility_dispatch.models.technician import Technician
from facility_dispatch.services.assignment_engine import (
    AssignmentEngine,
    SubmissionOutcome,
    SubmissionResult,
)
from facility_dispatch.services.event_logger import event_logger
from facility_dispatch.services.schedule_store import SLOT_MISSING_KEY


async def incident_count(db) -> int:
    result = await db.execute(select(func.count()).select_from(Incident))
    return result.scalar_one()


async def event_types(db, incident_id) -> set[IncidentEventType]:
    return {event.event_type for event in await event_logger.timeline(db, incident_id)}


async def counter(db, subject, day) -> int:
    result = await db.execute(
        select(RateLimitCounter.count).where(
            RateLimitCounter.subject == str(subject),
            RateLimitCounter.day == day,
        )
    )
    return result.scalar_one_or_none() or 0


class TestSubmitAlert:

    async def test_assigns_plumber_to_water_alert(
        self, test_db, engine, technician_factory, water_alert, now, fetch_notifications
    ):
        """Confident water alert goes to the idle plumber with a 15 minute SLA."""
        await technician_factory(specialization="Electrical")
        plumber = await technician_factory(specialization="Plumbing")

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.ACCEPTED
        assert result.to_public() == {
            "incident_id": str(result.incident_id),
            "technician_id": str(plumber.id),
            "sla_deadline": (now + timedelta(minutes=15)).isoformat(),
        }
        assert plumber.current_assignments == 1

        incident = await test_db.get(Incident, result.incident_id)
        assert incident.priority == 5
        assert incident.status == IncidentStatus.IN_PROGRESS
        assert incident.assigned_technician_id == plumber.id
        assert incident.assigned_at == now
        assert incident.sla_started_at == now
        assert incident.sla_deadline == now + timedelta(minutes=15)
        assert incident.title == "Critical Alert: Predicted Failure at Block A"
        assert incident.source == IncidentSource.PREDICTION
        assert incident.context["alert"]["confidence"] == 90

        schedule = await test_db.get(Schedule, result.schedule_id)
        assert schedule.technician_id == plumber.id
        assert schedule.scheduled_time == now + timedelta(minutes=5)
        assert schedule.duration_minutes == 30

        notifications = await fetch_notifications(plumber.id)
        assert len(notifications) == 1
        assert notifications[0].type == NotificationType.TECHNICIAN_ASSIGNED
        assert notifications[0].incident_id == incident.id

        assert await event_types(test_db, incident.id) == {
            IncidentEventType.ALERT_INGESTED,
            IncidentEventType.SCHEDULE_CREATED,
            IncidentEventType.TECHNICIAN_ASSIGNED,
        }

    async def test_resubmission_within_cooldown(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        await technician_factory(specialization="Plumbing")
        first = await engine.submit_alert(test_db, water_alert, now=now)

        second = await engine.submit_alert(test_db, water_alert, now=now + timedelta(hours=1))

        assert second.outcome == SubmissionOutcome.COOLDOWN_ACTIVE
        assert second.to_public() is None
        assert second.incident_id == first.incident_id
        assert await incident_count(test_db) == 1

    async def test_cooldown_is_idempotent(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        """Repeated suppressed alerts leave the stored incident untouched."""
        await technician_factory(specialization="Plumbing")
        first = await engine.submit_alert(test_db, water_alert, now=now)
        incident = await test_db.get(Incident, first.incident_id)
        snapshot = (incident.status, incident.assigned_at, incident.sla_deadline, dict(incident.context))

        for hours in (1, 2, 3):
            result = await engine.submit_alert(test_db, water_alert, now=now + timedelta(hours=hours))
            assert result.outcome == SubmissionOutcome.COOLDOWN_ACTIVE

        assert (incident.status, incident.assigned_at, incident.sla_deadline, incident.context) == snapshot

    async def test_quality_gate_rejection_creates_nothing(
        self, test_db, engine, technician_factory, now
    ):
        await technician_factory(specialization="Plumbing")

        result = await engine.submit_alert(
            test_db,
            {"location": "Block A", "category": "water", "days_to_failure": 25, "confidence": 90},
            now=now,
        )

        assert result.outcome == SubmissionOutcome.QUALITY_GATE_REJECTED
        assert result.incident_id is None
        assert "Days to failure 25" in result.reason
        assert await incident_count(test_db) == 0

    async def test_skips_technician_at_capacity(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        full = await technician_factory(specialization="Plumbing", current_assignments=2, max_concurrent=2)
        fallback = await technician_factory(specialization="General")

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.technician_id == fallback.id
        assert full.current_assignments == 2

    async def test_duplicate_window_defers_to_open_incident(
        self, test_db, engine, technician_factory, incident_factory, water_alert, now
    ):
        await technician_factory(specialization="Plumbing")
        existing = await incident_factory(created_at=now - timedelta(hours=2))

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.DUPLICATE_WINDOW_ACTIVE
        assert result.incident_id == existing.id
        assert existing.context["duplicate_count"] == 1
        assert await incident_count(test_db) == 1
        assert IncidentEventType.DUPLICATE_SUPPRESSED in await event_types(test_db, existing.id)

    async def test_no_technician_leaves_incident_unassigned(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        await technician_factory(available=False)

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.NO_TECHNICIAN_AVAILABLE
        assert result.to_public() is None

        incident = await test_db.get(Incident, result.incident_id)
        assert incident.status == IncidentStatus.NEW
        assert incident.assigned_technician_id is None
        assert incident.sla_deadline is None
        assert await event_types(test_db, incident.id) == {
            IncidentEventType.ALERT_INGESTED,
            IncidentEventType.ASSIGNMENT_DEFERRED,
        }

    async def test_system_rate_limit_denies_assignment(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        plumber = await technician_factory(specialization="Plumbing")
        test_db.add(RateLimitCounter(subject=SYSTEM_SUBJECT, day=now.date(), count=15))
        await test_db.commit()

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.RATE_LIMITED
        assert "System reached 15" in result.reason
        assert plumber.current_assignments == 0

        incident = await test_db.get(Incident, result.incident_id)
        assert incident.assigned_technician_id is None

    async def test_technician_rate_limit(
        self, test_db, engine, technician_factory, now
    ):
        plumber = await technician_factory(specialization="Plumbing", max_concurrent=5)
        for i in range(3):
            result = await engine.submit_alert(
                test_db,
                {"location": f"Block {i}", "category": "water", "days_to_failure": 3},
                now=now,
            )
            assert result.accepted

        fourth = await engine.submit_alert(
            test_db,
            {"location": "Block 9", "category": "water", "days_to_failure": 3},
            now=now,
        )

        assert fourth.outcome == SubmissionOutcome.RATE_LIMITED
        assert plumber.current_assignments == 3

    async def test_capacity_never_exceeded(self, test_db, engine, technician_factory, now):
        techs = [
            await technician_factory(specialization="Plumbing"),
            await technician_factory(specialization="General"),
        ]

        outcomes = []
        for i in range(5):
            result = await engine.submit_alert(
                test_db,
                {"location": f"Hall {i}", "category": "water", "days_to_failure": 2},
                now=now,
            )
            outcomes.append(result.outcome)

        assert outcomes.count(SubmissionOutcome.ACCEPTED) == 4
        assert outcomes[-1] == SubmissionOutcome.NO_TECHNICIAN_AVAILABLE
        for tech in techs:
            assert 0 <= tech.current_assignments <= tech.max_concurrent

    async def test_second_assignment_gets_next_free_slot(
        self, test_db, engine, technician_factory, now
    ):
        await technician_factory(specialization="Plumbing")

        first = await engine.submit_alert(
            test_db, {"location": "Hall 1", "category": "water", "days_to_failure": 2}, now=now
        )
        second = await engine.submit_alert(
            test_db, {"location": "Hall 2", "category": "water", "days_to_failure": 2}, now=now
        )

        first_slot = await test_db.get(Schedule, first.schedule_id)
        second_slot = await test_db.get(Schedule, second.schedule_id)
        assert second_slot.scheduled_time == first_slot.ends_at

    async def test_report_skips_quality_gate(self, test_db, engine, technician_factory, user_factory, now):
        reporter = await user_factory()
        electrician = await technician_factory(specialization="Electrical")

        result = await engine.submit_alert(
            test_db,
            {
                "location": "Library",
                "category": "Electrical",
                "source": "report",
                "description": "Sparks from the socket by the window",
                "reported_by": str(reporter.id),
            },
            now=now,
        )

        assert result.accepted
        assert result.technician_id == electrician.id
        incident = await test_db.get(Incident, result.incident_id)
        assert incident.title == "Electrical issue at Library"
        assert incident.category == "electrical"
        assert incident.reported_by == reporter.id

    async def test_invalid_alert_raises_without_writes(self, test_db, engine, now):
        with pytest.raises(ValidationError):
            await engine.submit_alert(test_db, {"location": "Block A"}, now=now)

        with pytest.raises(ValidationError):
            await engine.submit_alert(test_db, {"location": "Block A", "category": "water"}, now=now)

        assert await incident_count(test_db) == 0

    async def test_reports_do_not_consume_daily_caps(
        self, test_db, engine, technician_factory, now
    ):
        electrician = await technician_factory(specialization="Electrical")
        test_db.add(RateLimitCounter(subject=SYSTEM_SUBJECT, day=now.date(), count=15))
        test_db.add(RateLimitCounter(subject=str(electrician.id), day=now.date(), count=3))
        await test_db.commit()

        result = await engine.submit_alert(
            test_db,
            {"location": "Library", "category": "electrical", "source": "report"},
            now=now,
        )

        assert result.accepted
        assert await counter(test_db, SYSTEM_SUBJECT, now.date()) == 15
        assert await counter(test_db, electrician.id, now.date()) == 3

    async def test_reports_leave_room_for_predictions(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        """A day of human reports still lets the first predictive alert through."""
        plumber = await technician_factory(specialization="Plumbing", max_concurrent=10)
        for i in range(4):
            report = await engine.submit_alert(
                test_db,
                {"location": f"Dorm {i}", "category": "water", "source": "report"},
                now=now,
            )
            assert report.technician_id == plumber.id

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.ACCEPTED
        assert await counter(test_db, SYSTEM_SUBJECT, now.date()) == 1
        assert await counter(test_db, plumber.id, now.date()) == 1

    async def test_lost_capacity_race_moves_to_next_candidate(
        self, test_db, engine, technician_factory, water_alert, now, monkeypatch
    ):
        """The directory read says idle, but the row filled up before the reservation."""
        taken = await technician_factory(
            specialization="Plumbing", current_assignments=2, max_concurrent=2
        )
        backup = await technician_factory(specialization="Plumbing")
        stale = Technician(
            id=taken.id,
            name=taken.name,
            email=taken.email,
            specialization="Plumbing",
            active=True,
            available=True,
            current_assignments=0,
            max_concurrent=2,
            created_at=taken.created_at,
        )

        async def stale_directory(db):
            return [stale, backup]

        monkeypatch.setattr(engine.directory, "list_technicians", stale_directory)

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.ACCEPTED
        assert result.technician_id == backup.id
        assert taken.current_assignments == 2
        assert backup.current_assignments == 1
        assert await counter(test_db, taken.id, now.date()) == 0
        assert await counter(test_db, backup.id, now.date()) == 1
        assert await counter(test_db, SYSTEM_SUBJECT, now.date()) == 1

    async def test_cooldown_ignores_location_case(
        self, test_db, engine, technician_factory, water_alert, now
    ):
        await technician_factory(specialization="Plumbing")
        first = await engine.submit_alert(test_db, water_alert, now=now)

        again = await engine.submit_alert(
            test_db, {**water_alert, "location": "  block a "}, now=now + timedelta(hours=1)
        )

        assert again.outcome == SubmissionOutcome.COOLDOWN_ACTIVE
        assert again.incident_id == first.incident_id
        assert await incident_count(test_db) == 1

    async def test_duplicate_window_ignores_location_case(
        self, test_db, engine, technician_factory, incident_factory, water_alert, now
    ):
        await technician_factory(specialization="Plumbing")
        existing = await incident_factory(location="BLOCK A", created_at=now - timedelta(hours=1))

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.outcome == SubmissionOutcome.DUPLICATE_WINDOW_ACTIVE
        assert result.incident_id == existing.id

    async def test_unbookable_slot_keeps_capacity(
        self, test_db, engine, technician_factory, water_alert, now, monkeypatch
    ):
        """Assigned without a slot: the load stays counted and the gap is recorded."""
        plumber = await technician_factory(specialization="Plumbing")

        async def no_slot(db, technician_id, earliest, duration_minutes):
            raise OverlapError("calendar locked")

        monkeypatch.setattr(engine.schedules, "find_free_slot", no_slot)

        result = await engine.submit_alert(test_db, water_alert, now=now)

        assert result.accepted
        assert result.schedule_id is None
        assert plumber.current_assignments == 1

        incident = await test_db.get(Incident, result.incident_id)
        assert incident.assigned_technician_id == plumber.id
        assert incident.context[SLOT_MISSING_KEY] is True
        assert IncidentEventType.SLOT_UNAVAILABLE in await event_types(test_db, incident.id)

        monkeypatch.undo()
        await engine.schedules.create_schedule(
            test_db, plumber.id, incident.id, now + timedelta(hours=1)
        )

        assert plumber.current_assignments == 1
        assert SLOT_MISSING_KEY not in incident.context


    @pytest.mark.parametrize("score,expected", [(2, 2), (9, 5), (0, 1)])
    async def test_classifier_priority_on_unassigned_incident(
        self, test_db, test_settings, sink, water_alert, now, score, expected
    ):
        engine = AssignmentEngine(test_settings, sink, classifier=lambda title, desc, cat: score)

        result = await engine.submit_alert(test_db, water_alert, now=now)

        incident = await test_db.get(Incident, result.incident_id)
        assert result.outcome == SubmissionOutcome.NO_TECHNICIAN_AVAILABLE
        assert incident.priority == expected

    async def test_failing_classifier_falls_back_to_default(
        self, test_db, test_settings, sink, water_alert, now
    ):
        def broken(title, description, category):
            raise RuntimeError("model offline")

        engine = AssignmentEngine(test_settings, sink, classifier=broken)

        result = await engine.submit_alert(test_db, water_alert, now=now)

        incident = await test_db.get(Incident, result.incident_id)
        assert result.outcome == SubmissionOutcome.NO_TECHNICIAN_AVAILABLE
        assert incident.priority == test_settings.default_priority


class TestProcessAlerts:

    async def test_batch_continues_past_failures(self, test_db, engine, technician_factory, now):
        await technician_factory(specialization="Plumbing")
        alerts = [
            {"location": "Block A", "category": "water", "days_to_failure": 5, "confidence": 90},
            {"location": "Block B", "category": "water", "days_to_failure": 5, "confidence": 50},
            {"location": "Block C"},
        ]

        batch = await engine.process_alerts(test_db, alerts, now=now)

        assert batch.assigned == 1
        assert batch.failed == 2
        results = batch.to_dict()["results"]
        assert results[0]["success"] is True
        assert results[1]["outcome"] == "quality_gate_rejected"
        assert results[1]["error"].startswith("Confidence 50%")
        assert results[2]["outcome"] is None
        assert results[2]["error"].startswith("Invalid alert")

    async def test_store_outage_aborts_batch(self, test_db, engine, technician_factory, now, monkeypatch):
        await technician_factory(specialization="Plumbing")

        async def store_down(*args, **kwargs):
            raise OperationalError("SELECT incidents", {}, Exception("connection refused"))

        monkeypatch.setattr(engine.guard, "find_cooldown_incident", store_down)
        alerts = [
            {"location": "Block A", "category": "water", "days_to_failure": 5, "confidence": 90},
            {"location": "Block B", "category": "water", "days_to_failure": 5, "confidence": 90},
        ]

        with pytest.raises(StoreUnavailableError):
            await engine.process_alerts(test_db, alerts, now=now)


class TestSubmissionResult:

    def test_to_dict_for_refusal(self):
        result = SubmissionResult(SubmissionOutcome.RATE_LIMITED, "cap reached")

        assert result.to_public() is None
        assert result.to_dict() == {
            "accepted": False,
            "outcome": "rate_limited",
            "reason": "cap reached",
            "incident_id": None,
            "technician_id": None,
            "sla_deadline": None,
            "schedule_id": None,
        }
