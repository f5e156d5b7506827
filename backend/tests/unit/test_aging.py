"""
Unit tests for incident aging analytics.

Ages are whole minutes since creation. An incident breaches when its age
is strictly greater than the SLA and is at risk in [0.8 * SLA, SLA].
"""
from datetime import datetime, timedelta
from uuid import uuid4

from facility_dispatch.core.analytics.aging import (
    AGING_BUCKETS,
    age_minutes,
    analyze_ages,
    bucket_label,
)

NOW = datetime(2025, 3, 10, 9, 0)


def aged(*minutes):
    return [(uuid4(), NOW - timedelta(minutes=m)) for m in minutes]


class TestAgeMinutes:

    def test_whole_minutes(self):
        assert age_minutes(NOW - timedelta(minutes=4, seconds=59), NOW) == 4

    def test_future_creation_clamps_to_zero(self):
        assert age_minutes(NOW + timedelta(minutes=3), NOW) == 0


class TestBucketLabel:

    def test_bucket_boundaries(self):
        assert bucket_label(0) == "0-5 min"
        assert bucket_label(4) == "0-5 min"
        assert bucket_label(5) == "5-10 min"
        assert bucket_label(15) == "15-30 min"
        assert bucket_label(59) == "30-60 min"
        assert bucket_label(60) == "1-2 hours"
        assert bucket_label(239) == "2-4 hours"
        assert bucket_label(240) == "4+ hours"
        assert bucket_label(10_000) == "4+ hours"


class TestAnalyzeAges:

    def test_empty_input(self):
        analysis = analyze_ages([], NOW, sla_minutes=15)

        assert analysis.total == 0
        assert analysis.average_age == 0
        assert analysis.oldest_incident_age == 0
        assert analysis.sla_breaches == 0
        assert analysis.at_risk == 0
        assert [b.range for b in analysis.buckets] == [label for label, _, _ in AGING_BUCKETS]
        assert all(b.count == 0 for b in analysis.buckets)

    def test_buckets_and_counts(self):
        incidents = aged(2, 7, 12, 20, 45, 90, 180, 300)

        analysis = analyze_ages(incidents, NOW, sla_minutes=15)

        assert analysis.total == 8
        assert [b.count for b in analysis.buckets] == [1] * 8
        assert analysis.oldest_incident_age == 300
        assert analysis.buckets[0].incident_ids == [str(incidents[0][0])]

    def test_breach_is_strictly_greater_than_sla(self):
        analysis = analyze_ages(aged(15, 16), NOW, sla_minutes=15)

        assert analysis.sla_breaches == 1

    def test_at_risk_band(self):
        # 0.8 * 15 = 12: ages 12..15 are at risk, 11 is not, 16 breaches
        analysis = analyze_ages(aged(11, 12, 15, 16), NOW, sla_minutes=15)

        assert analysis.at_risk == 2
        assert analysis.sla_breaches == 1

    def test_average_is_rounded(self):
        analysis = analyze_ages(aged(1, 2, 4), NOW, sla_minutes=15)

        assert analysis.average_age == 2
