"""Unit tests for the triage queue view."""

from datetime import timedelta

import pytest

from rtm_triage.core.config.manager import SLAConfig
from rtm_triage.core.exceptions import ValidationError
from rtm_triage.core.models import AlertStatus, Severity
from rtm_triage.triage.queue import QueueFilters, build_triage_queue
from rtm_triage.triage.sla import SLACalculator


@pytest.fixture
def sla(clock):
    return SLACalculator(SLAConfig(), clock)


@pytest.fixture
def alerts(make_alert, now):
    return [
        make_alert(alert_id="a", risk_score=9.1, priority_rank=1,
                   severity=Severity.CRITICAL, sla_breach_time=now - timedelta(minutes=5)),
        make_alert(alert_id="b", risk_score=6.5, priority_rank=2, status=AlertStatus.CLAIMED,
                   claimed_by="dr-a", sla_breach_time=now + timedelta(minutes=20)),
        make_alert(alert_id="c", risk_score=4.2, priority_rank=3, severity=Severity.MEDIUM,
                   sla_breach_time=now + timedelta(hours=6)),
        make_alert(alert_id="d", risk_score=1.0, priority_rank=4, severity=Severity.LOW,
                   status=AlertStatus.ACKNOWLEDGED, claimed_by="dr-b",
                   sla_breach_time=now + timedelta(hours=20)),
        make_alert(alert_id="other-org", organization_id="org-2", risk_score=9.9),
    ]


def _ids(page):
    return [entry.alert.alert_id for entry in page.entries]


class TestBuildTriageQueue:

    def test_default_view(self, alerts, sla, now):
        page = build_triage_queue("org-1", alerts, sla, now=now)

        assert _ids(page) == ["a", "b", "c", "d"]
        first = page.entries[0]
        assert first.risk_level == "critical"
        assert first.sla_status == "breached"
        assert first.time_remaining_minutes == -5
        assert page.entries[1].is_claimed
        assert page.total == 4
        assert page.total_pages == 1

    def test_summary_counts(self, alerts, sla, now):
        summary = build_triage_queue("org-1", alerts, sla, now=now).summary

        assert summary.total == 4
        assert summary.pending == 2
        assert summary.breached == 1
        assert summary.approaching == 1
        assert summary.unclaimed == 2

    def test_unranked_alerts_follow_ranked(self, make_alert, sla, now):
        alerts = [
            make_alert(alert_id="new", risk_score=9.9),
            make_alert(alert_id="old", risk_score=2.0, priority_rank=1),
        ]

        page = build_triage_queue("org-1", alerts, sla, now=now)

        assert _ids(page) == ["old", "new"]

    @pytest.mark.parametrize(
        "sort_by,expected",
        [
            ("risk_score", ["a", "b", "c", "d"]),
            ("sla_breach_time", ["a", "b", "c", "d"]),
        ],
    )
    def test_sort_options(self, alerts, sla, now, sort_by, expected):
        page = build_triage_queue("org-1", alerts, sla, sort_by=sort_by, now=now)
        assert _ids(page) == expected

    def test_sort_by_triggered_at(self, make_alert, sla, now):
        alerts = [
            make_alert(alert_id="late", triggered_at=now - timedelta(minutes=1)),
            make_alert(alert_id="early", triggered_at=now - timedelta(hours=1)),
        ]
        page = build_triage_queue("org-1", alerts, sla, sort_by="triggered_at", now=now)
        assert _ids(page) == ["early", "late"]

    def test_filters(self, alerts, sla, now):
        def ids_for(**kwargs):
            return _ids(build_triage_queue("org-1", alerts, sla, QueueFilters(**kwargs), now=now))

        assert ids_for(statuses=["PENDING"]) == ["a", "c"]
        assert ids_for(severities=["CRITICAL", "LOW"]) == ["a", "d"]
        assert ids_for(min_risk=4.2, max_risk=7.0) == ["b", "c"]
        assert ids_for(claimed_by="unclaimed") == ["a", "c"]
        assert ids_for(claimed_by="dr-b") == ["d"]
        assert ids_for(sla_status="approaching") == ["b"]

    def test_pagination(self, make_alert, sla, now):
        alerts = [make_alert(risk_score=float(i) / 2) for i in range(5)]

        page = build_triage_queue("org-1", alerts, sla, page=2, limit=2, now=now)

        assert len(page.entries) == 2
        assert page.total == 5
        assert page.total_pages == 3
        assert page.summary.total == 5
        last = build_triage_queue("org-1", alerts, sla, page=3, limit=2, now=now)
        assert len(last.entries) == 1

    def test_empty_queue(self, sla, now):
        page = build_triage_queue("org-1", [], sla, now=now)
        assert page.entries == []
        assert page.total_pages == 0

    @pytest.mark.parametrize(
        "kwargs",
        [{"sort_by": "name"}, {"page": 0}, {"limit": 0}, {"limit": 500}],
    )
    def test_invalid_paging(self, alerts, sla, now, kwargs):
        with pytest.raises(ValidationError):
            build_triage_queue("org-1", alerts, sla, now=now, **kwargs)

    def test_invalid_sla_status_filter(self):
        with pytest.raises(ValueError):
            QueueFilters(sla_status="late")
