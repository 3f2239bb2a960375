"""
Unit tests for PriorityRanker.

Tests cover:
- Dense ordering with risk and trigger-time tie-breaks
- Idempotency
- Exclusion of terminal and unranked statuses
- All-or-nothing writes and the optional Redis mirror
"""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from rtm_triage.core.config.manager import RankingConfig
from rtm_triage.core.exceptions import StorageError
from rtm_triage.core.models import AlertStatus
from rtm_triage.storage.redis import RedisQueueCache
from rtm_triage.triage.ranking import PriorityRanker, assign_ranks, rank_alerts


async def _seed(store, alerts):
    for alert in alerts:
        await store.create_alert(alert)


async def _ranks(store, organization_id="org-1"):
    return {
        a.alert_id: a.priority_rank
        for a in await store.list_alerts(organization_id=organization_id)
    }


class TestRankOrdering:

    def test_rank_alerts_orders_by_risk_then_age(self, make_alert, now):
        older = make_alert(alert_id="b", risk_score=7.0, triggered_at=now - timedelta(hours=2))
        newer = make_alert(alert_id="a", risk_score=7.0, triggered_at=now - timedelta(hours=1))
        top = make_alert(alert_id="c", risk_score=9.5)
        low = make_alert(alert_id="d", risk_score=1.0)

        ordered = rank_alerts([low, newer, top, older])

        assert [a.alert_id for a in ordered] == ["c", "b", "a", "d"]

    def test_full_ties_break_on_alert_id(self, make_alert, now):
        same = dict(risk_score=5.0, triggered_at=now)
        ranks = assign_ranks([make_alert(alert_id="z", **same), make_alert(alert_id="m", **same)])
        assert ranks == {"m": 1, "z": 2}


class TestRecalculatePriorityRanks:

    @pytest.mark.asyncio
    async def test_dense_ranks_with_max_risk_first(self, alert_store, audit_logger, make_alert, now):
        await _seed(alert_store, [
            make_alert(alert_id="a1", risk_score=3.0),
            make_alert(alert_id="a2", risk_score=8.5, status=AlertStatus.CLAIMED, claimed_by="dr-a"),
            make_alert(alert_id="a3", risk_score=8.5, triggered_at=now - timedelta(hours=3)),
            make_alert(alert_id="a4", risk_score=6.0, status=AlertStatus.ACKNOWLEDGED),
        ])
        ranker = PriorityRanker(alert_store, RankingConfig(), audit_logger)

        count = await ranker.recalculate_priority_ranks("org-1")

        assert count == 4
        assert await _ranks(alert_store) == {"a3": 1, "a2": 2, "a4": 3, "a1": 4}
        audit_logger.log_ranks_recalculated.assert_called_once()

    @pytest.mark.asyncio
    async def test_idempotent(self, alert_store, make_alert):
        await _seed(alert_store, [make_alert(risk_score=float(i % 4)) for i in range(10)])
        ranker = PriorityRanker(alert_store)

        await ranker.recalculate_priority_ranks("org-1")
        first = await _ranks(alert_store)
        await ranker.recalculate_priority_ranks("org-1")

        assert await _ranks(alert_store) == first
        assert sorted(first.values()) == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_every_non_terminal_alert_ranked(self, alert_store, make_alert):
        await _seed(alert_store, [
            make_alert(alert_id="open", risk_score=2.0),
            make_alert(alert_id="done", risk_score=9.0, status=AlertStatus.RESOLVED, priority_rank=1),
            make_alert(alert_id="muted", risk_score=9.0, status=AlertStatus.SUPPRESSED),
            make_alert(alert_id="later", risk_score=9.0, status=AlertStatus.SNOOZED),
        ])
        ranker = PriorityRanker(alert_store)

        assert await ranker.recalculate_priority_ranks("org-1") == 2
        assert await _ranks(alert_store) == {"later": 1, "open": 2, "done": None, "muted": None}

    @pytest.mark.asyncio
    async def test_ranked_statuses_are_configurable(self, alert_store, make_alert):
        await _seed(alert_store, [
            make_alert(alert_id="p", risk_score=1.0),
            make_alert(alert_id="k", risk_score=9.0, status=AlertStatus.ACKNOWLEDGED),
        ])
        ranker = PriorityRanker(alert_store, RankingConfig(ranked_statuses=["PENDING"]))

        await ranker.recalculate_priority_ranks("org-1")

        assert await _ranks(alert_store) == {"p": 1, "k": None}

    @pytest.mark.asyncio
    async def test_organizations_are_independent(self, alert_store, make_alert):
        await _seed(alert_store, [
            make_alert(alert_id="x1", organization_id="org-1"),
            make_alert(alert_id="y1", organization_id="org-2", priority_rank=1),
        ])
        ranker = PriorityRanker(alert_store)

        await ranker.recalculate_priority_ranks("org-1")

        assert await _ranks(alert_store, "org-2") == {"y1": 1}

    @pytest.mark.asyncio
    async def test_write_failure_keeps_prior_ranking(self, alert_store, make_alert):
        await _seed(alert_store, [
            make_alert(alert_id="a1", risk_score=1.0, priority_rank=1),
            make_alert(alert_id="a2", risk_score=9.0, priority_rank=2),
        ])
        alert_store.write_priority_ranks = AsyncMock(side_effect=StorageError("deadlock"))
        ranker = PriorityRanker(alert_store)

        with pytest.raises(StorageError):
            await ranker.recalculate_priority_ranks("org-1")

        assert await _ranks(alert_store) == {"a1": 1, "a2": 2}

    @pytest.mark.asyncio
    async def test_alert_resolved_during_recompute_gets_no_rank(
        self, alert_store, make_alert, monkeypatch
    ):
        await _seed(alert_store, [
            make_alert(alert_id="a1", risk_score=9.0),
            make_alert(alert_id="a2", risk_score=5.0),
        ])
        list_alerts = alert_store.list_alerts

        async def list_then_resolve(**kwargs):
            alerts = await list_alerts(**kwargs)
            await alert_store.transition_alert(
                "a1", {AlertStatus.PENDING},
                {"status": AlertStatus.RESOLVED, "priority_rank": None},
            )
            return alerts

        monkeypatch.setattr(alert_store, "list_alerts", list_then_resolve)
        cache = Mock(spec=RedisQueueCache)
        cache.publish_ranking = AsyncMock()
        ranker = PriorityRanker(alert_store, RankingConfig(mirror_to_redis=True), queue_cache=cache)

        assert await ranker.recalculate_priority_ranks("org-1") == 1

        assert await _ranks(alert_store) == {"a1": None, "a2": 1}
        cache.publish_ranking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mirror_to_redis(self, alert_store, make_alert):
        await _seed(alert_store, [make_alert(alert_id="a1")])
        cache = Mock(spec=RedisQueueCache)
        cache.publish_ranking = AsyncMock()
        ranker = PriorityRanker(alert_store, RankingConfig(mirror_to_redis=True), queue_cache=cache)

        await ranker.recalculate_priority_ranks("org-1")

        cache.publish_ranking.assert_awaited_once_with("org-1", {"a1": 1})

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_fail_recompute(self, alert_store, make_alert):
        await _seed(alert_store, [make_alert(alert_id="a1")])
        cache = Mock(spec=RedisQueueCache)
        cache.publish_ranking = AsyncMock(side_effect=StorageError("redis down"))
        ranker = PriorityRanker(alert_store, RankingConfig(mirror_to_redis=True), queue_cache=cache)

        assert await ranker.recalculate_priority_ranks("org-1") == 1
        assert await _ranks(alert_store) == {"a1": 1}
