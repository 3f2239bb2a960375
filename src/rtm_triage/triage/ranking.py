"""
Priority ranking of active alerts.

Recomputes a dense 1..N ordering of an organization's ranked alerts by
(risk_score DESC, triggered_at ASC, alert_id ASC). The recompute is a pure
function of stored state, so running it twice yields the same ranks.
"""

import logging
import time
from typing import Dict, List, Optional, Sequence

from rtm_triage.audit.logger import AuditLogger
from rtm_triage.core.config.manager import RankingConfig
from rtm_triage.core.exceptions import StorageError
from rtm_triage.core.models import Alert
from rtm_triage.storage.base import AlertStore
from rtm_triage.storage.redis import RedisQueueCache


def rank_alerts(alerts: Sequence[Alert]) -> List[Alert]:
    """Alerts in priority order, best first."""
    return sorted(
        alerts,
        key=lambda a: (-a.risk_score, a.triggered_at, a.alert_id),
    )


def assign_ranks(alerts: Sequence[Alert]) -> Dict[str, int]:
    """Map alert id to its dense priority rank."""
    return {alert.alert_id: rank for rank, alert in enumerate(rank_alerts(alerts), start=1)}


class PriorityRanker:
    """Recomputes and persists organization-wide priority ranks."""

    def __init__(
        self,
        store: AlertStore,
        config: Optional[RankingConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
        queue_cache: Optional[RedisQueueCache] = None,
    ):
        self.store = store
        self.config = config or RankingConfig()
        self.audit_logger = audit_logger
        self.queue_cache = queue_cache
        self.logger = logging.getLogger(__name__)

    async def recalculate_priority_ranks(self, organization_id: str) -> int:
        """Re-rank every ranked alert of an organization.

        Alerts of the organization outside the ranked statuses lose their
        rank in the same write.

        Args:
            organization_id: Organization whose queue is re-ranked

        Returns:
            Number of alerts that received a rank

        Raises:
            StorageError: If the ranking could not be persisted; the
                previously stored ranking is left intact
        """
        started = time.monotonic()
        alerts = await self.store.list_alerts(
            organization_id=organization_id,
            statuses=set(self.config.ranked_statuses),
        )
        ranks = assign_ranks(alerts)

        try:
            count = await self.store.write_priority_ranks(
                organization_id, ranks, self.config.ranked_statuses
            )
        except StorageError as e:
            self.logger.error(f"Priority rank write failed for {organization_id}: {e}")
            raise

        duration = time.monotonic() - started
        self.logger.info(
            f"Ranked {count} alerts for organization {organization_id} in {duration:.3f}s"
        )
        if self.audit_logger:
            self.audit_logger.log_ranks_recalculated(organization_id, count, round(duration, 4))

        if count == len(ranks):
            await self._mirror(organization_id, ranks)
        else:
            # The transition that shrank the set re-ranks and mirrors on its own
            self.logger.info(
                f"{len(ranks) - count} alerts of {organization_id} left the ranked set "
                f"during recompute; mirror update skipped"
            )
        return count

    async def _mirror(self, organization_id: str, ranks: Dict[str, int]) -> None:
        if not (self.config.mirror_to_redis and self.queue_cache):
            return
        try:
            await self.queue_cache.publish_ranking(organization_id, ranks)
        except StorageError as e:
            self.logger.warning(f"Queue mirror update failed for {organization_id}: {e}")
