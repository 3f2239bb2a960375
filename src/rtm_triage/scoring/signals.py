"""
Signal extraction for risk scoring.

Fetches the recent observation series and medication-adherence history
relevant to an alert. Each signal type is fetched independently under a
bounded timeout; a slow or failing source yields an empty series so the
scorer can fall back to a neutral component instead of failing the caller.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from rtm_triage.core.config.manager import ScoringConfig, SignalConfig
from rtm_triage.core.models import (
    MedicationAdherence,
    MetricDefinition,
    Observation,
    utcnow,
)
from rtm_triage.storage.base import ObservationSource

T = TypeVar("T")


class SignalExtractor:
    """Fetches scoring signals from the observation source."""

    def __init__(
        self,
        source: ObservationSource,
        config: Optional[SignalConfig] = None,
        scoring_config: Optional[ScoringConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.config = config or SignalConfig()
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._configured_metrics: Dict[str, MetricDefinition] = {
            metric_id: MetricDefinition(metric_id=metric_id, **definition)
            for metric_id, definition in (scoring_config or ScoringConfig()).metrics.items()
        }

    async def _guarded(
        self, signal: str, fetch: Callable[[], Awaitable[T]], default: T
    ) -> T:
        """Run a fetch under the configured timeout, degrading to default."""
        try:
            return await asyncio.wait_for(fetch(), timeout=self.config.fetch_timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Timed out fetching {signal} after {self.config.fetch_timeout_seconds}s, "
                f"using neutral default"
            )
        except Exception as e:
            self.logger.warning(f"Failed to fetch {signal}: {e}, using neutral default")
        return default

    async def extract_signals(
        self,
        patient_id: str,
        metric_id: Optional[str],
        lookback: Optional[timedelta] = None,
    ) -> Tuple[List[Observation], List[MedicationAdherence]]:
        """Return (observations, adherence), each in chronological order.

        Args:
            patient_id: Patient identifier
            metric_id: Metric the alert concerns; no observations without one
            lookback: Observation window (defaults to the configured days);
                adherence always uses the configured adherence window

        Returns:
            Tuple of observation series and adherence series, possibly empty
        """
        now = self.clock()
        lookback = lookback or timedelta(days=self.config.observation_lookback_days)
        observation_since = now - lookback
        adherence_since = now - timedelta(days=self.config.adherence_lookback_days)

        async def _no_observations() -> List[Observation]:
            return []

        if metric_id:
            observations_fetch = lambda: self.source.get_observations(
                patient_id, metric_id, observation_since, self.config.max_observations
            )
        else:
            observations_fetch = _no_observations

        observations, adherence = await asyncio.gather(
            self._guarded("observations", observations_fetch, []),
            self._guarded(
                "adherence",
                lambda: self.source.get_adherence(patient_id, adherence_since),
                [],
            ),
        )

        observations = sorted(observations, key=lambda o: o.recorded_at)
        adherence = sorted(adherence, key=lambda a: a.taken_at)
        return observations, adherence

    async def get_metric_definition(self, metric_id: Optional[str]) -> Optional[MetricDefinition]:
        """Metric definition from the source, else from configuration."""
        if not metric_id:
            return None
        metric = await self._guarded(
            "metric definition",
            lambda: self.source.get_metric_definition(metric_id),
            None,
        )
        if metric is not None and metric.has_normal_range:
            return metric
        return self._configured_metrics.get(metric_id, metric)
