"""
PostgreSQL storage backend for RTM-Triage.

This module provides the PostgreSQL implementation of the alert store and
the read-only observation source. Claims and lifecycle transitions are
single conditional UPDATE ... RETURNING statements, and priority ranks are
written inside one transaction.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Collection, Dict, List, Optional

import asyncpg

from rtm_triage.core.exceptions import ConflictError, StorageError
from rtm_triage.core.models import (
    TERMINAL_STATUSES,
    Alert,
    AlertStatus,
    MedicationAdherence,
    MetricDefinition,
    Observation,
)
from rtm_triage.storage.base import AlertStore, ObservationSource, compact_ranks

ALERT_COLUMNS = (
    "alert_id", "organization_id", "patient_id", "rule_id", "metric_id",
    "severity", "status", "risk_score", "risk_components", "priority_rank",
    "triggered_at", "sla_breach_time",
    "claimed_by", "claimed_at", "acknowledged_by", "acknowledged_at",
    "resolved_by", "resolved_at", "resolution_notes", "time_spent_minutes",
    "intervention_type", "patient_outcome",
    "snoozed_by", "snoozed_at", "snoozed_until",
    "suppressed_by", "suppressed_at", "suppression_reason",
    "is_escalated", "escalated_at",
    "message", "context", "created_at", "updated_at",
)
JSON_COLUMNS = {"risk_components", "context"}

# Columns a lifecycle transition may touch
TRANSITION_COLUMNS = {
    "status", "claimed_by", "claimed_at", "acknowledged_by", "acknowledged_at",
    "resolved_by", "resolved_at", "resolution_notes", "time_spent_minutes",
    "intervention_type", "patient_outcome",
    "snoozed_by", "snoozed_at", "snoozed_until",
    "suppressed_by", "suppressed_at", "suppression_reason",
    "is_escalated", "escalated_at", "priority_rank",
}

TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class PostgreSQLAlertStore(AlertStore):
    """PostgreSQL alert store implementation."""

    def __init__(
        self,
        connection_string: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.pool = None

    async def initialize(self) -> None:
        """Initialize PostgreSQL connection pool and create tables."""
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
            )
            await self._create_tables()
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(f"Failed to initialize PostgreSQL storage: {str(e)}")

    async def _create_tables(self) -> None:
        """Create necessary tables."""
        async with self.pool.acquire() as conn:
            await conn.execute('''
                CREATE TABLE IF NOT EXISTS alerts (
                    alert_id VARCHAR(255) PRIMARY KEY,
                    organization_id VARCHAR(255) NOT NULL,
                    patient_id VARCHAR(255) NOT NULL,
                    rule_id VARCHAR(255) NOT NULL,
                    metric_id VARCHAR(255),
                    severity VARCHAR(16) NOT NULL,
                    status VARCHAR(16) NOT NULL,
                    risk_score DOUBLE PRECISION NOT NULL DEFAULT 0
                        CHECK (risk_score >= 0 AND risk_score <= 10),
                    risk_components JSONB NOT NULL DEFAULT '{}',
                    priority_rank INTEGER CHECK (priority_rank >= 1),
                    triggered_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    sla_breach_time TIMESTAMP WITH TIME ZONE,
                    claimed_by VARCHAR(255),
                    claimed_at TIMESTAMP WITH TIME ZONE,
                    acknowledged_by VARCHAR(255),
                    acknowledged_at TIMESTAMP WITH TIME ZONE,
                    resolved_by VARCHAR(255),
                    resolved_at TIMESTAMP WITH TIME ZONE,
                    resolution_notes TEXT,
                    time_spent_minutes INTEGER,
                    intervention_type VARCHAR(64),
                    patient_outcome VARCHAR(64),
                    snoozed_by VARCHAR(255),
                    snoozed_at TIMESTAMP WITH TIME ZONE,
                    snoozed_until TIMESTAMP WITH TIME ZONE,
                    suppressed_by VARCHAR(255),
                    suppressed_at TIMESTAMP WITH TIME ZONE,
                    suppression_reason TEXT,
                    is_escalated BOOLEAN NOT NULL DEFAULT FALSE,
                    escalated_at TIMESTAMP WITH TIME ZONE,
                    message TEXT NOT NULL DEFAULT '',
                    context JSONB NOT NULL DEFAULT '{}',
                    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            await conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_alerts_org_status
                ON alerts (organization_id, status)
            ''')

            await conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_alerts_org_rank
                ON alerts (organization_id, priority_rank)
            ''')

            await conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_alerts_patient_metric
                ON alerts (patient_id, metric_id)
            ''')

    def _row_to_alert(self, row: asyncpg.Record) -> Alert:
        data = dict(row)
        for column in JSON_COLUMNS:
            if isinstance(data.get(column), str):
                data[column] = json.loads(data[column])
        return Alert.model_validate(data)

    def _to_db(self, column: str, value: Any) -> Any:
        if column in JSON_COLUMNS:
            return json.dumps(value or {}, default=self._json_serializer)
        if isinstance(value, Enum):
            return value.value
        return value

    def _json_serializer(self, obj):
        """JSON serializer for datetime objects."""
        if isinstance(obj, datetime):
            return obj.isoformat()
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    async def create_alert(self, alert: Alert) -> Alert:
        data = alert.model_dump()
        placeholders = ", ".join(f"${i}" for i in range(1, len(ALERT_COLUMNS) + 1))
        query = f'''
            INSERT INTO alerts ({", ".join(ALERT_COLUMNS)})
            VALUES ({placeholders})
            RETURNING *
        '''
        values = [self._to_db(c, data[c]) for c in ALERT_COLUMNS]
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *values)
            return self._row_to_alert(row)
        except asyncpg.UniqueViolationError:
            raise ConflictError(f"Alert {alert.alert_id} already exists", alert.alert_id)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to create alert: {str(e)}")

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM alerts WHERE alert_id = $1", alert_id
                )
            return self._row_to_alert(row) if row else None
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to get alert: {str(e)}")

    async def list_alerts(
        self,
        organization_id: Optional[str] = None,
        statuses: Optional[Collection[AlertStatus]] = None,
    ) -> List[Alert]:
        clauses = []
        params: List[Any] = []
        if organization_id is not None:
            params.append(organization_id)
            clauses.append(f"organization_id = ${len(params)}")
        if statuses is not None:
            params.append([s.value for s in statuses])
            clauses.append(f"status = ANY(${len(params)}::text[])")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT * FROM alerts {where} ORDER BY triggered_at ASC", *params
                )
            return [self._row_to_alert(row) for row in rows]
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to list alerts: {str(e)}")

    async def claim_alert(
        self, alert_id: str, clinician_id: str, claimed_at: datetime
    ) -> Optional[Alert]:
        query = '''
            UPDATE alerts
            SET claimed_by = $2,
                claimed_at = $3,
                status = CASE WHEN status = 'PENDING' THEN 'CLAIMED' ELSE status END,
                updated_at = CURRENT_TIMESTAMP
            WHERE alert_id = $1
              AND claimed_by IS NULL
              AND status IN ('PENDING', 'ACKNOWLEDGED')
            RETURNING *
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, alert_id, clinician_id, claimed_at)
            return self._row_to_alert(row) if row else None
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to claim alert: {str(e)}")

    async def transition_alert(
        self,
        alert_id: str,
        from_statuses: Collection[AlertStatus],
        changes: Dict[str, Any],
        expected_claimed_by: Optional[str] = None,
        expect_unclaimed: bool = False,
    ) -> Optional[Alert]:
        unknown = set(changes) - TRANSITION_COLUMNS
        if unknown:
            raise StorageError(f"Columns not updatable by a transition: {sorted(unknown)}")

        params: List[Any] = [alert_id, [s.value for s in from_statuses]]
        assignments = []
        for column, value in changes.items():
            params.append(self._to_db(column, value))
            assignments.append(f"{column} = ${len(params)}")
        assignments.append("updated_at = CURRENT_TIMESTAMP")

        query = f'''
            UPDATE alerts SET {", ".join(assignments)}
            WHERE alert_id = $1 AND status = ANY($2::text[])
        '''
        if expected_claimed_by is not None:
            params.append(expected_claimed_by)
            query += f" AND claimed_by = ${len(params)}"
        if expect_unclaimed:
            query += " AND claimed_by IS NULL"
        query += " RETURNING *"

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *params)
            return self._row_to_alert(row) if row else None
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to transition alert: {str(e)}")

    async def update_risk_score(
        self, alert_id: str, risk_score: float, components: Dict[str, Any]
    ) -> Optional[Alert]:
        query = '''
            UPDATE alerts
            SET risk_score = $2, risk_components = $3, updated_at = CURRENT_TIMESTAMP
            WHERE alert_id = $1 AND status <> ALL($4::text[])
            RETURNING *
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    query, alert_id, risk_score, json.dumps(components), TERMINAL_VALUES
                )
            return self._row_to_alert(row) if row else None
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to update risk score: {str(e)}")

    async def update_sla_breach_time(
        self, alert_id: str, sla_breach_time: datetime
    ) -> Optional[Alert]:
        query = '''
            UPDATE alerts
            SET sla_breach_time = $2, updated_at = CURRENT_TIMESTAMP
            WHERE alert_id = $1 AND status <> ALL($3::text[])
            RETURNING *
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, alert_id, sla_breach_time, TERMINAL_VALUES)
            return self._row_to_alert(row) if row else None
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to update SLA breach time: {str(e)}")

    async def write_priority_ranks(
        self,
        organization_id: str,
        ranks: Dict[str, int],
        ranked_statuses: Collection[AlertStatus],
    ) -> int:
        statuses = [s.value for s in ranked_statuses]
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    if ranks:
                        # Lock the rows still in the ranked set; concurrent transitions wait
                        rows = await conn.fetch('''
                            SELECT alert_id FROM alerts
                            WHERE organization_id = $1
                              AND alert_id = ANY($2::text[])
                              AND status = ANY($3::text[])
                            FOR UPDATE
                        ''', organization_id, list(ranks), statuses)
                        ranks = compact_ranks(ranks, {row["alert_id"] for row in rows})

                    # Clear first so the per-row updates never collide with stale ranks
                    await conn.execute('''
                        UPDATE alerts SET priority_rank = NULL
                        WHERE organization_id = $1 AND priority_rank IS NOT NULL
                    ''', organization_id)
                    if ranks:
                        await conn.executemany('''
                            UPDATE alerts SET priority_rank = $3
                            WHERE alert_id = $1 AND organization_id = $2
                              AND status = ANY($4::text[])
                        ''', [
                            (alert_id, organization_id, rank, statuses)
                            for alert_id, rank in ranks.items()
                        ])
            return len(ranks)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to write priority ranks: {str(e)}")

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval('SELECT 1')
                return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close PostgreSQL connection pool."""
        if self.pool:
            await self.pool.close()


class PostgreSQLObservationSource(ObservationSource):
    """Reads observations, adherence and metric definitions owned by other services."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_observations(
        self, patient_id: str, metric_id: str, since: datetime, limit: int
    ) -> List[Observation]:
        # Latest N within the window, returned oldest first
        query = '''
            SELECT patient_id, metric_id, value, recorded_at, context FROM (
                SELECT patient_id, metric_id, value, recorded_at, context
                FROM observations
                WHERE patient_id = $1 AND metric_id = $2 AND recorded_at >= $3
                ORDER BY recorded_at DESC
                LIMIT $4
            ) recent
            ORDER BY recorded_at ASC
        '''
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, patient_id, metric_id, since, limit)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to get observations: {str(e)}")

        observations = []
        for row in rows:
            value = row["value"]
            if isinstance(value, str):
                value = json.loads(value)
            if isinstance(value, dict):
                value = value.get("value")
            if value is None:
                continue
            observations.append(Observation(
                patient_id=row["patient_id"],
                metric_id=row["metric_id"],
                value=float(value),
                recorded_at=row["recorded_at"],
                context=row["context"],
            ))
        return observations

    async def get_adherence(
        self, patient_id: str, since: datetime
    ) -> List[MedicationAdherence]:
        query = '''
            SELECT ma.patient_medication_id, ma.taken_at, ma.adherence_score
            FROM medication_adherence ma
            JOIN patient_medications pm ON pm.id = ma.patient_medication_id
            WHERE pm.patient_id = $1 AND pm.is_active AND ma.taken_at >= $2
            ORDER BY ma.taken_at ASC
        '''
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, patient_id, since)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to get medication adherence: {str(e)}")
        return [
            MedicationAdherence(
                patient_medication_id=str(row["patient_medication_id"]),
                taken_at=row["taken_at"],
                adherence_score=float(row["adherence_score"]),
            )
            for row in rows
        ]

    async def get_metric_definition(self, metric_id: str) -> Optional[MetricDefinition]:
        query = '''
            SELECT id, name, normal_range FROM metric_definitions WHERE id = $1
        '''
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, metric_id)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Failed to get metric definition: {str(e)}")
        if not row:
            return None

        normal_range = row["normal_range"] or {}
        if isinstance(normal_range, str):
            normal_range = json.loads(normal_range)
        return MetricDefinition(
            metric_id=str(row["id"]),
            name=row["name"],
            normal_min=normal_range.get("min", normal_range.get("minValue")),
            normal_max=normal_range.get("max", normal_range.get("maxValue")),
            worsening_direction=normal_range.get("worseningDirection", "away"),
        )
