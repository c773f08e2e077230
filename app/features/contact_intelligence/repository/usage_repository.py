"""
Append-only usage ledger.

Monthly spend is always derived by aggregating records inside the month
window, never by read-modify-write on a counter, so overlapping requests
from the same user cannot lose updates.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.features.contact_intelligence.domain.models import UsageRecord, UsageTotals
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class UsageRepositoryError(DatabaseError):
    """Raised when the usage ledger cannot be read or written."""


class UsageRepository:
    @classmethod
    async def insert(cls, record: UsageRecord) -> None:
        query = """
            INSERT INTO contact_usage_records (
                user_id, cost, model, provider, feature, run_type,
                billable_run, session_id, metadata, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        inserted = await execute_query(
            query,
            (
                record.user_id,
                record.cost,
                record.model,
                record.provider,
                record.feature,
                record.run_type.value,
                record.billable_run,
                record.session_id,
                Jsonb(record.metadata or {}),
                record.created_at,
            ),
        )
        if inserted != 1:
            raise UsageRepositoryError(
                "Usage record was not written", operation="insert_usage", recoverable=False
            )

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def monthly_totals(cls, user_id: str, since: datetime) -> UsageTotals:
        query = """
            SELECT
                COALESCE(SUM(cost), 0) AS total_cost,
                COUNT(*) FILTER (WHERE billable_run AND run_type = 'ai') AS runs_ai,
                COUNT(*) FILTER (WHERE billable_run AND run_type = 'api') AS runs_api
            FROM contact_usage_records
            WHERE user_id = %s AND created_at >= %s
        """
        row = await fetch_one(query, (user_id, since))
        if not row:
            return UsageTotals()

        return UsageTotals(
            total_cost=float(row["total_cost"] or 0),
            runs_ai=int(row["runs_ai"] or 0),
            runs_api=int(row["runs_api"] or 0),
        )

    @classmethod
    async def monthly_breakdown(cls, user_id: str, since: datetime) -> dict[str, Any]:
        """Cost, call count and billable runs grouped by feature and by provider."""
        query = """
            SELECT
                feature,
                COALESCE(provider, 'unknown') AS provider,
                COALESCE(SUM(cost), 0) AS cost,
                COUNT(*) AS calls,
                COUNT(*) FILTER (WHERE billable_run) AS runs
            FROM contact_usage_records
            WHERE user_id = %s AND created_at >= %s
            GROUP BY feature, COALESCE(provider, 'unknown')
        """
        rows = await fetch_all(query, (user_id, since))

        by_feature: dict[str, dict[str, Any]] = {}
        by_provider: dict[str, dict[str, Any]] = {}
        for row in rows:
            for bucket, key in ((by_feature, row["feature"]), (by_provider, row["provider"])):
                entry = bucket.setdefault(key, {"cost": 0.0, "calls": 0, "runs": 0})
                entry["cost"] += float(row["cost"] or 0)
                entry["calls"] += int(row["calls"] or 0)
                entry["runs"] += int(row["runs"] or 0)

        return {"by_feature": by_feature, "by_provider": by_provider}
