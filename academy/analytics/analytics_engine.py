"""Submission history queries and aggregate statistics."""

from typing import Dict, List, Optional
from datetime import datetime, date, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import numpy as np
import structlog

from academy.core.config import settings
from academy.gamification.submission_aggregator import acceptance_rate
from academy.models.submission import Submission, SubmissionStatus

logger = structlog.get_logger()


class AnalyticsEngine:
    """Engine for reading a learner's submission history."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_submissions(
        self,
        learner_id: str,
        status: Optional[SubmissionStatus] = None,
        language: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Submission]:
        """Learner submissions, newest first."""
        query = select(Submission).where(Submission.learner_id == learner_id)

        if status:
            query = query.where(Submission.status == status.value)

        if language:
            query = query.where(Submission.language == language)

        query = query.order_by(Submission.created_at.desc(), Submission.id).offset(offset).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def submission_stats(self, learner_id: str, today: Optional[date] = None) -> Dict:
        """Totals, per-status and per-language counts, runtimes and recent activity."""
        today = today or datetime.utcnow().date()

        status_counts = await self.db.execute(
            select(
                Submission.status,
                func.count(Submission.id).label("count")
            ).where(
                Submission.learner_id == learner_id
            ).group_by(Submission.status)
        )
        by_status = {row.status: row.count for row in status_counts}

        language_counts = await self.db.execute(
            select(
                Submission.language,
                func.count(Submission.id).label("count")
            ).where(
                Submission.learner_id == learner_id
            ).group_by(Submission.language)
        )
        by_language = {row.language: row.count for row in language_counts}

        total = sum(by_status.values())
        accepted = by_status.get(SubmissionStatus.ACCEPTED.value, 0)

        runtimes = await self._accepted_runtimes(learner_id)
        median_runtime, p90_runtime = self._runtime_percentiles(runtimes)

        return {
            "learner_id": learner_id,
            "total": total,
            "accepted": accepted,
            "acceptance_rate": acceptance_rate(accepted, total),
            "by_status": by_status,
            "by_language": by_language,
            "median_runtime_ms": median_runtime,
            "p90_runtime_ms": p90_runtime,
            "recent_activity": await self._recent_activity(learner_id, today),
        }

    async def _accepted_runtimes(self, learner_id: str) -> List[float]:
        result = await self.db.execute(
            select(Submission.runtime_ms).where(
                Submission.learner_id == learner_id,
                Submission.status == SubmissionStatus.ACCEPTED.value,
                Submission.runtime_ms.isnot(None),
            )
        )
        return [row.runtime_ms for row in result]

    def _runtime_percentiles(self, runtimes: List[float]):
        if not runtimes:
            return None, None
        values = np.asarray(runtimes, dtype=float)
        return float(np.median(values)), float(np.percentile(values, 90))

    async def _recent_activity(self, learner_id: str, today: date) -> List[Dict]:
        """One bucket per day for the last ``ACTIVITY_WINDOW_DAYS`` days, oldest first."""
        days = settings.ACTIVITY_WINDOW_DAYS
        start = today - timedelta(days=days - 1)

        result = await self.db.execute(
            select(Submission.created_at, Submission.status).where(
                Submission.learner_id == learner_id,
                Submission.created_at >= datetime.combine(start, datetime.min.time()),
            )
        )

        buckets = {start + timedelta(days=i): {"count": 0, "accepted": 0} for i in range(days)}
        for row in result:
            bucket = buckets.get(row.created_at.date())
            if bucket is None:
                continue
            bucket["count"] += 1
            if row.status == SubmissionStatus.ACCEPTED.value:
                bucket["accepted"] += 1

        return [{"date": day, **counts} for day, counts in sorted(buckets.items())]
