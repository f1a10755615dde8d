"""
citebot/services/quota_service.py
---------------------------------
Per-identifier daily usage quotas.

The identifier is the chat session id, or the client address when the caller
has no session yet. Each plan has a daily question limit; every plan except
"free" is unlimited.

Import
------
    from citebot.services.quota_service import QuotaService

    svc = QuotaService(store)
    status = svc.check_and_consume("203.0.113.7")
    if not status.allowed:
        ...
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from citebot.models.domain._time import local_now, next_local_midnight, start_of_local_day
from citebot.models.domain.quota import QuotaRecord, QuotaStatus
from citebot.storage.base import QuotaStore

logger = logging.getLogger(__name__)

UNLIMITED = -1
FREE_DAILY_LIMIT = 10

PLAN_LIMITS: Dict[str, int] = {
    "free": FREE_DAILY_LIMIT,
    "essential": UNLIMITED,
    "premium": UNLIMITED,
    "institutional": UNLIMITED,
}


def limit_for(plan: str) -> int:
    return PLAN_LIMITS.get(plan, FREE_DAILY_LIMIT)


def quota_exceeded_message(limit: int) -> str:
    return (
        f"Quota journalier atteint ({limit} questions/jour). "
        "Passez à l'offre Essentiel pour un accès illimité."
    )


class QuotaService:
    """Quota gate in front of every chat turn."""

    def __init__(
        self,
        store: QuotaStore,
        clock: Callable[[], datetime] = local_now,
    ):
        self.store = store
        self.clock = clock

    # ── Gate ──────────────────────────────────────────────────────────────────

    def check_and_consume(self, identifier: str) -> QuotaStatus:
        """
        Reset the daily counter on a new local day, then consume one question.

        On any store failure the request is allowed (fail-open) and a default
        free-tier projection is reported.
        """
        now = self.clock()
        start_of_day = start_of_local_day(now)
        reset_at = next_local_midnight(now)

        try:
            record = self.store.get_or_create(identifier, start_of_day)
            if record.quota_reset_at < start_of_day:
                record = self.store.reset_if_stale(identifier, start_of_day)
                logger.info("Daily quota reset for %s", identifier)

            limit = limit_for(record.plan)
            updated = self.store.consume(identifier, limit, now)
        except Exception as e:
            logger.error("Quota check failed for %s, allowing request: %s", identifier, e)
            return self._fail_open(reset_at)

        if updated is None:
            logger.warning(
                "Quota exceeded for %s (plan=%s, used=%d)",
                identifier, record.plan, record.daily_queries,
            )
            return QuotaStatus(
                allowed=False,
                plan=record.plan,
                daily_used=min(record.daily_queries, limit),
                daily_limit=limit,
                remaining=0,
                reset_at=reset_at,
                message=quota_exceeded_message(limit),
            )

        return QuotaStatus(
            allowed=True,
            plan=updated.plan,
            daily_used=updated.daily_queries,
            daily_limit=limit,
            remaining=UNLIMITED if limit == UNLIMITED else max(0, limit - updated.daily_queries),
            reset_at=reset_at,
        )

    def _fail_open(self, reset_at: datetime) -> QuotaStatus:
        return QuotaStatus(
            allowed=True,
            plan="free",
            daily_used=0,
            daily_limit=FREE_DAILY_LIMIT,
            remaining=FREE_DAILY_LIMIT,
            reset_at=reset_at,
        )

    # ── Read-only ─────────────────────────────────────────────────────────────

    def get_status(self, identifier: str) -> QuotaStatus:
        """Current quota without consuming; a stale day reads as zero used."""
        now = self.clock()
        start_of_day = start_of_local_day(now)
        reset_at = next_local_midnight(now)

        try:
            record: Optional[QuotaRecord] = self.store.get(identifier)
        except Exception as e:
            logger.error("Quota lookup failed for %s: %s", identifier, e)
            return self._fail_open(reset_at)

        if record is None:
            return self._fail_open(reset_at)

        limit = limit_for(record.plan)
        used = 0 if record.quota_reset_at < start_of_day else record.daily_queries
        unlimited = limit == UNLIMITED
        return QuotaStatus(
            allowed=unlimited or used < limit,
            plan=record.plan,
            daily_used=used,
            daily_limit=limit,
            remaining=UNLIMITED if unlimited else max(0, limit - used),
            reset_at=reset_at,
        )

    # ── Admin ─────────────────────────────────────────────────────────────────

    def update_plan(self, identifier: str, plan: str) -> QuotaRecord:
        if plan not in PLAN_LIMITS:
            raise ValueError(f"Unknown plan '{plan}'. Expected one of {sorted(PLAN_LIMITS)}.")
        record = self.store.set_plan(identifier, plan, start_of_local_day(self.clock()))
        logger.info("Plan updated for %s: %s", identifier, plan)
        return record

    def get_stats(self) -> Dict[str, Any]:
        """Per-plan totals plus the number of identifiers that asked today."""
        records = self.store.list_records()
        start_of_day = start_of_local_day(self.clock())

        counts = Counter(r.plan for r in records)
        by_plan = []
        for plan in sorted(counts):
            rows = [r for r in records if r.plan == plan]
            by_plan.append({
                "plan": plan,
                "count": counts[plan],
                "total_queries": sum(r.total_queries for r in rows),
                "daily_queries": sum(
                    r.daily_queries for r in rows if r.quota_reset_at >= start_of_day
                ),
            })

        active_today = sum(
            1 for r in records if r.last_query_at is not None and r.last_query_at >= start_of_day
        )
        return {
            "total_users": len(records),
            "active_today": active_today,
            "by_plan": by_plan,
        }
