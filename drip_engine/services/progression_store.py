"""Supabase-backed progression store — enrollments, paging, cursor updates.

Rows live in `drip_enrollments`, unique on (campaign_id, subject_id).
Cursor updates are conditional UPDATEs that only match while the row still
holds the values the caller read, so two workers racing on one subject
cannot both advance it.
"""

import logging
from datetime import datetime, timezone

from drip_engine import supabase_client as db
from drip_engine.clock import SYSTEM_CLOCK, ClockSource
from drip_engine.services.progression import ACTIVE, COMPLETED, SubjectProgression

logger = logging.getLogger(__name__)

TABLE = "drip_enrollments"


def _parse_ts(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def row_to_progression(row: dict) -> SubjectProgression:
    return SubjectProgression(
        subject_id=row["subject_id"],
        campaign_id=row["campaign_id"],
        enrolled_at=_parse_ts(row["enrolled_at"]),
        last_completed_ordinal=row.get("last_completed_ordinal"),
        last_dispatched_at=_parse_ts(row.get("last_dispatched_at")),
        status=row.get("status") or ACTIVE,
        attributes=row.get("attributes") or {},
    )


class SupabaseProgressionStore:
    """ProgressionStore over supabase. Owns a keyset page cursor per campaign."""

    def __init__(self, clock: ClockSource = SYSTEM_CLOCK):
        self.clock = clock
        self._after: dict[str, str] = {}

    def enroll(self, subject_id: str, campaign_id: str,
               enrolled_at: datetime | None = None,
               attributes: dict | None = None) -> SubjectProgression | None:
        """Enroll a subject. Returns None if already enrolled in the campaign."""
        existing = db.select_one(TABLE, match={"campaign_id": campaign_id, "subject_id": subject_id})
        if existing:
            return None

        row = db.insert(TABLE, {
            "subject_id": subject_id,
            "campaign_id": campaign_id,
            "enrolled_at": _iso(enrolled_at or self.clock.now()),
            "last_completed_ordinal": None,
            "last_dispatched_at": None,
            "status": ACTIVE,
            "attributes": attributes or {},
        })
        db.log_action("drip_enrolled", "enrollment", subject_id, f"{subject_id} enrolled in {campaign_id}")
        return row_to_progression(row)

    def get(self, subject_id: str, campaign_id: str) -> SubjectProgression | None:
        row = db.select_one(TABLE, match={"campaign_id": campaign_id, "subject_id": subject_id})
        return row_to_progression(row) if row else None

    def fetch_page(self, campaign_id: str, limit: int) -> list[SubjectProgression]:
        """Next page of active enrollments. Wraps to the start after a short page."""
        q = db._table(TABLE).select("*")
        q = q.eq("campaign_id", campaign_id).eq("status", ACTIVE)
        after = self._after.get(campaign_id)
        if after is not None:
            q = q.gt("subject_id", after)
        result = q.order("subject_id").limit(limit).execute()
        rows = result.data or []

        if len(rows) < limit:
            self._after.pop(campaign_id, None)
        else:
            self._after[campaign_id] = rows[-1]["subject_id"]
        return [row_to_progression(r) for r in rows]

    def reset_page_cursor(self, campaign_id: str | None = None) -> None:
        if campaign_id is None:
            self._after.clear()
        else:
            self._after.pop(campaign_id, None)

    def compare_and_set_cursor(self, progression: SubjectProgression, new_ordinal: int,
                               dispatched_at: datetime) -> bool:
        rows = db.update(
            TABLE,
            {
                "last_completed_ordinal": new_ordinal,
                "last_dispatched_at": _iso(dispatched_at),
            },
            {
                "campaign_id": progression.campaign_id,
                "subject_id": progression.subject_id,
                "status": ACTIVE,
                "last_completed_ordinal": progression.last_completed_ordinal,
                "last_dispatched_at": _iso(progression.last_dispatched_at),
            },
        )
        if not rows:
            return False
        db.log_action(
            "drip_step_completed", "enrollment", progression.subject_id,
            f"{progression.campaign_id} step {new_ordinal}",
        )
        return True

    def mark_completed(self, progression: SubjectProgression) -> None:
        db.update(TABLE, {
            "status": COMPLETED,
            "completed_at": _iso(self.clock.now()),
        }, {
            "campaign_id": progression.campaign_id,
            "subject_id": progression.subject_id,
        })
        db.log_action(
            "drip_campaign_completed", "enrollment", progression.subject_id,
            f"{progression.subject_id} finished {progression.campaign_id}",
        )
        logger.info("%s completed campaign %s", progression.subject_id, progression.campaign_id)
