"""Shared fixtures for drip engine tests.

Provides:
- fake_db: patches supabase_client with an in-memory fake
- InMemoryStore: an in-memory ProgressionStore for batch tests
- clock: a FrozenClock parked at T0
- sample data factories for enrollment rows and progressions
"""

import os
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import patch, MagicMock

import pytest

# Set env vars before any drip_engine imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("RESEND_API_KEY", "")

from drip_engine.clock import FrozenClock  # noqa: E402
from drip_engine.services.progression import ACTIVE, COMPLETED, SubjectProgression  # noqa: E402

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data or []
        self.count = count


class FakeQueryBuilder:
    """Mimics the supabase-py query builder chain."""

    def __init__(self, store, table_name):
        self._store = store
        self._table = table_name
        self._filters = []
        self._order_col = None
        self._order_desc = False
        self._limit_val = None
        self._update_data = None
        self._insert_data = None

    def select(self, columns="*", count=None):
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def update(self, data):
        self._update_data = data
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def gt(self, col, val):
        self._filters.append(("gt", col, val))
        return self

    def is_(self, col, val):
        self._filters.append(("is", col, val))
        return self

    def order(self, col, desc=False):
        self._order_col = col
        self._order_desc = desc
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "gt" and (row_val is None or str(row_val) <= str(val)):
                return False
            if op == "is" and val == "null" and row_val is not None:
                return False
        return True

    def execute(self):
        table = self._store[self._table]

        if self._insert_data is not None:
            row = dict(self._insert_data)
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._update_data is not None:
            updated = []
            for row in table:
                if self._match(row):
                    row.update(self._update_data)
                    updated.append(row)
            return FakeQueryResult(data=updated)

        rows = [r for r in table if self._match(r)]
        if self._order_col:
            rows.sort(key=lambda r: r.get(self._order_col, ""), reverse=self._order_desc)
        if self._limit_val is not None:
            rows = rows[:self._limit_val]
        return FakeQueryResult(data=rows)


class FakeDB:
    """In-memory store keyed by table name."""

    def __init__(self):
        self.store = defaultdict(list)

    def table(self, name):
        return FakeQueryBuilder(self.store, name)


@pytest.fixture
def fake_db():
    """Provides a clean in-memory DB and patches supabase_client._table."""
    db = FakeDB()

    def fake_table(name):
        return FakeQueryBuilder(db.store, name)

    with patch("drip_engine.supabase_client._table", side_effect=fake_table):
        with patch("drip_engine.supabase_client.get_client", return_value=MagicMock()):
            yield db


# ---------------------------------------------------------------------------
# In-memory progression store
# ---------------------------------------------------------------------------

class InMemoryStore:
    """ProgressionStore keeping progressions in a dict keyed by subject id."""

    def __init__(self, progressions=()):
        self.rows = {p.subject_id: p for p in progressions}
        self.cas_calls = 0

    def get(self, subject_id, campaign_id):
        row = self.rows.get(subject_id)
        return row if row is not None and row.campaign_id == campaign_id else None

    def fetch_page(self, campaign_id, limit):
        active = [
            p for p in self.rows.values()
            if p.campaign_id == campaign_id and p.status == ACTIVE
        ]
        return active[:limit]

    def compare_and_set_cursor(self, progression, new_ordinal, dispatched_at):
        self.cas_calls += 1
        current = self.rows[progression.subject_id]
        if (current.last_completed_ordinal, current.last_dispatched_at) != (
            progression.last_completed_ordinal, progression.last_dispatched_at,
        ):
            return False
        self.rows[progression.subject_id] = current.advanced(new_ordinal, dispatched_at)
        return True

    def mark_completed(self, progression):
        current = self.rows[progression.subject_id]
        self.rows[progression.subject_id] = replace(current, status=COMPLETED)


@pytest.fixture
def clock():
    return FrozenClock(T0)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def make_progression(**overrides):
    defaults = {
        "subject_id": "subject-1",
        "campaign_id": "onboarding",
        "enrolled_at": T0,
        "last_completed_ordinal": None,
        "last_dispatched_at": None,
        "status": ACTIVE,
        "attributes": {"email": "subscriber@example.com", "name": "Test Subscriber"},
    }
    defaults.update(overrides)
    return SubjectProgression(**defaults)


def make_enrollment(**overrides):
    defaults = {
        "subject_id": "subject-1",
        "campaign_id": "welcome_v1",
        "enrolled_at": T0.isoformat(),
        "last_completed_ordinal": None,
        "last_dispatched_at": None,
        "status": ACTIVE,
        "attributes": {"email": "subscriber@example.com", "name": "Test Subscriber"},
        "completed_at": None,
    }
    defaults.update(overrides)
    return defaults
