"""
Unit tests for the SQLAlchemy-backed stores.

Each test gets its own in-memory SQLite database.
"""

from datetime import timedelta

import pytest

from prunarr.services.retention.engine import RuleEngine
from prunarr.services.retention.queue_service import DeletionQueue
from prunarr.services.retention.types import DeletionAction, DeletionHistoryEntry, MediaStatus, MediaType
from prunarr.stores.sql import SqlDeletionHistoryStore, SqlMediaStore, SqlRuleStore


@pytest.fixture
def sql_media_store(session_factory):
    return SqlMediaStore(session_factory)


@pytest.fixture
def sql_rule_store(session_factory):
    return SqlRuleStore(session_factory)


class TestSqlMediaStore:
    """Tests for SqlMediaStore."""

    def test_add_and_get(self, sql_media_store, make_item, now):
        """Test timestamps and list columns survive a round trip."""
        sql_media_store.add(make_item(id=1, title="Heat", genres=["Crime", "Drama"], tags=["4k"]))

        item = sql_media_store.get_by_id(1)

        assert item.title == "Heat"
        assert item.type == MediaType.MOVIE
        assert item.genres == ["Crime", "Drama"]
        assert item.tags == ["4k"]
        assert item.added_at == now - timedelta(days=365)
        assert item.added_at.tzinfo is not None

    def test_get_missing(self, sql_media_store):
        assert sql_media_store.get_by_id(42) is None

    def test_evaluation_excludes_queued_and_deleted(self, sql_media_store, make_item):
        sql_media_store.add(make_item(id=1))
        sql_media_store.add(make_item(id=2, status=MediaStatus.PENDING_DELETION))
        sql_media_store.add(make_item(id=3, status=MediaStatus.DELETED))
        sql_media_store.add(make_item(id=4, status=MediaStatus.PROTECTED, is_protected=True))

        items = sql_media_store.get_items_for_evaluation()

        assert [item.id for item in items] == [1, 4]

    def test_evaluation_limit(self, sql_media_store, make_item):
        for item_id in range(1, 6):
            sql_media_store.add(make_item(id=item_id))
        assert len(sql_media_store.get_items_for_evaluation(limit=2)) == 2

    def test_update_converts_enums(self, sql_media_store, make_item, now):
        sql_media_store.add(make_item(id=1))

        item = sql_media_store.update(
            1,
            {
                "status": MediaStatus.PENDING_DELETION,
                "deletion_action": DeletionAction.FULL_REMOVAL,
                "delete_after": now,
            },
        )

        assert item.status == MediaStatus.PENDING_DELETION
        assert item.deletion_action == DeletionAction.FULL_REMOVAL
        assert sql_media_store.get_by_status(MediaStatus.PENDING_DELETION)[0].delete_after == now

    def test_update_missing_returns_none(self, sql_media_store):
        assert sql_media_store.update(9, {"status": MediaStatus.DELETED}) is None

    def test_update_rejects_unknown_fields(self, sql_media_store, make_item):
        sql_media_store.add(make_item(id=1))
        with pytest.raises(ValueError):
            sql_media_store.update(1, {"favourite": True})

    def test_delete(self, sql_media_store, make_item):
        sql_media_store.add(make_item(id=1))
        assert sql_media_store.delete(1) is True
        assert sql_media_store.delete(1) is False
        assert sql_media_store.get_by_id(1) is None


class TestSqlRuleStore:
    def test_enabled_rules_in_id_order(self, sql_rule_store):
        sql_rule_store.add({"name": "First", "conditions": [{"field": "play_count", "op": "equals", "value": 0}]})
        sql_rule_store.add({"name": "Disabled", "enabled": False})
        sql_rule_store.add({"name": "Third", "conditions": "[]", "deletion_action": "full_removal"})

        rules = sql_rule_store.get_enabled_rules()

        assert [rule["name"] for rule in rules] == ["First", "Third"]
        assert rules[1]["deletion_action"] == "full_removal"
        assert rules[0]["conditions"] == '[{"field": "play_count", "op": "equals", "value": 0}]'

    def test_get_by_id(self, sql_rule_store):
        created = sql_rule_store.add({"name": "Only"})
        assert sql_rule_store.get_by_id(created["id"])["name"] == "Only"
        assert sql_rule_store.get_by_id(999) is None


class TestSqlDeletionHistoryStore:
    def test_record_and_list(self, session_factory, now):
        history = SqlDeletionHistoryStore(session_factory)
        history.record(
            DeletionHistoryEntry(
                media_item_id=1,
                title="Heat",
                type=MediaType.MOVIE,
                deletion_action=DeletionAction.UNMONITOR_AND_DELETE,
                file_size=3000,
                deleted_at=now - timedelta(hours=1),
            )
        )
        history.record(
            DeletionHistoryEntry(
                media_item_id=2,
                title="Ronin",
                type=MediaType.MOVIE,
                deletion_action=DeletionAction.FULL_REMOVAL,
                deletion_type="manual",
                deleted_at=now,
            )
        )

        rows = history.list_recent()

        assert [row.title for row in rows] == ["Ronin", "Heat"]
        assert rows[0].deletion_action == "full_removal"
        assert rows[0].deletion_type == "manual"
        assert rows[1].file_size == 3000


class TestSqlBackedRetention:
    """The engine and queue run unchanged on top of the SQL stores."""

    def test_run_queues_into_database(self, sql_media_store, sql_rule_store, make_item, now):
        sql_media_store.add(make_item(id=1, title="Stale"))
        sql_media_store.add(make_item(id=2, title="Fresh", added_at=now - timedelta(days=1)))
        rule = sql_rule_store.add(
            {
                "name": "Unwatched",
                "conditions": [{"field": "days_since_watched", "op": "greater_than", "value": 90}],
                "grace_period_days": 3,
            }
        )

        summary = RuleEngine(sql_media_store, sql_rule_store).run(now=now)

        assert summary.queued == 1
        queued = sql_media_store.get_by_id(1)
        assert queued.status == MediaStatus.PENDING_DELETION
        assert queued.delete_after == now + timedelta(days=3)
        assert queued.matched_rule_id == rule["id"]

        [entry] = DeletionQueue(sql_media_store).get_queue(now)
        assert entry.days_remaining == 3
        assert entry.action == DeletionAction.UNMONITOR_AND_DELETE
