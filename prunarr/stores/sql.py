# prunarr/stores/sql.py
"""
SQLAlchemy-backed stores over the media_items, rules and deletion_history tables.

Each call opens its own session through session_scope(), so a store can be
shared across the engine, the queue and the processor.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy import and_
from sqlalchemy.orm import sessionmaker

from prunarr.database import session_scope
from prunarr.models import DeletionHistory, MediaItemRecord, RuleRecord
from prunarr.services.retention.types import DeletionHistoryEntry, MediaItem, MediaStatus
from prunarr.stores.base import DeletionHistoryStore, MediaStore, RuleStore

logger = logging.getLogger(__name__)

_ITEM_COLUMNS = [
    column.name for column in MediaItemRecord.__table__.columns if column.name not in ("created_at", "updated_at")
]


def record_to_item(record: MediaItemRecord) -> MediaItem:
    """Convert an ORM row into a MediaItem snapshot."""
    values = {name: getattr(record, name) for name in _ITEM_COLUMNS}
    values["genres"] = list(values["genres"] or [])
    values["tags"] = list(values["tags"] or [])
    values["play_count"] = values["play_count"] or 0
    return MediaItem(**values)


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class SqlMediaStore(MediaStore):
    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    def get_by_id(self, item_id: int) -> Optional[MediaItem]:
        with session_scope(self.session_factory) as db:
            record = db.query(MediaItemRecord).filter(MediaItemRecord.id == item_id).first()
            return record_to_item(record) if record else None

    def get_items_for_evaluation(self, limit: Optional[int] = None) -> list[MediaItem]:
        with session_scope(self.session_factory) as db:
            query = (
                db.query(MediaItemRecord)
                .filter(
                    and_(
                        MediaItemRecord.status != MediaStatus.DELETED.value,
                        MediaItemRecord.status != MediaStatus.PENDING_DELETION.value,
                    )
                )
                .order_by(MediaItemRecord.id)
            )
            if limit is not None:
                query = query.limit(limit)
            return [record_to_item(record) for record in query.all()]

    def get_by_status(self, status: MediaStatus) -> list[MediaItem]:
        with session_scope(self.session_factory) as db:
            records = (
                db.query(MediaItemRecord)
                .filter(MediaItemRecord.status == MediaStatus(status).value)
                .order_by(MediaItemRecord.id)
                .all()
            )
            return [record_to_item(record) for record in records]

    def update(self, item_id: int, fields: dict[str, Any]) -> Optional[MediaItem]:
        unknown = set(fields) - set(_ITEM_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown media item fields: {sorted(unknown)}")

        with session_scope(self.session_factory) as db:
            record = db.query(MediaItemRecord).filter(MediaItemRecord.id == item_id).first()
            if not record:
                return None
            for name, value in fields.items():
                setattr(record, name, _column_value(value))
            db.flush()
            return record_to_item(record)

    def delete(self, item_id: int) -> bool:
        with session_scope(self.session_factory) as db:
            deleted = db.query(MediaItemRecord).filter(MediaItemRecord.id == item_id).delete()
            return deleted > 0

    def add(self, item: MediaItem) -> MediaItem:
        """Insert a scanned item. Used by the library scanner and tests."""
        with session_scope(self.session_factory) as db:
            values = {name: _column_value(getattr(item, name)) for name in _ITEM_COLUMNS}
            if values.get("id") is None:
                values.pop("id")
            record = MediaItemRecord(**values)
            db.add(record)
            db.flush()
            return record_to_item(record)


def rule_record_to_dict(record: RuleRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "media_type": record.media_type,
        "conditions": record.conditions,
        "action": record.action,
        "enabled": record.enabled,
        "grace_period_days": record.grace_period_days,
        "deletion_action": record.deletion_action,
        "reset_external_request": record.reset_external_request,
    }


class SqlRuleStore(RuleStore):
    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    def get_enabled_rules(self) -> list[dict[str, Any]]:
        with session_scope(self.session_factory) as db:
            records = db.query(RuleRecord).filter(RuleRecord.enabled == True).order_by(RuleRecord.id).all()
            return [rule_record_to_dict(record) for record in records]

    def get_by_id(self, rule_id: int) -> Optional[dict[str, Any]]:
        with session_scope(self.session_factory) as db:
            record = db.query(RuleRecord).filter(RuleRecord.id == rule_id).first()
            return rule_record_to_dict(record) if record else None

    def add(self, rule: dict[str, Any]) -> dict[str, Any]:
        with session_scope(self.session_factory) as db:
            conditions = rule.get("conditions", [])
            record = RuleRecord(
                name=rule["name"],
                media_type=rule.get("media_type", "all"),
                conditions=conditions if isinstance(conditions, str) else json.dumps(conditions),
                action=rule.get("action", "flag"),
                enabled=rule.get("enabled", True),
                grace_period_days=rule.get("grace_period_days"),
                deletion_action=rule.get("deletion_action"),
                reset_external_request=rule.get("reset_external_request", False),
            )
            db.add(record)
            db.flush()
            return rule_record_to_dict(record)


class SqlDeletionHistoryStore(DeletionHistoryStore):
    def __init__(self, session_factory: sessionmaker | None = None):
        self.session_factory = session_factory

    def record(self, entry: DeletionHistoryEntry) -> None:
        with session_scope(self.session_factory) as db:
            db.add(
                DeletionHistory(
                    media_item_id=entry.media_item_id,
                    title=entry.title,
                    type=_column_value(entry.type),
                    file_size=entry.file_size,
                    deletion_action=_column_value(entry.deletion_action),
                    deletion_type=entry.deletion_type,
                    deleted_by_rule_id=entry.deleted_by_rule_id,
                    overseerr_reset=entry.overseerr_reset,
                    deleted_at=entry.deleted_at,
                )
            )

    def list_recent(self, limit: int = 50) -> list[DeletionHistory]:
        """Most recent history rows, newest first."""
        with session_scope(self.session_factory) as db:
            return (
                db.query(DeletionHistory)
                .order_by(DeletionHistory.deleted_at.desc(), DeletionHistory.id.desc())
                .limit(limit)
                .all()
            )
