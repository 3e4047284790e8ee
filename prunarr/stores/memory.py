# prunarr/stores/memory.py
"""
In-process stores for embedding and testing.

Mimics the SQL stores' semantics without a database.
NOT durable.
"""

import copy
import logging
import threading
from dataclasses import fields
from typing import Any, Iterable, Optional

from prunarr.services.retention.types import DeletionHistoryEntry, MediaItem, MediaStatus
from prunarr.stores.base import DeletionHistoryStore, MediaStore, RuleStore

logger = logging.getLogger(__name__)

_ITEM_FIELDS = {f.name for f in fields(MediaItem)}


class InMemoryMediaStore(MediaStore):
    """Media items held in a dict keyed by id. Returned items are copies."""

    def __init__(self, items: Iterable[MediaItem] = ()):
        self._items: dict[int, MediaItem] = {}
        self._lock = threading.Lock()
        for item in items:
            self.add(item)

    def add(self, item: MediaItem) -> MediaItem:
        with self._lock:
            self._items[item.id] = copy.deepcopy(item)
        return item

    def get_by_id(self, item_id: int) -> Optional[MediaItem]:
        with self._lock:
            item = self._items.get(item_id)
            return copy.deepcopy(item) if item else None

    def get_items_for_evaluation(self, limit: Optional[int] = None) -> list[MediaItem]:
        excluded = (MediaStatus.DELETED, MediaStatus.PENDING_DELETION)
        with self._lock:
            items = [
                copy.deepcopy(item)
                for _, item in sorted(self._items.items())
                if item.status not in excluded
            ]
        return items[:limit] if limit is not None else items

    def get_by_status(self, status: MediaStatus) -> list[MediaItem]:
        with self._lock:
            return [copy.deepcopy(item) for _, item in sorted(self._items.items()) if item.status == status]

    def update(self, item_id: int, fields: dict[str, Any]) -> Optional[MediaItem]:
        unknown = set(fields) - _ITEM_FIELDS
        if unknown:
            raise ValueError(f"Unknown media item fields: {sorted(unknown)}")

        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return None
            updated = item.with_updates(**fields)
            self._items[item_id] = updated
            return copy.deepcopy(updated)

    def delete(self, item_id: int) -> bool:
        with self._lock:
            return self._items.pop(item_id, None) is not None


class InMemoryRuleStore(RuleStore):
    def __init__(self, rules: Iterable[dict[str, Any]] = ()):
        self._rules: dict[int, dict[str, Any]] = {}
        for rule in rules:
            self.add(rule)

    def add(self, rule: dict[str, Any]) -> dict[str, Any]:
        rule = dict(rule)
        rule.setdefault("id", max(self._rules, default=0) + 1)
        rule.setdefault("enabled", True)
        self._rules[rule["id"]] = rule
        return rule

    def get_enabled_rules(self) -> list[dict[str, Any]]:
        return [dict(rule) for _, rule in sorted(self._rules.items()) if rule.get("enabled", True)]

    def get_by_id(self, rule_id: int) -> Optional[dict[str, Any]]:
        rule = self._rules.get(rule_id)
        return dict(rule) if rule else None


class InMemoryDeletionHistoryStore(DeletionHistoryStore):
    def __init__(self):
        self.entries: list[DeletionHistoryEntry] = []

    def record(self, entry: DeletionHistoryEntry) -> None:
        self.entries.append(entry)
        logger.debug(f"Recorded deletion of '{entry.title}' ({entry.deletion_action.value})")
