# prunarr/stores/base.py
"""
Store interfaces used by the retention services.

Design principles:
- Services receive stores explicitly; there is no global store
- Media items cross the boundary as MediaItem snapshots, never ORM rows
- update() is a single-item read-modify-write returning the new snapshot
- Rules are handed out as stored mappings and parsed by the rule engine
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from prunarr.services.retention.types import DeletionHistoryEntry, MediaItem, MediaStatus


class MediaStore(ABC):
    """
    Abstract interface for media item persistence.

    Implementations must:
    - Return None (not raise) for unknown ids
    - Exclude deleted and already queued items from get_items_for_evaluation
    """

    @abstractmethod
    def get_by_id(self, item_id: int) -> Optional[MediaItem]:
        """Fetch one item, or None if it doesn't exist."""
        pass

    @abstractmethod
    def get_items_for_evaluation(self, limit: Optional[int] = None) -> list[MediaItem]:
        """Items eligible for rule evaluation, ordered by id."""
        pass

    @abstractmethod
    def get_by_status(self, status: MediaStatus) -> list[MediaItem]:
        pass

    @abstractmethod
    def update(self, item_id: int, fields: dict[str, Any]) -> Optional[MediaItem]:
        """
        Apply field changes to one item.

        Returns:
            The updated item, or None if it doesn't exist
        """
        pass

    @abstractmethod
    def delete(self, item_id: int) -> bool:
        """Remove an item entirely. Returns False if it didn't exist."""
        pass


class RuleStore(ABC):
    """Read-only access to stored rule definitions."""

    @abstractmethod
    def get_enabled_rules(self) -> list[dict[str, Any]]:
        """Enabled rules ordered by id."""
        pass

    @abstractmethod
    def get_by_id(self, rule_id: int) -> Optional[dict[str, Any]]:
        pass


class DeletionHistoryStore(ABC):
    """Append-only deletion audit trail."""

    @abstractmethod
    def record(self, entry: DeletionHistoryEntry) -> None:
        pass
