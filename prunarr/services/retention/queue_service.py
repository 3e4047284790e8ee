# prunarr/services/retention/queue_service.py
"""
Deletion queue state machine.

Handles:
- Marking items for deletion with a grace period countdown
- Removing items from the queue
- Manual protection and its removal (protection evicts from the queue)
- Bulk variants returning success / failed / skipped partitions
- Queue views with days remaining and aggregate statistics

States: monitored | flagged -> pending_deletion -> deleted
        any but deleted -> protected -> monitored
        deleted is terminal
"""

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from prunarr.services.notifications import NotificationEvent, NotificationSink, dispatch
from prunarr.services.retention.errors import (
    AlreadyDeletedError,
    ConflictError,
    ItemNotFoundError,
    ItemProtectedError,
    NotInQueueError,
    NotProtectedError,
)
from prunarr.services.retention.protection import MANUAL_PROTECTION_REASON
from prunarr.services.retention.types import (
    QUEUE_FIELDS_CLEARED,
    BulkEntry,
    BulkResult,
    DeletionAction,
    MediaItem,
    MediaStatus,
    QueueEntry,
    QueueStatistics,
    RulesConfig,
    as_utc,
    normalize_deletion_action,
    utcnow,
)

if TYPE_CHECKING:
    from prunarr.stores.base import MediaStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def days_remaining(delete_after: Optional[datetime], now: datetime) -> int:
    """Whole days until delete_after, rounded up and clamped at 0."""
    if delete_after is None:
        return 0
    seconds = (as_utc(delete_after) - now).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))


class _Skip(Exception):
    """Internal signal for a bulk id that lands in the skipped partition."""


class DeletionQueue:
    """
    Owns each item's membership in the pending-deletion queue.

    Single-item transitions raise on rejection and leave the item unchanged.
    Bulk transitions never raise; every requested id lands in exactly one of
    success, failed or skipped.
    """

    def __init__(
        self,
        media_store: "MediaStore",
        config: Optional[RulesConfig] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.media_store = media_store
        self.config = config or RulesConfig()
        self.notifier = notifier

    def _get(self, item_id: int) -> MediaItem:
        item = self.media_store.get_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def _get_live(self, item_id: int) -> MediaItem:
        item = self._get(item_id)
        if item.status == MediaStatus.DELETED:
            raise AlreadyDeletedError(item_id)
        return item

    def _update(self, item_id: int, fields: dict) -> MediaItem:
        updated = self.media_store.update(item_id, fields)
        if updated is None:
            raise ItemNotFoundError(item_id)
        return updated

    # -------------------------------------------------------------------------
    # Single-item transitions
    # -------------------------------------------------------------------------

    def mark_for_deletion(
        self,
        item_id: int,
        grace_period_days: Optional[int] = None,
        deletion_action: Optional[DeletionAction] = None,
        reset_external_request: bool = False,
        rule_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> MediaItem:
        """
        Put an item in the queue (or refresh its countdown if already queued).

        Re-marking keeps the original marked_at, and keeps the matched rule
        when no rule_id is given.

        Raises:
            ValueError: Negative grace period
            ItemNotFoundError: Unknown item
            AlreadyDeletedError: Item was already deleted
            ItemProtectedError: Item is protected
        """
        if grace_period_days is None:
            grace_period_days = self.config.default_grace_period_days
        if grace_period_days < 0:
            raise ValueError(f"Grace period must be >= 0 days, got {grace_period_days}")

        now = as_utc(now) or utcnow()
        item = self._get_live(item_id)
        if item.is_protected:
            raise ItemProtectedError(item_id, item.protection_reason)

        action = normalize_deletion_action(deletion_action, default=self.config.default_deletion_action)
        marked_at = item.marked_at if item.is_queued and item.marked_at else now
        delete_after = max(now + timedelta(days=grace_period_days), marked_at)

        updated = self._update(
            item_id,
            {
                "status": MediaStatus.PENDING_DELETION,
                "marked_at": marked_at,
                "delete_after": delete_after,
                "deletion_action": action,
                "reset_external_request": reset_external_request,
                "matched_rule_id": rule_id if rule_id is not None else item.matched_rule_id,
            },
        )
        logger.info(
            f"Marked '{item.title}' for deletion after {delete_after.isoformat()} ({action.value})",
            extra={"item_id": item_id, "rule_id": updated.matched_rule_id, "deletion_action": action.value},
        )
        return updated

    def remove_from_queue(self, item_id: int) -> MediaItem:
        """
        Raises:
            ItemNotFoundError: Unknown item
            NotInQueueError: Item is not pending deletion
        """
        item = self._get(item_id)
        if not item.is_queued:
            raise NotInQueueError(item_id)

        updated = self._update(item_id, {"status": MediaStatus.MONITORED, **QUEUE_FIELDS_CLEARED})
        logger.info(f"Removed '{item.title}' from deletion queue", extra={"item_id": item_id})
        return updated

    def protect(self, item_id: int, reason: str = MANUAL_PROTECTION_REASON) -> MediaItem:
        """
        Protect an item, evicting it from the queue if present.

        Raises:
            ItemNotFoundError: Unknown item
            AlreadyDeletedError: Item was already deleted
        """
        item = self._get_live(item_id)
        updated = self._update(
            item_id,
            {
                "is_protected": True,
                "protection_reason": reason or MANUAL_PROTECTION_REASON,
                "status": MediaStatus.PROTECTED,
                **QUEUE_FIELDS_CLEARED,
            },
        )
        if item.is_queued:
            logger.info(f"Protected '{item.title}', evicted from deletion queue", extra={"item_id": item_id})
        else:
            logger.info(f"Protected '{item.title}'", extra={"item_id": item_id})
        return updated

    def unprotect(self, item_id: int) -> MediaItem:
        """
        Clear protection. The item returns to monitored and is not re-queued.

        Raises:
            ItemNotFoundError: Unknown item
            AlreadyDeletedError: Item was already deleted
            NotProtectedError: Item is not protected
        """
        item = self._get_live(item_id)
        if not item.is_protected:
            raise NotProtectedError(item_id)

        updated = self._update(
            item_id,
            {"is_protected": False, "protection_reason": None, "status": MediaStatus.MONITORED},
        )
        logger.info(f"Removed protection from '{item.title}'", extra={"item_id": item_id})
        return updated

    # -------------------------------------------------------------------------
    # Bulk transitions
    # -------------------------------------------------------------------------

    def _bulk(self, item_ids: Iterable[int], apply: Callable[[MediaItem], MediaItem], operation: str) -> BulkResult:
        result = BulkResult()

        for item_id in dict.fromkeys(item_ids):
            try:
                item = self.media_store.get_by_id(item_id)
                if item is None:
                    result.failed.append(BulkEntry(item_id, reason="Item not found"))
                    continue
                try:
                    updated = apply(item)
                except (_Skip, ConflictError) as e:
                    result.skipped.append(BulkEntry(item_id, item.title, str(e)))
                    continue
                except ItemNotFoundError:
                    result.failed.append(BulkEntry(item_id, item.title, "Update failed"))
                    continue
                result.success.append(BulkEntry(item_id, updated.title))
            except Exception as e:
                logger.error(f"Bulk {operation} failed for item {item_id}: {e}", extra={"item_id": item_id})
                result.failed.append(BulkEntry(item_id, reason=str(e)))

        logger.info(
            f"Bulk {operation}: success={len(result.success)}, failed={len(result.failed)}, "
            f"skipped={len(result.skipped)}"
        )
        return result

    def bulk_mark_for_deletion(
        self,
        item_ids: Iterable[int],
        grace_period_days: Optional[int] = None,
        deletion_action: Optional[DeletionAction] = None,
        reset_external_request: bool = False,
        now: Optional[datetime] = None,
    ) -> BulkResult:
        """Mark many items. Protected items are skipped."""
        if grace_period_days is not None and grace_period_days < 0:
            raise ValueError(f"Grace period must be >= 0 days, got {grace_period_days}")
        now = as_utc(now) or utcnow()

        def apply(item: MediaItem) -> MediaItem:
            if item.is_protected:
                raise _Skip(f"Protected: {item.protection_reason or MANUAL_PROTECTION_REASON}")
            return self.mark_for_deletion(
                item.id,
                grace_period_days=grace_period_days,
                deletion_action=deletion_action,
                reset_external_request=reset_external_request,
                now=now,
            )

        result = self._bulk(item_ids, apply, "mark")
        if result.success:
            dispatch(
                self.notifier,
                NotificationEvent.ITEMS_MARKED,
                {"count": len(result.success), "items": [{"id": e.id, "title": e.title} for e in result.success]},
            )
        return result

    def bulk_remove_from_queue(self, item_ids: Iterable[int]) -> BulkResult:
        """Remove many items from the queue. Items not queued are skipped."""

        def apply(item: MediaItem) -> MediaItem:
            if not item.is_queued:
                raise _Skip("Not in deletion queue")
            return self.remove_from_queue(item.id)

        return self._bulk(item_ids, apply, "remove")

    def bulk_protect(self, item_ids: Iterable[int], reason: str = MANUAL_PROTECTION_REASON) -> BulkResult:
        """Protect many items. Already protected items are skipped."""

        def apply(item: MediaItem) -> MediaItem:
            if item.is_protected:
                raise _Skip("Already protected")
            return self.protect(item.id, reason)

        return self._bulk(item_ids, apply, "protect")

    def bulk_unprotect(self, item_ids: Iterable[int]) -> BulkResult:
        """Unprotect many items. Items that aren't protected are skipped."""

        def apply(item: MediaItem) -> MediaItem:
            if not item.is_protected:
                raise _Skip("Not protected")
            return self.unprotect(item.id)

        return self._bulk(item_ids, apply, "unprotect")

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def get_queue(self, now: Optional[datetime] = None) -> list[QueueEntry]:
        """Queued items with their countdown, soonest first."""
        now = as_utc(now) or utcnow()
        entries = []
        for item in self.media_store.get_by_status(MediaStatus.PENDING_DELETION):
            marked_at = item.marked_at or now
            delete_after = item.delete_after or marked_at
            entries.append(
                QueueEntry(
                    item=item,
                    marked_at=marked_at,
                    delete_after=delete_after,
                    days_remaining=days_remaining(delete_after, now),
                    action=normalize_deletion_action(item.deletion_action, self.config.default_deletion_action),
                    reset_external_request=item.reset_external_request,
                    rule_id=item.matched_rule_id,
                )
            )
        entries.sort(key=lambda entry: (entry.days_remaining, entry.delete_after, entry.item.id))
        return entries

    def get_expired(self, now: Optional[datetime] = None) -> list[QueueEntry]:
        """Queued items whose grace period has elapsed (delete_after <= now)."""
        now = as_utc(now) or utcnow()
        return [entry for entry in self.get_queue(now) if entry.delete_after <= now]

    def get_statistics(self, now: Optional[datetime] = None) -> QueueStatistics:
        now = as_utc(now) or utcnow()
        entries = self.get_queue(now)
        return QueueStatistics(
            queue_size=len(entries),
            ready_for_deletion=sum(1 for entry in entries if entry.delete_after <= now),
            total_size_bytes=sum(entry.item.file_size or 0 for entry in entries),
            will_reset_external=sum(1 for entry in entries if entry.reset_external_request),
        )
