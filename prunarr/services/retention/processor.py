# prunarr/services/retention/processor.py
"""
Queue processor: executes deletions once the grace period has elapsed.

Handles:
- Periodic sweeps over expired queue entries with per-item timeout and isolation
- Immediate bypass deletion of one item with a step-by-step progress stream
- Deletion history and status finalisation after a successful execution
- Reminder notifications for items about to be deleted
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from prunarr.services.notifications import NotificationEvent, NotificationSink, dispatch
from prunarr.services.resilience import with_timeout
from prunarr.services.retention.errors import ConfigurationError, DeletionCancelledError
from prunarr.services.retention.executor import (
    TERMINAL_STAGES,
    DeletionExecutor,
    DeletionOutcome,
    DeletionProgress,
    DeletionStage,
    ExecutionResult,
    ProgressChannel,
)
from prunarr.services.retention.queue_service import DeletionQueue
from prunarr.services.retention.types import (
    QUEUE_FIELDS_CLEARED,
    DeletionAction,
    DeletionHistoryEntry,
    ItemOutcome,
    MediaItem,
    MediaStatus,
    SweepResult,
    as_utc,
    normalize_deletion_action,
    utcnow,
)

if TYPE_CHECKING:
    from prunarr.stores.base import DeletionHistoryStore, MediaStore

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024**3

# Reminder windows in days remaining
HIGH_URGENCY_DAYS = 1
MEDIUM_URGENCY_DAYS = 3


class QueueProcessor:
    """
    Drives the destructive end of the queue.

    Usage:
        processor = QueueProcessor(media_store, executor, history=history_store)
        result = await processor.process_queue()

        async for event in processor.delete_now(item_id):
            send(event.to_dict())
    """

    def __init__(
        self,
        media_store: "MediaStore",
        executor: DeletionExecutor,
        queue: Optional[DeletionQueue] = None,
        history: Optional["DeletionHistoryStore"] = None,
        notifier: Optional[NotificationSink] = None,
        item_timeout_seconds: float = 30.0,
        progress_buffer_size: int = 100,
    ):
        if media_store is None:
            raise ConfigurationError("QueueProcessor requires a media store")
        if executor is None:
            raise ConfigurationError("QueueProcessor requires a deletion executor")

        self.media_store = media_store
        self.executor = executor
        self.queue = queue or DeletionQueue(media_store, notifier=notifier)
        self.history = history
        self.notifier = notifier
        self.item_timeout_seconds = item_timeout_seconds
        self.progress_buffer_size = progress_buffer_size

    def _action_for(self, item: MediaItem) -> DeletionAction:
        return normalize_deletion_action(item.deletion_action, default=self.queue.config.default_deletion_action)

    def _finalize(self, item: MediaItem, action: DeletionAction, result: ExecutionResult, deletion_type: str) -> None:
        """Persist a successful deletion: item status and history entry."""
        if action == DeletionAction.FULL_REMOVAL:
            self.media_store.delete(item.id)
        else:
            self.media_store.update(item.id, {"status": MediaStatus.DELETED, **QUEUE_FIELDS_CLEARED})

        if self.history is None:
            return
        try:
            self.history.record(
                DeletionHistoryEntry(
                    media_item_id=item.id,
                    title=item.title,
                    type=item.type,
                    deletion_action=action,
                    file_size=result.file_size_freed if action.deletes_files else None,
                    deletion_type=deletion_type,
                    deleted_by_rule_id=item.matched_rule_id,
                    overseerr_reset=result.overseerr_reset,
                )
            )
        except Exception as e:
            logger.error(f"Failed to record deletion history for '{item.title}': {e}", extra={"item_id": item.id})

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    async def _process_item(self, item: MediaItem) -> ItemOutcome:
        action = self._action_for(item)
        outcome = ItemOutcome(id=item.id, title=item.title, action=action, success=False)

        try:
            result = await with_timeout(
                self.executor.execute(item, action, reset_external_request=item.reset_external_request),
                self.item_timeout_seconds,
                f"Deletion of '{item.title}' timed out",
            )
        except Exception as e:
            outcome.error = str(e)
            logger.error(
                f"Failed to delete '{item.title}': {e}",
                extra={"item_id": item.id, "deletion_action": action.value},
            )
            return outcome

        if not result.success:
            outcome.error = result.error or "Deletion failed"
            logger.error(
                f"Failed to delete '{item.title}': {outcome.error}",
                extra={"item_id": item.id, "deletion_action": action.value},
            )
            return outcome

        try:
            self._finalize(item, action, result, deletion_type="automatic")
        except Exception as e:
            outcome.error = f"Deleted externally but failed to update store: {e}"
            logger.error(f"Failed to finalize deletion of '{item.title}': {e}", extra={"item_id": item.id})
            return outcome

        outcome.success = True
        outcome.file_size_freed = result.file_size_freed
        outcome.overseerr_reset = result.overseerr_reset
        outcome.overseerr_error = result.overseerr_error
        logger.info(
            f"Deleted '{item.title}' (action: {action.value}, freed: {result.file_size_freed / BYTES_PER_GB:.2f}GB, "
            f"overseerr: {result.overseerr_reset})",
            extra={"item_id": item.id, "deletion_action": action.value, "freed_bytes": result.file_size_freed},
        )
        return outcome

    async def process_queue(self, now: Optional[datetime] = None, dry_run: bool = False) -> SweepResult:
        """
        Delete every queued item whose grace period has elapsed.

        Each item is bounded by the per-item timeout; one failure never stops
        the sweep.
        """
        start_time = time.time()
        now = as_utc(now) or utcnow()
        sweep = SweepResult(dry_run=dry_run)

        entries = self.queue.get_expired(now)
        logger.info(f"Found {len(entries)} items ready for deletion (dry_run={dry_run})")

        for entry in entries:
            item = entry.item
            if item.is_protected:
                sweep.skipped += 1
                logger.warning(f"Skipping protected item '{item.title}' found in queue", extra={"item_id": item.id})
                continue

            sweep.processed += 1

            if dry_run:
                action = self._action_for(item)
                logger.info(
                    f"[DRY RUN] Would delete '{item.title}' (action: {action.value}, "
                    f"overseerr reset: {item.reset_external_request})",
                    extra={"item_id": item.id, "deletion_action": action.value},
                )
                sweep.outcomes.append(
                    ItemOutcome(
                        id=item.id,
                        title=item.title,
                        action=action,
                        success=True,
                        file_size_freed=(item.file_size or 0) if action.deletes_files else 0,
                        overseerr_reset=item.reset_external_request,
                    )
                )
                continue

            outcome = await self._process_item(item)
            sweep.outcomes.append(outcome)
            if outcome.success:
                sweep.deleted += 1
                sweep.freed_space += outcome.file_size_freed
                if outcome.overseerr_reset:
                    sweep.external_resets += 1
            else:
                sweep.failed += 1

        sweep.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Deletion processing complete: {sweep.deleted} successful, {sweep.failed} failed, "
            f"{sweep.freed_space / BYTES_PER_GB:.2f}GB freed, {sweep.external_resets} Overseerr resets",
            extra={
                "event": "sweep_complete",
                "items_processed": sweep.processed,
                "items_failed": sweep.failed,
                "freed_bytes": sweep.freed_space,
                "duration_ms": sweep.duration_ms,
            },
        )

        if sweep.deleted:
            dispatch(
                self.notifier,
                NotificationEvent.DELETION_COMPLETE,
                {
                    "deleted": sweep.deleted,
                    "freed_space": sweep.freed_space,
                    "external_resets": sweep.external_resets,
                    "items": [{"id": o.id, "title": o.title} for o in sweep.outcomes if o.success],
                },
            )
        if sweep.failed:
            dispatch(
                self.notifier,
                NotificationEvent.DELETION_ERROR,
                {
                    "failed": sweep.failed,
                    "items": [
                        {"id": o.id, "title": o.title, "error": o.error} for o in sweep.outcomes if not o.success
                    ],
                },
            )
        return sweep

    # -------------------------------------------------------------------------
    # Immediate deletion
    # -------------------------------------------------------------------------

    async def _emit_terminal(self, channel: ProgressChannel, event: DeletionProgress, item: MediaItem) -> None:
        try:
            await channel.emit(event)
        except DeletionCancelledError:
            logger.info(
                f"Consumer left before '{event.stage.value}' was delivered for '{item.title}'",
                extra={"item_id": item.id},
            )

    async def _run_immediate(self, item: MediaItem, channel: ProgressChannel) -> None:
        """Producer side of delete_now(). Always ends in a terminal event or a logged cancellation."""
        action = self._action_for(item)
        try:
            await channel.emit(DeletionProgress(DeletionStage.STARTING, f'Starting deletion of "{item.title}"...'))
            # Unbounded; the executor bounds each collaborator call instead
            result = await self.executor.execute_stream(
                item, action, channel, reset_external_request=item.reset_external_request
            )
            if result.success:
                self._finalize(item, action, result, deletion_type="manual")
        except DeletionCancelledError:
            logger.info(
                f"Immediate deletion of '{item.title}' cancelled by client; item stays queued",
                extra={"event": "deletion_cancelled", "item_id": item.id, "deletion_action": action.value},
            )
            return
        except Exception as e:
            logger.error(
                f"Failed to delete '{item.title}' via stream: {e}",
                extra={"item_id": item.id, "deletion_action": action.value},
            )
            dispatch(
                self.notifier,
                NotificationEvent.DELETION_ERROR,
                {"id": item.id, "title": item.title, "error": str(e)},
            )
            await self._emit_terminal(
                channel,
                DeletionProgress(
                    DeletionStage.ERROR,
                    f"Failed to delete: {e}",
                    result=DeletionOutcome(success=False, error=str(e)),
                ),
                item,
            )
            return

        outcome = DeletionOutcome(
            success=result.success,
            file_size_freed=result.file_size_freed,
            overseerr_reset=result.overseerr_reset,
            files_failed=result.files_failed,
            error=result.error,
        )
        if not result.success:
            dispatch(
                self.notifier,
                NotificationEvent.DELETION_ERROR,
                {"id": item.id, "title": item.title, "error": result.error},
            )
            await self._emit_terminal(
                channel,
                DeletionProgress(DeletionStage.ERROR, f"Failed to delete: {result.error}", result=outcome),
                item,
            )
            return

        logger.info(
            f"Deleted '{item.title}' via stream (action: {action.value}, "
            f"freed: {result.file_size_freed / BYTES_PER_GB:.2f}GB, overseerr: {result.overseerr_reset})",
            extra={"item_id": item.id, "deletion_action": action.value, "freed_bytes": result.file_size_freed},
        )
        dispatch(
            self.notifier,
            NotificationEvent.DELETION_COMPLETE,
            {"deleted": 1, "freed_space": result.file_size_freed, "items": [{"id": item.id, "title": item.title}]},
        )
        await self._emit_terminal(
            channel,
            DeletionProgress(DeletionStage.COMPLETE, f'"{item.title}" deleted successfully', result=outcome),
            item,
        )

    async def delete_now(self, item_id: int) -> AsyncIterator[DeletionProgress]:
        """
        Delete one queued item immediately, yielding progress events.

        Closing the iterator early stops the executor before its next file;
        a file deletion already in flight completes and the item stays queued.
        """
        item = self.media_store.get_by_id(item_id)
        error = None
        if item is None:
            error = f"Item not found: {item_id}"
        elif item.is_protected:
            error = f"Item is protected: {item.protection_reason or 'Manually protected'}"
        elif not item.is_queued:
            error = "Item is not in the deletion queue"

        if error:
            yield DeletionProgress(DeletionStage.ERROR, error, result=DeletionOutcome(success=False, error=error))
            return

        channel = ProgressChannel(maxsize=self.progress_buffer_size)
        producer = asyncio.create_task(self._run_immediate(item, channel))
        finished = False
        try:
            while True:
                event = await channel.get()
                yield event
                if event.stage in TERMINAL_STAGES:
                    finished = True
                    break
        finally:
            if not finished:
                channel.close()
                logger.info(f"Progress consumer for '{item.title}' disconnected", extra={"item_id": item.id})
            await asyncio.shield(producer)

    # -------------------------------------------------------------------------
    # Reminders
    # -------------------------------------------------------------------------

    def send_deletion_reminders(self, now: Optional[datetime] = None) -> int:
        """
        Notify about queued items due within 1 day (high) or 3 days (medium).

        Returns:
            Number of reminders accepted by the notification sink
        """
        now = as_utc(now) or utcnow()
        sent = 0
        for entry in self.queue.get_queue(now):
            if entry.days_remaining <= HIGH_URGENCY_DAYS:
                urgency = "high"
            elif entry.days_remaining <= MEDIUM_URGENCY_DAYS:
                urgency = "medium"
            else:
                continue

            data = {
                "item": {
                    "id": entry.item.id,
                    "title": entry.item.title,
                    "type": entry.item.type.value,
                    "days_remaining": entry.days_remaining,
                    "delete_after": entry.delete_after.isoformat(),
                },
                "urgency": urgency,
            }
            if dispatch(self.notifier, NotificationEvent.DELETION_IMMINENT, data):
                sent += 1

        logger.info(f"Deletion reminders sent: {sent}", extra={"event": "reminders_sent"})
        return sent
