# prunarr/services/retention/executor.py
"""
Deletion executor interface and progress reporting.

An executor performs the destructive part of a deletion against external
systems. While it works it may report progress into a ProgressChannel, a
bounded single-consumer queue that enforces stage order and stops the
producer once the consumer goes away.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from prunarr.services.retention.errors import DeletionCancelledError
from prunarr.services.retention.types import DeletionAction, MediaItem

logger = logging.getLogger(__name__)


class DeletionStage(str, Enum):
    STARTING = "starting"
    UNMONITORING = "unmonitoring"
    DELETING_FILES = "deleting_files"
    RESETTING_OVERSEERR = "resetting_overseerr"
    COMPLETE = "complete"
    ERROR = "error"


# Stages may repeat or skip ahead, never go back. ERROR is reachable from anywhere.
STAGE_ORDER = {
    DeletionStage.STARTING: 0,
    DeletionStage.UNMONITORING: 1,
    DeletionStage.DELETING_FILES: 2,
    DeletionStage.RESETTING_OVERSEERR: 3,
    DeletionStage.COMPLETE: 4,
}

TERMINAL_STAGES = {DeletionStage.COMPLETE, DeletionStage.ERROR}


class FileStatus(str, Enum):
    DELETING = "deleting"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass
class FileProgress:
    current: int
    total: int
    file_name: str
    status: FileStatus


@dataclass
class DeletionOutcome:
    """Terminal result carried by the last event of a stream."""
    success: bool
    file_size_freed: int = 0
    overseerr_reset: bool = False
    files_failed: int = 0
    error: Optional[str] = None


@dataclass
class DeletionProgress:
    stage: DeletionStage
    message: str
    file_progress: Optional[FileProgress] = None
    result: Optional[DeletionOutcome] = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form for event-stream consumers."""
        data: dict[str, Any] = {"stage": self.stage.value, "message": self.message}
        if self.file_progress:
            data["fileProgress"] = {
                "current": self.file_progress.current,
                "total": self.file_progress.total,
                "fileName": self.file_progress.file_name,
                "status": self.file_progress.status.value,
            }
        if self.result:
            data["result"] = {
                "success": self.result.success,
                "fileSizeFreed": self.result.file_size_freed,
                "overseerrReset": self.result.overseerr_reset,
                "filesFailed": self.result.files_failed,
            }
            if self.result.error:
                data["result"]["error"] = self.result.error
        return data


@dataclass
class ExecutionResult:
    success: bool
    file_size_freed: int = 0
    overseerr_reset: bool = False
    files_failed: int = 0
    error: Optional[str] = None
    overseerr_error: Optional[str] = None


class ProgressChannel:
    """
    Bounded progress queue between one producer and one consumer.

    emit() blocks while the buffer is full. After close() the buffer is
    dropped and the next emit() raises DeletionCancelledError.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[DeletionProgress] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._last_stage: Optional[DeletionStage] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._last_stage in TERMINAL_STAGES

    async def emit(self, event: DeletionProgress) -> None:
        if self._closed:
            raise DeletionCancelledError("Progress consumer disconnected")
        if self.finished:
            raise RuntimeError(f"Progress stream already finished with '{self._last_stage.value}'")
        if (
            event.stage != DeletionStage.ERROR
            and self._last_stage is not None
            and STAGE_ORDER[event.stage] < STAGE_ORDER[self._last_stage]
        ):
            raise ValueError(f"Stage '{event.stage.value}' cannot follow '{self._last_stage.value}'")

        self._last_stage = event.stage
        await self._queue.put(event)

    async def get(self) -> DeletionProgress:
        return await self._queue.get()

    def close(self) -> None:
        """Mark the consumer gone and drop buffered events."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()


async def emit(progress: Optional[ProgressChannel], event: DeletionProgress) -> None:
    """Emit when a channel is attached. Executors call this unconditionally."""
    if progress is not None:
        await progress.emit(event)


class DeletionExecutor(ABC):
    """
    Abstract interface for the destructive step of a deletion.

    Implementations must:
    - Interpret every DeletionAction
    - Report freed bytes only for files actually removed
    - Treat the external request reset as non-fatal
    - Let DeletionCancelledError from the channel propagate
    """

    @abstractmethod
    async def execute_stream(
        self,
        item: MediaItem,
        action: DeletionAction,
        progress: Optional[ProgressChannel],
        reset_external_request: bool = False,
    ) -> ExecutionResult:
        pass

    async def execute(
        self,
        item: MediaItem,
        action: DeletionAction,
        reset_external_request: bool = False,
    ) -> ExecutionResult:
        """Run the deletion without a progress consumer."""
        return await self.execute_stream(item, action, None, reset_external_request=reset_external_request)
