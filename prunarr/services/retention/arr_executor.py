# prunarr/services/retention/arr_executor.py
"""
Deletion executor backed by Sonarr, Radarr and Overseerr.

The HTTP clients live outside this package; they only need to satisfy the
protocols below. Shows go through Sonarr (by sonarr_id), movies through
Radarr (by radarr_id), and request resets through Overseerr (by tmdb_id).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from prunarr.services.resilience import with_retry, with_timeout
from prunarr.services.retention.errors import ExecutionError
from prunarr.services.retention.executor import (
    DeletionExecutor,
    DeletionProgress,
    DeletionStage,
    ExecutionResult,
    FileProgress,
    FileStatus,
    ProgressChannel,
    emit,
)
from prunarr.services.retention.types import DeletionAction, MediaItem, MediaType

logger = logging.getLogger(__name__)


@dataclass
class ArrFile:
    """A media file as reported by Sonarr/Radarr."""
    id: int
    path: str
    size: int = 0

    @property
    def name(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


class SonarrClient(Protocol):
    async def unmonitor_series(self, series_id: int) -> None: ...

    async def list_episode_files(self, series_id: int) -> list[ArrFile]: ...

    async def delete_episode_file(self, file_id: int) -> None: ...

    async def remove_series(self, series_id: int, delete_files: bool = True) -> None: ...


class RadarrClient(Protocol):
    async def unmonitor_movie(self, movie_id: int) -> None: ...

    async def list_movie_files(self, movie_id: int) -> list[ArrFile]: ...

    async def delete_movie_file(self, file_id: int) -> None: ...

    async def remove_movie(self, movie_id: int, delete_files: bool = True) -> None: ...


class OverseerrClient(Protocol):
    async def reset_media(self, tmdb_id: int, media_type: str) -> bool: ...


class _SonarrTarget:
    service = "Sonarr"

    def __init__(self, client: SonarrClient, series_id: int):
        self.client = client
        self.external_id = series_id

    async def unmonitor(self) -> None:
        await self.client.unmonitor_series(self.external_id)

    async def list_files(self) -> list[ArrFile]:
        return await self.client.list_episode_files(self.external_id)

    async def delete_file(self, file: ArrFile) -> None:
        await self.client.delete_episode_file(file.id)

    async def remove(self) -> None:
        await self.client.remove_series(self.external_id, delete_files=True)


class _RadarrTarget:
    service = "Radarr"

    def __init__(self, client: RadarrClient, movie_id: int):
        self.client = client
        self.external_id = movie_id

    async def unmonitor(self) -> None:
        await self.client.unmonitor_movie(self.external_id)

    async def list_files(self) -> list[ArrFile]:
        return await self.client.list_movie_files(self.external_id)

    async def delete_file(self, file: ArrFile) -> None:
        await self.client.delete_movie_file(file.id)

    async def remove(self) -> None:
        await self.client.remove_movie(self.external_id, delete_files=True)


class ArrDeletionExecutor(DeletionExecutor):
    """
    Executes deletions through the *arr services.

    Usage:
        executor = ArrDeletionExecutor(sonarr=sonarr, radarr=radarr, overseerr=overseerr)
        result = await executor.execute(item, DeletionAction.UNMONITOR_AND_DELETE)

    Each Sonarr/Radarr call is bounded on its own by call_timeout_seconds;
    there is no bound over the whole deletion, so a long series deletion
    runs to completion file by file.
    """

    def __init__(
        self,
        sonarr: Optional[SonarrClient] = None,
        radarr: Optional[RadarrClient] = None,
        overseerr: Optional[OverseerrClient] = None,
        reset_attempts: int = 3,
        reset_min_wait: float = 1.0,
        call_timeout_seconds: Optional[float] = None,
    ):
        self.sonarr = sonarr
        self.radarr = radarr
        self.overseerr = overseerr
        self.call_timeout_seconds = call_timeout_seconds
        self._reset_with_retry = with_retry(max_attempts=reset_attempts, min_wait=reset_min_wait)(self._reset_request)

    async def _call(self, coro, description: str):
        """Await one Sonarr/Radarr call, bounded by call_timeout_seconds when set."""
        if self.call_timeout_seconds is None:
            return await coro
        return await with_timeout(coro, self.call_timeout_seconds, f"{description} timed out")

    def _targets(self, item: MediaItem) -> list:
        targets = []
        if item.sonarr_id is not None and self.sonarr is not None:
            targets.append(_SonarrTarget(self.sonarr, item.sonarr_id))
        if item.radarr_id is not None and self.radarr is not None:
            targets.append(_RadarrTarget(self.radarr, item.radarr_id))
        return targets

    async def execute_stream(
        self,
        item: MediaItem,
        action: DeletionAction,
        progress: Optional[ProgressChannel],
        reset_external_request: bool = False,
    ) -> ExecutionResult:
        targets = self._targets(item)
        if not targets:
            raise ExecutionError(f"'{item.title}' has no Sonarr or Radarr id with a configured client")

        result = ExecutionResult(success=True)

        if action in (DeletionAction.UNMONITOR_ONLY, DeletionAction.UNMONITOR_AND_DELETE):
            await emit(progress, DeletionProgress(DeletionStage.UNMONITORING, "Unmonitoring in Sonarr/Radarr..."))
            for target in targets:
                await self._call(target.unmonitor(), f"Unmonitoring '{item.title}' in {target.service}")
                logger.info(f"Unmonitored '{item.title}' in {target.service}", extra={"item_id": item.id})

        if action in (DeletionAction.DELETE_FILES_ONLY, DeletionAction.UNMONITOR_AND_DELETE):
            await emit(progress, DeletionProgress(DeletionStage.DELETING_FILES, "Deleting media files..."))
            await self._delete_files(item, targets, progress, result)

        if action == DeletionAction.FULL_REMOVAL:
            await emit(
                progress,
                DeletionProgress(DeletionStage.DELETING_FILES, "Removing from Sonarr/Radarr completely..."),
            )
            for target in targets:
                await self._call(target.remove(), f"Removing '{item.title}' from {target.service}")
                logger.info(f"Removed '{item.title}' from {target.service}", extra={"item_id": item.id})
            result.file_size_freed = item.file_size or 0

        if reset_external_request and result.success:
            await self._reset_external(item, progress, result)

        return result

    async def _delete_files(
        self,
        item: MediaItem,
        targets: list,
        progress: Optional[ProgressChannel],
        result: ExecutionResult,
    ) -> None:
        """Delete files one by one. Fails only if every file failed."""
        files = []
        for target in targets:
            listed = await self._call(target.list_files(), f"Listing files of '{item.title}' in {target.service}")
            files.extend((target, file) for file in listed)

        total = len(files)
        for current, (target, file) in enumerate(files, start=1):
            await emit(
                progress,
                DeletionProgress(
                    DeletionStage.DELETING_FILES,
                    f"Deleting file {current}/{total}",
                    file_progress=FileProgress(current, total, file.name, FileStatus.DELETING),
                ),
            )
            try:
                await self._call(target.delete_file(file), f"Deleting {file.path}")
            except Exception as e:
                result.files_failed += 1
                logger.warning(f"Failed to delete {file.path} for '{item.title}': {e}", extra={"item_id": item.id})
                status = FileStatus.FAILED
            else:
                result.file_size_freed += file.size or 0
                status = FileStatus.DELETED

            await emit(
                progress,
                DeletionProgress(
                    DeletionStage.DELETING_FILES,
                    f"Deleting file {current}/{total}",
                    file_progress=FileProgress(current, total, file.name, status),
                ),
            )

        if total and result.files_failed == total:
            result.success = False
            result.error = f"All {total} files failed to delete"

    async def _reset_request(self, tmdb_id: int, media_type: str) -> bool:
        return await self.overseerr.reset_media(tmdb_id, media_type)

    async def _reset_external(
        self,
        item: MediaItem,
        progress: Optional[ProgressChannel],
        result: ExecutionResult,
    ) -> None:
        if self.overseerr is None or item.tmdb_id is None:
            result.overseerr_error = "Overseerr not configured" if self.overseerr is None else "Item has no TMDB id"
            logger.info(
                f"Skipping request reset for '{item.title}': {result.overseerr_error}",
                extra={"item_id": item.id},
            )
            return

        await emit(progress, DeletionProgress(DeletionStage.RESETTING_OVERSEERR, "Resetting in Overseerr..."))
        media_type = "movie" if item.type == MediaType.MOVIE else "tv"
        try:
            result.overseerr_reset = bool(await self._reset_with_retry(item.tmdb_id, media_type))
        except Exception as e:
            result.overseerr_error = str(e)
            logger.warning(f"Failed to reset '{item.title}' in Overseerr: {e}", extra={"item_id": item.id})
